"""Content resolver: fetch binary content for pending fragments.

Images are inlined as base64 data URIs; PDFs are uploaded to the generation
service and referenced by file id. All fetches run concurrently. A failure in
one never affects the others: that fragment is logged and dropped.
Resolved fragments keep the position the assembler gave them.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging

from starlette.concurrency import run_in_threadpool

from services.fragments import FILE_HANDLE, IMAGE, INLINE_IMAGE, PDF, PENDING_BINARY, AssembledPrompt, Fragment
from services.images import to_data_uri
from services.invoker import TemporaryUploads
from services.llm import GenerationClient
from services.storage import LocalBlobStore

logger = logging.getLogger(__name__)


async def _resolve_image(frag: Fragment, storage: LocalBlobStore) -> Fragment:
    data = await run_in_threadpool(storage.get, frag.file["storage_path"])
    data_uri = await run_in_threadpool(to_data_uri, data)
    return dataclasses.replace(frag, kind=INLINE_IMAGE, ref=data_uri)


async def _resolve_pdf(frag: Fragment, storage: LocalBlobStore, client: GenerationClient,
                       uploads: TemporaryUploads) -> Fragment:
    data = await run_in_threadpool(storage.get, frag.file["storage_path"])
    file_name = frag.file.get("file_name") or "upload.pdf"
    file_id = await run_in_threadpool(
        client.upload_file, file_name, data, mime_type="application/pdf", purpose="user_data"
    )
    # Register before anything else can fail so cleanup always sees it.
    uploads.add(file_id, file_name)
    return dataclasses.replace(frag, kind=FILE_HANDLE, ref=file_id)


async def _resolve_one(frag: Fragment, storage: LocalBlobStore, client: GenerationClient,
                       uploads: TemporaryUploads) -> Fragment | None:
    try:
        if frag.binary_type == IMAGE:
            return await _resolve_image(frag, storage)
        if frag.binary_type == PDF:
            return await _resolve_pdf(frag, storage, client, uploads)
        logger.warning("Unknown binary type %r for fragment %s", frag.binary_type, frag.position)
    except Exception as e:
        logger.warning(
            "Dropping %s content for %s: %s",
            frag.binary_type, (frag.file or {}).get("file_name"), e,
        )
    return None


async def resolve_content(assembled: AssembledPrompt, *, storage: LocalBlobStore,
                          client: GenerationClient, uploads: TemporaryUploads) -> list[Fragment]:
    """Return the final fragment list with pending binaries resolved or removed."""
    pending = assembled.pending
    results = await asyncio.gather(*(_resolve_one(f, storage, client, uploads) for f in pending))
    resolved = {f.position: r for f, r in zip(pending, results)}

    out: list[Fragment] = []
    for frag in assembled.fragments:
        if frag.kind != PENDING_BINARY:
            out.append(frag)
        elif resolved.get(frag.position) is not None:
            out.append(resolved[frag.position])
    if pending:
        logger.info("Resolved %d of %d binary fragments", sum(r is not None for r in results), len(pending))
    return out
