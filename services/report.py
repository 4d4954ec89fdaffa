"""Health report pipeline: collect -> assemble -> resolve -> invoke.

Stateless; every call builds its own fragments and its own upload scope.
"""

from __future__ import annotations

import logging
from datetime import datetime

from services.assembler import assemble_prompt
from services.collector import collect_records
from services.invoker import TemporaryUploads, invoke_generator
from services.llm import GenerationClient
from services.report_schema import ReportResult
from services.resolver import resolve_content
from services.storage import LocalBlobStore

logger = logging.getLogger(__name__)


async def generate_report(user_id: int | None, *, client: GenerationClient, storage: LocalBlobStore,
                          model: str | None = None, ceiling: float | None = None,
                          now: datetime | None = None) -> ReportResult:
    records = await collect_records(user_id)
    assembled = assemble_prompt(records, ceiling=ceiling, now=now)
    logger.info(
        "Assembled report context for user %s: %d fragments, cost %.0f/%.0f, truncated=%s",
        user_id, len(assembled.fragments), assembled.committed_cost, assembled.ceiling,
        assembled.truncated or "none",
    )

    async with TemporaryUploads(client) as uploads:
        fragments = await resolve_content(assembled, storage=storage, client=client, uploads=uploads)
        return await invoke_generator(fragments, client=client, model=model)
