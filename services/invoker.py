"""Generator invoker: one JSON-mode completion call for the health report.

Also owns the lifecycle of temporary uploads. Every file pushed to the
generation service during a request is registered with a TemporaryUploads
scope, and the scope deletes all of them when it exits, however it exits.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool

import config
from services.fragments import FILE_HANDLE, INLINE_IMAGE, TEXT, Fragment
from services.llm import GenerationClient
from services.report_schema import ReportResult, validate_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporaryExternalUpload:
    file_id: str
    file_name: str = ""


class TemporaryUploads:
    """Async context manager holding the external uploads of one request.

    Usage:
        async with TemporaryUploads(client) as uploads:
            ...  # uploads.add(file_id, name) after each successful upload

    Deletion failures are logged and never raised, so they cannot replace
    the outcome of the block.
    """

    def __init__(self, client: GenerationClient):
        self.client = client
        self._handles: list[TemporaryExternalUpload] = []

    def add(self, file_id: str, file_name: str = "") -> None:
        self._handles.append(TemporaryExternalUpload(file_id, file_name))

    @property
    def handles(self) -> list[TemporaryExternalUpload]:
        return list(self._handles)

    async def __aenter__(self) -> "TemporaryUploads":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.release()
        return False

    async def release(self) -> None:
        handles, self._handles = self._handles, []
        if not handles:
            return
        logger.info("Cleaning up %d temporary upload(s)", len(handles))
        results = await asyncio.gather(
            *(run_in_threadpool(self.client.delete_file, h.file_id) for h in handles),
            return_exceptions=True,
        )
        for handle, result in zip(handles, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to delete temporary upload %s: %s", handle.file_id, result)


SYSTEM_PROMPT = """You are a specialized health assistant. Your only task is to analyze the user's health data context below (profile, notes, file metadata, images, PDFs, fitness activity) and produce a specific, actionable, personalized health report.

Understanding the data:
- Profile: age, weight, height and sex when the user provided them.
- Notes: feelings, symptoms and updates written by the user. The timestamp is when the note was recorded.
- Files: categorized uploads.
    - diet: receipts, food photos, food logs. This is what the user consumed, not what is optimal. Analyze it critically.
    - selfies: photos of the user. Look for visual health cues.
    - health: medical documents such as lab results, diagnostic reports, prescriptions, doctor notes.
- Integrations: third-party fitness activity (distance, moving time, pace or speed, cadence, heart rate).
- Current Date & Time: the reference point for recency.

Rules:
1. Prioritize recency. Data close to the current date matters most; a recent lab report outweighs an old unrelated note.
2. Ground every statement in the supplied data. Never invent facts. Treat diet data critically.
3. In every "reason" field, explain the basis in user-friendly terms (for example "Based on the lab report you uploaded recently"). Do not expose raw file names or technical timestamps, but do use them internally for analysis.
4. No generic advice unless the data points to a relevant problem.
5. Tips must be concrete actions for this user.
6. Respond ONLY with a valid JSON object with exactly this structure:

{
  "statusQuo": "Two or three sentences summarizing the user's current health situation",
  "painPoints": [ { "point": "...", "reason": "..." } ],
  "dietTips": [ { "tip": "...", "reason": "..." } ],
  "habitTips": [ { "tip": "...", "reason": "..." } ],
  "supplementProposals": [ { "supplement": "...", "reason": "..." } ],
  "fitnessTips": [ { "tip": "...", "reason": "..." } ],
  "shoppingList": [ { "item": "...", "reason": "To support <the diet tip it belongs to>" } ]
}

Provide three items each for dietTips, habitTips, supplementProposals and fitnessTips. painPoints may be empty when the data shows none. The shoppingList is derived from the dietTips."""


def _content_part(frag: Fragment) -> dict | None:
    if frag.kind == TEXT:
        return {"type": "text", "text": frag.text}
    if frag.kind == INLINE_IMAGE:
        return {"type": "image_url", "image_url": {"url": frag.ref, "detail": "low"}}
    if frag.kind == FILE_HANDLE:
        return {"type": "file", "file": {"file_id": frag.ref}}
    return None


def build_messages(fragments: list[Fragment]) -> list[dict]:
    parts: list[dict] = []
    for frag in fragments:
        part = _content_part(frag)
        if part is None:
            continue
        if part["type"] == "text" and parts and parts[-1]["type"] == "text":
            parts[-1] = {"type": "text", "text": parts[-1]["text"] + part["text"]}
        else:
            parts.append(part)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": parts},
    ]


async def invoke_generator(fragments: list[Fragment], *, client: GenerationClient,
                           model: str | None = None) -> ReportResult:
    """Single attempt. Transport errors raise GenerationError; bad content returns a failed result."""
    messages = build_messages(fragments)
    raw = await run_in_threadpool(
        client.chat, messages, model=model or config.REPORT_MODEL, json_mode=True
    )
    result = validate_report(raw)
    if not result.ok:
        logger.warning("Report generation rejected: %s", result.error)
    return result
