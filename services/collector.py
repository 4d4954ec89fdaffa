"""Collector: load everything the report needs for one user.

The four reads run concurrently. Notes and files are required; profile and
integration activity are optional and never fail the request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from starlette.concurrency import run_in_threadpool

import database

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    pass


class CollectionError(Exception):
    pass


@dataclass
class UserRecords:
    profile: dict[str, Any] | None = None
    notes: list[dict[str, Any]] = field(default_factory=list)
    files: list[dict[str, Any]] = field(default_factory=list)
    integrations: list[dict[str, Any]] = field(default_factory=list)


async def collect_records(user_id: int | None) -> UserRecords:
    if not user_id:
        raise AuthenticationError("Unauthorized")

    profile, notes, files, integrations = await asyncio.gather(
        run_in_threadpool(database.get_user_profile, user_id),
        run_in_threadpool(database.list_notes, user_id),
        run_in_threadpool(database.list_uploaded_files, user_id),
        run_in_threadpool(database.list_integration_activities, user_id),
        return_exceptions=True,
    )

    if isinstance(notes, BaseException):
        raise CollectionError(f"Notes fetch error: {notes}") from notes
    if isinstance(files, BaseException):
        raise CollectionError(f"Files fetch error: {files}") from files

    if isinstance(profile, BaseException):
        logger.warning("Profile fetch failed for user %s: %s", user_id, profile)
        profile = None
    if isinstance(integrations, BaseException):
        logger.warning("Integration fetch failed for user %s: %s", user_id, integrations)
        integrations = []

    return UserRecords(
        profile=profile,
        notes=notes or [],
        files=files or [],
        integrations=integrations or [],
    )
