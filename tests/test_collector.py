"""
Tests for the collector: required vs optional collections.
"""
import asyncio
import sqlite3
import time

import pytest

import database
from services.collector import AuthenticationError, CollectionError, collect_records


def _boom(*args, **kwargs):
    raise sqlite3.OperationalError("disk I/O error")


def test_collects_all_four_collections(user_id):
    database.save_user_profile({"name": "Kim", "age": 29}, user_id)
    database.create_note(user_id, "slept badly", "2025-01-01T07:00:00+00:00")
    database.create_note(user_id, "felt great", "2025-01-03T07:00:00+00:00")
    database.save_uploaded_file({"user_id": user_id, "file_name": "r.pdf", "mime_type": "application/pdf"})
    database.save_integration_activity(user_id, "strava", {"external_id": 1, "activity_type": "Run"})

    records = asyncio.run(collect_records(user_id))

    assert records.profile["name"] == "Kim"
    assert [n["text"] for n in records.notes] == ["felt great", "slept badly"]
    assert len(records.files) == 1
    assert records.integrations[0]["integration_type"] == "strava"


def test_empty_user_is_valid(user_id):
    records = asyncio.run(collect_records(user_id))
    assert records.profile is None
    assert records.notes == [] and records.files == [] and records.integrations == []


def test_missing_user_is_unauthenticated():
    with pytest.raises(AuthenticationError):
        asyncio.run(collect_records(None))


@pytest.mark.parametrize("fn,label", [("list_notes", "Notes"), ("list_uploaded_files", "Files")])
def test_required_collection_failure_aborts(user_id, monkeypatch, fn, label):
    monkeypatch.setattr(database, fn, _boom)
    with pytest.raises(CollectionError, match=f"{label} fetch error"):
        asyncio.run(collect_records(user_id))


def test_optional_collection_failures_are_tolerated(user_id, monkeypatch):
    database.create_note(user_id, "still here")
    monkeypatch.setattr(database, "get_user_profile", _boom)
    monkeypatch.setattr(database, "list_integration_activities", _boom)

    records = asyncio.run(collect_records(user_id))

    assert records.profile is None
    assert records.integrations == []
    assert records.notes[0]["text"] == "still here"


def test_integration_resync_upserts(user_id):
    database.save_integration_activity(user_id, "strava", {"external_id": "42", "name": "Old"})
    database.save_integration_activity(user_id, "strava", {"external_id": "42", "name": "New"})
    rows = database.list_integration_activities(user_id)
    assert [r["name"] for r in rows] == ["New"]


def test_reads_run_concurrently(user_id, monkeypatch):
    delay = 0.2

    def slow(result):
        def read(*args, **kwargs):
            time.sleep(delay)
            return result
        return read

    monkeypatch.setattr(database, "get_user_profile", slow({"name": "Kim"}))
    monkeypatch.setattr(database, "list_notes", slow([{"text": "n"}]))
    monkeypatch.setattr(database, "list_uploaded_files", slow([]))
    monkeypatch.setattr(database, "list_integration_activities", slow([]))

    started = time.perf_counter()
    records = asyncio.run(collect_records(user_id))
    elapsed = time.perf_counter() - started

    assert records.profile == {"name": "Kim"}
    assert elapsed < delay * 4 * 0.75
