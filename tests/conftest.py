"""
Pytest configuration and fixtures

Every test gets its own SQLite file and blob directory under tmp_path, and a
fake generation client that records calls instead of hitting the network.
"""
import itertools
import json
import os
import sys
import threading
from io import BytesIO

import pytest

# Add the project root to the path so we can import main/config/database/services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from services.llm import GenerationError
from services.storage import LocalBlobStore


def valid_report() -> dict:
    return {
        "statusQuo": "Mostly healthy, sleeping poorly this week.",
        "painPoints": [{"point": "Poor sleep", "reason": "Based on your recent note about feeling tired."}],
        "dietTips": [{"tip": "Add leafy greens", "reason": "Based on your recent grocery receipt."}],
        "habitTips": [{"tip": "Fixed bedtime", "reason": "Based on your recent note."}],
        "supplementProposals": [{"supplement": "Vitamin D", "reason": "Based on the lab report you uploaded."}],
        "fitnessTips": [{"tip": "Keep easy runs easy", "reason": "Based on your recent runs."}],
        "shoppingList": [{"item": "Spinach", "reason": "To support adding leafy greens."}],
    }


def make_image(size=(64, 48), color=(200, 30, 30), fmt="PNG") -> bytes:
    from PIL import Image

    out = BytesIO()
    Image.new("RGB", size, color).save(out, format=fmt)
    return out.getvalue()


class FakeGenerationClient:
    """Stand-in for GenerationClient with the same method signatures."""

    def __init__(self, response=None, *, configured=True):
        self.response = json.dumps(valid_report()) if response is None else response
        self.configured = configured
        self.chat_calls = []
        self.uploads = []
        self.deleted = []
        self.fail_uploads = set()
        self.fail_deletes = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def chat(self, messages, *, model, json_mode=True, max_tokens=None, temperature=None):
        self.chat_calls.append({"messages": messages, "model": model, "json_mode": json_mode})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def upload_file(self, file_name, data, *, mime_type="application/pdf", purpose="user_data"):
        if file_name in self.fail_uploads:
            raise GenerationError("upload rejected", status_code=500)
        with self._lock:
            file_id = f"file-{next(self._ids)}"
            self.uploads.append((file_id, file_name))
        return file_id

    def delete_file(self, file_id):
        with self._lock:
            self.deleted.append(file_id)
        if file_id in self.fail_deletes:
            raise GenerationError("delete failed", status_code=500)


@pytest.fixture(autouse=True)
def db(tmp_path, monkeypatch):
    """Fresh database per test."""
    monkeypatch.setattr(database, "DATABASE_PATH", str(tmp_path / "test.db"))
    database.init_database()
    yield


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), "test-secret")


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest.fixture
def user_id():
    return database.create_user("runner@example.com", "not-a-real-hash")


@pytest.fixture
def api_client(fake_client, storage):
    from fastapi.testclient import TestClient

    from main import app, get_generation_client, get_storage

    app.dependency_overrides[get_generation_client] = lambda: fake_client
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
