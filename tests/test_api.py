"""
HTTP tests using TestClient against the in-process app.
"""
import json

from conftest import make_image

import database
from services.llm import GenerationError


def _login(api_client, email="user@example.com", password="password123"):
    resp = api_client.post("/register", data={"email": email, "password": password})
    assert resp.status_code == 200
    return resp.json()["user_id"]


def test_health(api_client):
    assert api_client.get("/health").json()["status"] == "healthy"


def test_register_login_logout(api_client):
    _login(api_client)
    assert api_client.post("/register", data={"email": "user@example.com", "password": "password123"}).status_code == 400
    api_client.get("/logout")
    assert api_client.get("/api/notes").status_code == 401
    assert api_client.post("/login", data={"email": "user@example.com", "password": "wrong-pass"}).status_code == 401
    resp = api_client.post("/login", data={"email": "USER@example.com", "password": "password123"})
    assert resp.status_code == 200
    assert resp.json()["has_profile"] is False


def test_generate_tips_requires_session(api_client, fake_client):
    resp = api_client.get("/api/generate-tips")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}
    assert fake_client.chat_calls == []


def test_generate_tips_returns_report(api_client, fake_client):
    _login(api_client)
    api_client.put("/api/profile", json={"name": "Robin", "age": 38, "weight": 81.2, "sex": "male"})
    api_client.post("/api/notes", data={"text": "Knee hurts after long runs"})

    resp = api_client.get("/api/generate-tips")

    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {
        "statusQuo", "painPoints", "dietTips", "habitTips",
        "supplementProposals", "fitnessTips", "shoppingList",
    }
    prompt = fake_client.chat_calls[0]["messages"][1]["content"][0]["text"]
    assert "Name: Robin" in prompt
    assert "Knee hurts after long runs" in prompt


def test_generate_tips_malformed_response_is_500(api_client, fake_client):
    _login(api_client)
    fake_client.response = json.dumps({"dietTips": []})

    resp = api_client.get("/api/generate-tips")

    assert resp.status_code == 500
    assert resp.json()["error"].startswith("Malformed generator response")


def test_generate_tips_transport_failure_is_500(api_client, fake_client):
    _login(api_client)
    fake_client.response = GenerationError("Generation service error: 502 Bad Gateway", status_code=502)

    resp = api_client.get("/api/generate-tips")

    assert resp.status_code == 500
    assert "502" in resp.json()["error"]


def test_generate_tips_notes_failure_is_500(api_client, monkeypatch):
    _login(api_client)

    def boom(user_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(database, "list_notes", boom)
    resp = api_client.get("/api/generate-tips")
    assert resp.status_code == 500
    assert resp.json()["error"] == "Notes fetch error: connection reset"


def test_profile_round_trip(api_client):
    _login(api_client)
    assert api_client.get("/api/profile").json() == {}
    resp = api_client.put("/api/profile", json={"name": "Lee", "height": 170})
    assert resp.json()["name"] == "Lee"
    assert api_client.get("/api/profile").json()["height"] == 170


def test_notes_crud(api_client):
    _login(api_client)
    assert api_client.post("/api/notes", data={"text": "   "}).status_code == 400
    note_id = api_client.post("/api/notes", data={"text": "ate late"}).json()["id"]
    assert [n["text"] for n in api_client.get("/api/notes").json()["notes"]] == ["ate late"]
    assert api_client.delete(f"/api/notes/{note_id}").status_code == 200
    assert api_client.delete(f"/api/notes/{note_id}").status_code == 404


def test_file_upload_with_category_and_signed_download(api_client, fake_client):
    _login(api_client)
    png = make_image()

    resp = api_client.post(
        "/api/files",
        files={"file": ("meal.png", png, "image/png")},
        data={"category": "diet", "subcategory": "food_images"},
    )

    assert resp.status_code == 200
    row = resp.json()
    assert row["category"] == "diet" and row["subcategory"] == "food_images"
    assert fake_client.chat_calls == []
    blob = api_client.get(row["url"])
    assert blob.status_code == 200
    assert blob.content == png

    listed = api_client.get("/api/files").json()["files"]
    assert [f["file_name"] for f in listed] == ["meal.png"]

    assert api_client.delete(f"/api/files/{row['id']}").status_code == 200
    assert api_client.get(row["url"]).status_code == 404


def test_file_upload_auto_classifies(api_client, fake_client):
    _login(api_client)
    fake_client.response = json.dumps({"category": "health", "subcategory": "prescriptions"})

    resp = api_client.post("/api/files", files={"file": ("rx.pdf", b"%PDF-1.4", "application/pdf")})

    assert resp.json()["category"] == "health"
    assert fake_client.deleted == ["file-1"]


def test_file_upload_rejects_invalid_category(api_client):
    _login(api_client)
    resp = api_client.post(
        "/api/files",
        files={"file": ("a.png", make_image(), "image/png")},
        data={"category": "selfies", "subcategory": "receipts"},
    )
    assert resp.status_code == 400


def test_blob_with_bad_signature_is_forbidden(api_client, storage):
    storage.put("1/a.png", b"x")
    assert api_client.get("/api/blobs/1/a.png", params={"expires": 9999999999, "signature": "nope"}).status_code == 403


def test_classify_file(api_client, fake_client):
    assert api_client.post("/api/classify-file", data={"other": "1"}).status_code == 400

    fake_client.response = json.dumps({"category": "diet", "subcategory": "receipts"})
    resp = api_client.post("/api/classify-file", files={"file": ("r.png", make_image(), "image/png")})
    assert resp.status_code == 200
    assert resp.json() == {"category": "diet", "subcategory": "receipts"}

    resp = api_client.post("/api/classify-file", files={"file": ("a.txt", b"hello", "text/plain")})
    assert resp.json() == {"category": None, "subcategory": None}


def test_classify_file_upstream_error(api_client, fake_client):
    fake_client.response = GenerationError("Generation service error: 429 rate limited", status_code=429)
    resp = api_client.post("/api/classify-file", files={"file": ("r.png", make_image(), "image/png")})
    assert resp.status_code == 429
    assert set(resp.json()) == {"error", "details"}


def test_classify_image(api_client, fake_client):
    resp = api_client.post("/api/classify-image", json={})
    assert resp.status_code == 400
    assert resp.json()["details"] == "Missing image data for classification"

    fake_client.response = json.dumps({"category": "selfies", "subcategory": None})
    resp = api_client.post("/api/classify-image", json={"imageBase64": "data:image/png;base64,QUJD"})
    assert resp.status_code == 200
    assert resp.json() == {"category": "selfies", "subcategory": None}

    fake_client.response = "not json"
    resp = api_client.post("/api/classify-image", json={"imageBase64": "QUJD"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to classify image"


def test_file_upload_with_unhashable_classification_is_stored_unclassified(api_client, fake_client):
    _login(api_client)
    fake_client.response = json.dumps({"category": ["health"], "subcategory": "other"})

    resp = api_client.post("/api/files", files={"file": ("a.png", make_image(), "image/png")})

    assert resp.status_code == 200
    assert resp.json()["category"] is None
    assert [f["file_name"] for f in api_client.get("/api/files").json()["files"]] == ["a.png"]


def test_classify_file_with_object_category_keeps_error_shape(api_client, fake_client):
    fake_client.response = json.dumps({"category": {"x": 1}, "subcategory": None})
    resp = api_client.post("/api/classify-file", files={"file": ("r.png", make_image(), "image/png")})
    assert resp.status_code == 500
    assert set(resp.json()) == {"error", "details"}
