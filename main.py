"""Main FastAPI application for the VitalNotes health-document service.

 - Email/password sessions
 - Profile, notes and uploaded files (blob storage + signed URLs)
 - Upload classification via the generation service
 - Personalized health report built from everything the user stored
"""

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
import logging
import mimetypes
import uvicorn
from dotenv import load_dotenv

# Load .env early so database + AI keys are available everywhere.
load_dotenv()

from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

import config
import database
from database import (
    init_database,
    create_user,
    get_user_by_email,
    get_user_profile,
    save_user_profile,
    list_notes,
    create_note,
    delete_note,
    list_uploaded_files,
    get_uploaded_file,
    save_uploaded_file,
    delete_uploaded_file,
    list_integration_activities,
)
from services.categories import is_valid
from services.classifier import ClassificationError, classify_image, classify_upload
from services.collector import AuthenticationError, CollectionError
from services.images import ImageConversionError
from services.llm import GenerationClient, GenerationError
from services.report import generate_report
from services.storage import LocalBlobStore, StorageError, object_key

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("vitalnotes")

pwd_context = CryptContext(schemes=['bcrypt'], deprecated='auto')

app = FastAPI(title="VitalNotes", version="1.0.0")
# Session cookie signing key. Keep stable across restarts or users will be logged out.
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    same_site="lax",
)


def _uid(request: Request) -> int | None:
    return request.session.get("uid")

def _require_user(request: Request) -> int | None:
    uid = _uid(request)
    return uid

def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "Unauthorized"}, status_code=401)

def _hash_password(pw: str) -> str:
    return pwd_context.hash(pw)

def _verify_password(pw: str, pw_hash: str) -> bool:
    try:
        return pwd_context.verify(pw, pw_hash)
    except ValueError:
        return False


# One client and one blob store per process, passed into each pipeline stage.
def get_generation_client(request: Request) -> GenerationClient:
    client = getattr(request.app.state, "generation_client", None)
    if client is None:
        client = request.app.state.generation_client = GenerationClient.from_config()
    return client

def get_storage(request: Request) -> LocalBlobStore:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = request.app.state.storage = LocalBlobStore.from_config()
    return storage


class ProfileIn(BaseModel):
    name: str | None = None
    age: int | None = None
    weight: float | None = None
    height: float | None = None
    sex: str | None = None


class ClassifyImageIn(BaseModel):
    imageBase64: str | None = None


def _file_out(row: dict, storage: LocalBlobStore) -> dict:
    out = dict(row)
    out["url"] = storage.signed_url(row["storage_path"]) if row.get("storage_path") else None
    return out


# Initialize database on startup
@app.on_event("startup")
async def startup_event():
    init_database()
    logger.info("Database initialized at %s", database.DATABASE_PATH)


# Auth
@app.post("/register")
async def register_post(request: Request, email: str = Form(...), password: str = Form(...)):
    if get_user_by_email(email):
        return JSONResponse({"error": "Email already registered. Please sign in."}, status_code=400)
    if len(password) < 6:
        return JSONResponse({"error": "Password must be at least 6 characters."}, status_code=400)
    uid = int(create_user(email, _hash_password(password)))
    request.session["uid"] = uid
    return {"ok": True, "user_id": uid}

@app.post("/login")
async def login_post(request: Request, email: str = Form(...), password: str = Form(...)):
    user = get_user_by_email(email)
    if not user or not _verify_password(password, user["password_hash"]):
        return JSONResponse({"error": "Invalid email or password."}, status_code=401)
    uid = int(user["id"])
    request.session["uid"] = uid
    return {"ok": True, "user_id": uid, "has_profile": bool(get_user_profile(uid))}

@app.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"ok": True}


# Profile
@app.get("/api/profile")
async def profile_get(request: Request):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    return get_user_profile(uid) or {}

@app.put("/api/profile")
async def profile_put(request: Request, profile: ProfileIn):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    save_user_profile(profile.model_dump(), uid)
    return get_user_profile(uid)


# Notes
@app.get("/api/notes")
async def notes_list(request: Request):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    return {"notes": list_notes(uid)}

@app.post("/api/notes")
async def notes_create(request: Request, text: str = Form(...)):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    text = (text or "").strip()
    if not text:
        return JSONResponse({"error": "Note text is required"}, status_code=400)
    note_id = create_note(uid, text)
    return {"ok": True, "id": note_id}

@app.delete("/api/notes/{note_id}")
async def notes_delete(request: Request, note_id: int):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    if not delete_note(uid, note_id):
        return JSONResponse({"error": "Note not found"}, status_code=404)
    return {"ok": True}


# Files
@app.get("/api/files")
async def files_list(request: Request, storage: LocalBlobStore = Depends(get_storage)):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    return {"files": [_file_out(f, storage) for f in list_uploaded_files(uid)]}

@app.post("/api/files")
async def files_upload(
    request: Request,
    file: UploadFile = File(...),
    category: str | None = Form(None),
    subcategory: str | None = Form(None),
    client: GenerationClient = Depends(get_generation_client),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Store an upload; classify it when the caller did not pick a category."""
    uid = _require_user(request)
    if not uid:
        return _unauthorized()

    content = await file.read()
    if not content:
        return JSONResponse({"error": "Empty file"}, status_code=400)
    file_name = file.filename or "upload"
    mime_type = file.content_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"

    if category:
        subcategory = subcategory or None
        if not is_valid(category, subcategory):
            return JSONResponse({"error": "Invalid category/subcategory"}, status_code=400)
    elif client.configured:
        try:
            result = await classify_upload(client, content, mime_type, file_name)
            category, subcategory = result["category"], result["subcategory"]
        except (ClassificationError, GenerationError, ImageConversionError) as e:
            logger.warning("Classification failed for %s, storing unclassified: %s", file_name, e)

    key = object_key(uid, file_name)
    await run_in_threadpool(storage.put, key, content)
    file_id = save_uploaded_file({
        'user_id': uid,
        'file_name': file_name,
        'mime_type': mime_type,
        'category': category,
        'subcategory': subcategory,
        'storage_path': key,
        'size_bytes': len(content),
    })
    return _file_out(get_uploaded_file(uid, file_id), storage)

@app.delete("/api/files/{file_id}")
async def files_delete(request: Request, file_id: int, storage: LocalBlobStore = Depends(get_storage)):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    row = get_uploaded_file(uid, file_id)
    if not row:
        return JSONResponse({"error": "File not found"}, status_code=404)
    if row.get("storage_path"):
        await run_in_threadpool(storage.delete, row["storage_path"])
    delete_uploaded_file(uid, file_id)
    return {"ok": True}

@app.get("/api/blobs/{key:path}")
async def blob_get(key: str, expires: int, signature: str, storage: LocalBlobStore = Depends(get_storage)):
    """Signed-URL target for displaying uploads."""
    if not storage.verify(key, expires, signature):
        return JSONResponse({"error": "Invalid or expired link"}, status_code=403)
    try:
        data = await run_in_threadpool(storage.get, key)
    except StorageError:
        return JSONResponse({"error": "Not found"}, status_code=404)
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)


# Integrations (written by the sync job)
@app.get("/api/integrations")
async def integrations_list(request: Request, limit: int = 50):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    return {"activities": list_integration_activities(uid, limit=limit)}


# Health report
@app.get("/api/generate-tips")
async def generate_tips(
    request: Request,
    client: GenerationClient = Depends(get_generation_client),
    storage: LocalBlobStore = Depends(get_storage),
):
    uid = _require_user(request)
    if not uid:
        return _unauthorized()
    try:
        result = await generate_report(uid, client=client, storage=storage)
    except AuthenticationError:
        return _unauthorized()
    except (CollectionError, GenerationError) as e:
        logger.exception("Report generation failed for user %s", uid)
        return JSONResponse({"error": str(e)}, status_code=500)
    except Exception:
        logger.exception("Unexpected report generation error for user %s", uid)
        return JSONResponse({"error": "Failed to generate tips."}, status_code=500)
    if not result.ok:
        return JSONResponse({"error": result.error}, status_code=500)
    return result.report.to_wire()


# Classification
def _classification_failure(e: Exception, client: GenerationClient, default: str) -> JSONResponse:
    status = 500
    message = default
    if isinstance(e, GenerationError):
        if not client.configured:
            message = "Classification service not configured."
        else:
            message = f"Classification service error: {e.status_code or 'unreachable'}"
            status = e.status_code or 500
    elif isinstance(e, ImageConversionError):
        status = 400
    return JSONResponse({"error": message, "details": str(e)}, status_code=status)

@app.post("/api/classify-file")
async def classify_file(
    file: UploadFile | None = File(None),
    client: GenerationClient = Depends(get_generation_client),
):
    if file is None:
        return JSONResponse({"error": "No file provided"}, status_code=400)
    content = await file.read()
    try:
        return await classify_upload(client, content, file.content_type, file.filename or "upload")
    except (ClassificationError, GenerationError, ImageConversionError) as e:
        logger.exception("Error in /api/classify-file")
        return _classification_failure(e, client, "Failed to classify file")

@app.post("/api/classify-image")
async def classify_image_route(
    payload: ClassifyImageIn,
    client: GenerationClient = Depends(get_generation_client),
):
    if not payload.imageBase64:
        return JSONResponse(
            {"error": "Failed to classify image", "details": "Missing image data for classification"},
            status_code=400,
        )
    try:
        return await classify_image(client, payload.imageBase64)
    except (ClassificationError, GenerationError) as e:
        logger.exception("Error in /api/classify-image")
        return _classification_failure(e, client, "Failed to classify image")


# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "VitalNotes"}

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
