"""Blob storage for user uploads.

Local filesystem bucket. Object keys look like "<user_id>/<uuid>-<name>".
The UI gets time-limited signed URLs; the report pipeline reads bytes directly.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import re
import time
import uuid
from urllib.parse import quote, urlencode

import config


class StorageError(Exception):
    pass


_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def object_key(user_id: int, file_name: str) -> str:
    safe = _SAFE_NAME.sub("_", os.path.basename(file_name or "upload")).strip("._") or "upload"
    return f"{int(user_id)}/{uuid.uuid4().hex}-{safe}"


class LocalBlobStore:
    def __init__(self, root: str, secret: str, *, url_prefix: str = "/api/blobs"):
        self.root = os.path.abspath(root)
        self.secret = secret.encode()
        self.url_prefix = url_prefix.rstrip("/")

    @classmethod
    def from_config(cls) -> "LocalBlobStore":
        return cls(config.STORAGE_DIR, config.SECRET_KEY)

    def _path(self, key: str) -> str:
        full = os.path.abspath(os.path.join(self.root, key))
        if not full.startswith(self.root + os.sep):
            raise StorageError(f"Invalid storage path: {key}")
        return full

    def put(self, key: str, data: bytes) -> str:
        full = self._path(key)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        return key

    def get(self, key: str) -> bytes:
        full = self._path(key)
        try:
            with open(full, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {key}") from e
        except OSError as e:
            raise StorageError(f"Download failed for {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            os.remove(self._path(key))
            return True
        except FileNotFoundError:
            return False

    def _sign(self, key: str, expires: int) -> str:
        msg = f"{key}:{expires}".encode()
        return hmac.new(self.secret, msg, hashlib.sha256).hexdigest()

    def signed_url(self, key: str, ttl: int | None = None) -> str:
        expires = int(time.time()) + int(ttl if ttl is not None else config.SIGNED_URL_TTL_SECONDS)
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        return f"{self.url_prefix}/{quote(key)}?{query}"

    def verify(self, key: str, expires: int, signature: str) -> bool:
        if int(expires) < int(time.time()):
            return False
        return hmac.compare_digest(self._sign(key, int(expires)), signature or "")
