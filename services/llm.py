"""External generation service client.

Talks to an OpenAI-compatible REST API with plain `requests`:
 - chat completions (JSON mode, multimodal content parts)
 - file upload (PDFs are referenced by handle, not inlined)
 - file deletion (cleanup of temporary uploads)

One client is built per process from config and passed into each stage.
"""

from __future__ import annotations

import json
import logging

import requests

import config

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Transport failure or non-2xx response from the generation service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_detail(r: requests.Response) -> str:
    try:
        data = r.json()
        err = (data.get("error") if isinstance(data, dict) else None) or {}
        if isinstance(err, dict):
            return err.get("message") or err.get("code") or r.reason
        return str(err)
    except ValueError:
        return (r.text or r.reason or "")[:300]


class GenerationClient:
    def __init__(self, api_key: str, *, base_url: str = "https://api.openai.com/v1",
                 timeout: float = 120.0, session: requests.Session | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls) -> "GenerationClient":
        return cls(
            config.OPENAI_API_KEY,
            base_url=config.OPENAI_BASE_URL,
            timeout=config.LLM_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self, *, json_body: bool = True) -> dict:
        if not self.api_key:
            raise GenerationError("Generation API key not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GenerationError(f"Generation service unreachable: {e}") from e
        if not r.ok:
            raise GenerationError(
                f"Generation service error: {r.status_code} {_error_detail(r)}",
                status_code=r.status_code,
            )
        return r

    @staticmethod
    def _json(r: requests.Response, what: str) -> dict:
        try:
            data = r.json()
        except ValueError as e:
            raise GenerationError(f"{what} returned an invalid body") from e
        if not isinstance(data, dict):
            raise GenerationError(f"{what} returned an invalid body")
        return data

    def chat(self, messages: list[dict], *, model: str, json_mode: bool = True,
             max_tokens: int | None = None, temperature: float | None = None) -> str | None:
        """One chat completion; returns the first choice's content (may be empty)."""
        payload: dict = {"model": model, "messages": messages}
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature
        r = self._request("POST", "/chat/completions", headers=self._headers(), data=json.dumps(payload))
        data = self._json(r, "Chat completion")
        choices = data.get("choices") or [{}]
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise GenerationError("Chat completion returned an invalid body")
        message = choices[0].get("message") or {}
        if not isinstance(message, dict):
            raise GenerationError("Chat completion returned an invalid body")
        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise GenerationError("Chat completion returned an invalid body")
        return content

    def upload_file(self, file_name: str, data: bytes, *, mime_type: str = "application/pdf",
                    purpose: str = "user_data") -> str:
        """Upload a file and return its external handle (file id)."""
        r = self._request(
            "POST",
            "/files",
            headers=self._headers(json_body=False),
            data={"purpose": purpose},
            files={"file": (file_name, data, mime_type)},
        )
        file_id = self._json(r, "File upload").get("id")
        if not file_id or not isinstance(file_id, str):
            raise GenerationError("File upload returned no id")
        logger.info("Uploaded %s to generation service, id=%s", file_name, file_id)
        return file_id

    def delete_file(self, file_id: str) -> None:
        self._request("DELETE", f"/files/{file_id}", headers=self._headers(json_body=False))
        logger.info("Deleted generation service file %s", file_id)
