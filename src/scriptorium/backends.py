from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"
API_KEY_HEADER = "x-goog-api-key"


class BackendError(RuntimeError):
    """Raised when the remote API returns an unusable response."""


class TextExtractor(Protocol):
    """Minimal interface for a text extraction (OCR) backend."""

    name: str

    def extract_text(self, document: Path, *, key: str, prompt: str) -> str:
        ...


class Translator(Protocol):
    """Minimal interface for a translation backend."""

    name: str

    def translate(self, text: str, language: str, *, key: str, prompt: str) -> str:
        ...


@dataclass
class GeminiBackend:
    """Generative-language API client used for both OCR and translation.

    Each call is a single `generateContent` request authenticated with the
    key handed out by the rotator. Failures raise; retries are left to the
    caller.
    """

    name: str = "gemini"
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    timeout: float = 120.0
    transport: httpx.BaseTransport | None = None
    logger: logging.Logger | None = None

    def extract_text(self, document: Path, *, key: str, prompt: str) -> str:
        """Send the document inline with the OCR prompt and return the text."""
        mime_type = mimetypes.guess_type(document.name)[0] or "application/octet-stream"
        data = base64.b64encode(document.read_bytes()).decode("ascii")
        parts = [
            {"text": prompt},
            {"inline_data": {"mime_type": mime_type, "data": data}},
        ]
        return self._generate(parts, key=key)

    def translate(self, text: str, language: str, *, key: str, prompt: str) -> str:
        """Translate ``text`` into ``language``."""
        instruction = prompt.replace("{language}", language)
        parts = [{"text": instruction}, {"text": text}]
        return self._generate(parts, key=key)

    def _generate(self, parts: list[dict[str, Any]], *, key: str) -> str:
        url = f"{self.api_url.rstrip('/')}/models/{self.model}:generateContent"
        body = {"contents": [{"role": "user", "parts": parts}]}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            resp = client.post(url, headers={API_KEY_HEADER: key}, json=body)
            resp.raise_for_status()
            payload = resp.json()

        text = response_text(payload)
        if not text.strip():
            raise BackendError("Empty response from model")
        if self.logger:
            self.logger.debug(
                "gemini_response", extra={"model": self.model, "chars": len(text)}
            )
        return text


def response_text(payload: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate.

    Raises:
        BackendError: If the payload has no candidates
    """
    candidates = payload.get("candidates") or []
    if not candidates:
        feedback = payload.get("promptFeedback") or {}
        reason = feedback.get("blockReason")
        raise BackendError(f"No candidates in response{f' (blocked: {reason})' if reason else ''}")

    content = candidates[0].get("content") or {}
    texts = [p.get("text", "") for p in content.get("parts") or [] if isinstance(p, dict)]
    return "".join(texts)
