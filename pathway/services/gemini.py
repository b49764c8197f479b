"""Gemini generative-language API client.

The API key is a server-side secret taken from settings; browsers never see
it.
"""

from __future__ import annotations

import atexit
import logging
import os
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from pathway.config import Settings
from pathway.metrics import llm_error_total, llm_latency_seconds, llm_timeout_total

settings = Settings()
logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 60

_GENERATION_CONFIG = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 4096,
}

_SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]

_client: httpx.Client | None = None


def _load_timeout() -> int:
    raw = os.environ.get("GEMINI_TIMEOUT_SECONDS")
    if not raw:
        return _DEFAULT_TIMEOUT_SECONDS
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid GEMINI_TIMEOUT_SECONDS=%r, using default", raw)
        return _DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else _DEFAULT_TIMEOUT_SECONDS


def _should_bypass_proxy(host: str) -> bool:
    raw = os.environ.get("NO_PROXY") or os.environ.get("no_proxy") or ""
    for entry in (item.strip().lower() for item in raw.split(",")):
        if not entry:
            continue
        entry = entry.lstrip(".")
        if host == entry or host.endswith(f".{entry}"):
            return True
    return False


def _get_client() -> httpx.Client:
    """Lazily build and cache the HTTP client."""

    global _client
    if _client is None:
        host = (urlparse(settings.gemini_api_url).hostname or "").lower()
        proxy = os.environ.get("HTTPS_PROXY")
        if proxy and not _should_bypass_proxy(host):
            _client = httpx.Client(proxy=proxy, trust_env=False)
        else:
            _client = httpx.Client(trust_env=False)
    return _client


def _close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
    _client = None


atexit.register(_close_client)


def build_payload(
    prompt: str,
    *,
    history: list[dict[str, str]] | None = None,
    system_instruction: str | None = None,
    images: list[dict[str, str]] | None = None,
    response_mime_type: str | None = None,
) -> dict[str, Any]:
    """Assemble a ``generateContent`` request body.

    ``history`` items are ``{"role": "user"|"model", "text": ...}``; ``images``
    items are ``{"mime_type": ..., "data": <base64>}`` attached to the prompt.
    ``response_mime_type="application/json"`` switches the model to JSON mode.
    """
    contents: list[dict[str, Any]] = [
        {"role": item["role"], "parts": [{"text": item["text"]}]}
        for item in history or []
        if item.get("text")
    ]
    parts: list[dict[str, Any]] = [{"text": prompt}]
    for image in images or []:
        parts.append(
            {"inline_data": {"mime_type": image["mime_type"], "data": image["data"]}}
        )
    contents.append({"role": "user", "parts": parts})

    payload: dict[str, Any] = {
        "contents": contents,
        "generationConfig": dict(_GENERATION_CONFIG),
        "safetySettings": list(_SAFETY_SETTINGS),
    }
    if response_mime_type:
        payload["generationConfig"]["responseMimeType"] = response_mime_type
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    return payload


def _extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise ValueError("Malformed Gemini response")
    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ValueError(message or "Gemini API error")
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("Malformed Gemini response") from exc
    if not isinstance(text, str):
        raise ValueError("Malformed Gemini response")
    return text


def generate_content(
    prompt: str,
    *,
    history: list[dict[str, str]] | None = None,
    system_instruction: str | None = None,
    images: list[dict[str, str]] | None = None,
    response_mime_type: str | None = None,
) -> str:
    """Send one prompt (with optional history) and return the reply text."""

    api_key = settings.gemini_api_key
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is not configured")

    url = f"{settings.gemini_api_url.rstrip('/')}/models/{settings.gemini_model}:generateContent"
    payload = build_payload(
        prompt,
        history=history,
        system_instruction=system_instruction,
        images=images,
        response_mime_type=response_mime_type,
    )
    client = _get_client()
    started = time.perf_counter()
    try:
        resp = client.post(
            url,
            json=payload,
            headers={"x-goog-api-key": api_key},
            timeout=_load_timeout(),
        )
        resp.raise_for_status()
    except httpx.TimeoutException as exc:
        llm_timeout_total.inc()
        raise TimeoutError("Gemini request timed out") from exc
    except httpx.HTTPStatusError as exc:
        llm_error_total.inc()
        logger.error("Gemini API returned %s", exc.response.status_code)
        raise RuntimeError(f"Gemini API error {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        llm_error_total.inc()
        raise RuntimeError("Gemini request failed") from exc
    finally:
        llm_latency_seconds.observe(time.perf_counter() - started)

    try:
        data = resp.json()
    except ValueError as exc:
        llm_error_total.inc()
        raise ValueError("Malformed Gemini response") from exc
    return _extract_text(data)


__all__ = ["build_payload", "generate_content"]
