"""Shared parsing and HTTP utilities for provider responses."""

import asyncio
import json
import re
import sys
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from irx.state import DecodeResult

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_LANG_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*|\s*```")


def strip_fences(text: str) -> str:
    """Strip markdown code fences from LLM output if present."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Unbalanced or language-tagged fences
    return _LANG_FENCE_RE.sub("", text).strip()


def decode_with_repair(text: str | None, default: Callable[[str], dict[str, Any]]) -> DecodeResult:
    """Decode an LLM's structured-data answer without ever raising.

    ``default`` builds the fallback object from a failure description.
    Returns ``ok`` for clean JSON objects, ``repaired`` when fences had to
    be stripped, and ``failed`` (carrying the default) otherwise.
    """
    raw = (text or "").strip()
    cleaned = strip_fences(raw)
    notes = []
    if cleaned != raw:
        notes.append("Stripped markdown code fences")

    if not cleaned.startswith("{"):
        note = "Response was not a structured object"
        return {"status": "failed", "value": default(note), "notes": notes + [note]}

    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as e:
        note = f"Could not parse response: {e.msg}"
        return {"status": "failed", "value": default(note), "notes": notes + [note]}

    if not isinstance(value, dict):
        note = "Response was not a structured object"
        return {"status": "failed", "value": default(note), "notes": notes + [note]}

    return {"status": "repaired" if notes else "ok", "value": value, "notes": notes}


def _is_transient(exc: BaseException) -> bool:
    """Return True if the exception is a transient HTTP/network error worth retrying."""
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.ConnectError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in (429, 500, 502, 503)
    return False


async def post_with_retry(
    url: str,
    *,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout: float,
    max_retries: int | None = None,
    sleep=asyncio.sleep,
) -> httpx.Response:
    """POST ``payload`` with exponential backoff on transient errors.

    Retries on HTTP 429/500/502/503, connection errors, and timeouts.
    Non-transient errors (auth failures, bad requests) are raised immediately
    as ``httpx.HTTPStatusError``.
    """
    from irx.config import get_config

    retries = max_retries if max_retries is not None else get_config().get("llm_max_retries", 2)

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries + 1),  # +1 because first attempt counts
        wait=wait_exponential(multiplier=1, min=2, max=16),
        retry=retry_if_exception(_is_transient),
        reraise=True,
        sleep=sleep,
        before_sleep=lambda state: print(
            f"[IRX] Transient error: {state.outcome.exception()!r}. "
            f"Retrying in {state.next_action.sleep:.0f}s "
            f"(attempt {state.attempt_number}/{retries})...",
            file=sys.stderr,
        ),
    ):
        with attempt:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
                return response
