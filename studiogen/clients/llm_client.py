"""LLM client -- shared transport for the provider adapters.

Owns the pooled ``httpx.AsyncClient``, SSE line decoding, HTTP error
classification and the ``ProviderAdapter`` base class.  Concrete adapters
only build their request body and pick text out of their chunk framing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable

import httpx

from studiogen.config import settings
from studiogen.errors import (
    AuthError,
    BackendError,
    GenerationError,
    NetworkError,
    QuotaOrSizeError,
)
from studiogen.models import GenerationRequest, ProviderId

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.LLM_REQUEST_TIMEOUT)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

# Only server-side failures are retried when opening a stream.  429 is a
# quota signal and surfaces as QuotaOrSizeError straight away.
_RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504, 529})

_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return max(1, len(text) // _CHARS_PER_TOKEN) if text else 0


def _compute_wait(response: httpx.Response | None, attempt: int) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header.  Falls back to exponential backoff
    capped at 90 seconds.
    """
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), 120.0)
            except (ValueError, TypeError):
                pass
    return min(settings.LLM_RETRY_BACKOFF_BASE ** (attempt + 1), 90.0)

# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_SIZE_HINTS = (
    "too large",
    "too long",
    "maximum context",
    "context length",
    "context_length",
    "exceeds",
    "quota",
    "resource_exhausted",
    "token limit",
)
_AUTH_HINTS = ("api key", "api_key", "unauthorized", "permission")


def _error_reason(body: str) -> str:
    """Pull a human-readable message out of an error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:500]
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict):
            msg = err.get("message") or err.get("status")
            if msg:
                return str(msg)
        elif isinstance(err, str):
            return err
    return body.strip()[:500]


def classify_http_error(
    provider: str,
    status_code: int,
    body: str,
    estimated_tokens: int,
) -> GenerationError:
    """Map a non-2xx backend response onto the adapter error taxonomy."""
    reason = _error_reason(body)
    lowered = reason.lower()
    if status_code in (401, 403):
        return AuthError(provider, reason)
    if status_code in (413, 429):
        return QuotaOrSizeError(provider, estimated_tokens, reason)
    if status_code == 400:
        # Gemini reports bad keys and oversize prompts as plain 400s.
        if any(h in lowered for h in _AUTH_HINTS):
            return AuthError(provider, reason)
        if any(h in lowered for h in _SIZE_HINTS):
            return QuotaOrSizeError(provider, estimated_tokens, reason)
    return BackendError(provider, reason or f"HTTP {status_code}", status_code=status_code)

# ---------------------------------------------------------------------------
# Chunk framing
# ---------------------------------------------------------------------------


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[dict]:
    """Yield decoded JSON events from ``data:`` lines until ``[DONE]``."""
    async for line in response.aiter_lines():
        if not line or not line.startswith("data: "):
            continue
        data = line[6:]  # strip "data: " prefix
        if data == "[DONE]":
            break
        try:
            event = json.loads(data)
        except ValueError:
            logger.debug("Skipping malformed SSE event: %.200s", data)
            continue
        if isinstance(event, dict):
            yield event


def chat_completions_body(model: str, system: str, user_content: str | list[dict]) -> dict:
    """Streaming OpenAI-style chat-completions body with a JSON response format."""
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user_content},
        ],
        "temperature": 0.1,
        "top_p": 0.9,
        "response_format": {"type": "json_object"},
        "stream": True,
    }


def openai_delta_text(event: dict) -> str:
    """Text of ``choices[0].delta.content`` in an OpenAI-style chunk."""
    choices = event.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


async def stream_http(
    provider: str,
    url: str,
    *,
    headers: dict,
    body: dict[str, Any],
    decode: Callable[[httpx.Response], AsyncIterator[str]],
    estimated_tokens: int = 0,
) -> AsyncIterator[str]:
    """POST *body* to *url* and yield text fragments produced by *decode*.

    Opening the stream is retried on transport errors and 5xx statuses,
    but only while no fragment has been yielded.  Once text has reached the
    caller, a failure surfaces as ``NetworkError`` so the whole request can
    be retried from a fresh session instead.

    Closing the returned generator closes the HTTP response.
    """
    client = get_client()
    max_retries = settings.LLM_MAX_RETRIES
    yielded = False

    for attempt in range(max_retries + 1):
        try:
            async with client.stream("POST", url, headers=headers, json=body) as response:
                if response.status_code >= 400:
                    raw = (await response.aread()).decode("utf-8", errors="replace")
                    error = classify_http_error(
                        provider, response.status_code, raw, estimated_tokens,
                    )
                    if response.status_code in _RETRYABLE_STATUS_CODES and attempt < max_retries:
                        wait = _compute_wait(response, attempt)
                        logger.warning(
                            "%s stream %d (attempt %d/%d), retrying in %.1fs",
                            provider, response.status_code, attempt + 1, max_retries + 1, wait,
                        )
                        await asyncio.sleep(wait)
                        continue
                    raise error

                fragments = decode(response)
                async with aclosing(fragments):
                    async for text in fragments:
                        if text:
                            yielded = True
                            yield text
                return
        except httpx.TransportError as exc:
            # Covers timeouts, ReadError, ConnectError, RemoteProtocolError, etc.
            reason = str(exc) or type(exc).__name__
            if not yielded and attempt < max_retries:
                wait = _compute_wait(None, attempt)
                logger.warning(
                    "%s stream %s (attempt %d/%d), retrying in %.1fs",
                    provider, type(exc).__name__, attempt + 1, max_retries + 1, wait,
                )
                await asyncio.sleep(wait)
                continue
            raise NetworkError(provider, reason) from exc
        except httpx.DecodingError as exc:
            raise BackendError(provider, f"undecodable response body: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(provider, str(exc) or type(exc).__name__) from exc

# ---------------------------------------------------------------------------
# Adapter base
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Uniform streaming interface over one LLM backend.

    ``stream(request)`` is an async generator of plain text fragments.  It
    raises ``AuthError``, ``QuotaOrSizeError``, ``NetworkError`` or
    ``BackendError``; anything the backend reports is mapped onto one of
    those four.
    """

    provider_id: ProviderId

    @property
    def name(self) -> str:
        return self.provider_id.value

    @abstractmethod
    def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Return an async iterator of text fragments for *request*."""

    def _require_key(self, api_key: str) -> str:
        if not api_key:
            raise AuthError(self.name, "no API key configured")
        return api_key
