"""Result parser -- recover one structured result from a noisy response.

Backends are told to answer with a bare JSON object, optionally preceded by
a one-line thought and a ``---`` separator.  In practice the object may
still be wrapped in prose or markdown fences, so recovery is:

1. Split off the thought preamble at the first ``\\n---\\n``.
2. Take the span from the first ``{`` to the last ``}``.
3. Strictly decode that span.  No repair is attempted.
4. Validate the decoded object against ``GenerationResult``.

All functions are pure string processors -- no I/O, no side effects.

Known weakness: a stray ``{ ... }`` pair in prose *before* the real
payload widens the span and the decode fails as malformed.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from studiogen.errors import MalformedPayload, NoStructuredPayload
from studiogen.models import GenerationResult
from studiogen.services.prompt_builder import THOUGHT_SENTINEL

logger = logging.getLogger(__name__)

_SENTINEL_LEN = len(THOUGHT_SENTINEL)


def split_thought(text: str) -> tuple[str | None, str]:
    """Split *text* into ``(thought, payload)``.

    Without a sentinel the whole text is the payload and there is no
    thought.
    """
    idx = text.find(THOUGHT_SENTINEL)
    if idx == -1:
        return None, text
    return text[:idx].strip(), text[idx + _SENTINEL_LEN:]


def extract_payload(text: str) -> str:
    """Return the ``{ ... }`` span from the first ``{`` to the last ``}``.

    Raises:
        NoStructuredPayload: No braces, or the last ``}`` precedes the
            first ``{``.
    """
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise NoStructuredPayload(len(text))
    return text[first:last + 1]


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_payload(payload: str) -> GenerationResult:
    """Decode and validate an already-split payload."""
    fragment = extract_payload(payload)
    try:
        data = json.loads(fragment)
    except json.JSONDecodeError as exc:
        logger.debug("Malformed payload (%s): %.500s", exc, fragment)
        raise MalformedPayload(str(exc), fragment) from exc

    if not isinstance(data, dict):
        raise MalformedPayload(f"expected a JSON object, got {type(data).__name__}", fragment)

    try:
        return GenerationResult.model_validate(data)
    except ValidationError as exc:
        raise MalformedPayload(_describe(exc), fragment) from exc


def parse_result(text: str) -> tuple[str | None, GenerationResult]:
    """Full recovery over the raw accumulated response.

    Returns:
        ``(thought, result)``.

    Raises:
        NoStructuredPayload, MalformedPayload
    """
    thought, payload = split_thought(text)
    return thought, parse_payload(payload)
