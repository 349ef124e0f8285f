"""Gemini adapter -- Generative Language REST API over SSE."""

from __future__ import annotations

import logging
import re
from contextlib import aclosing
from typing import AsyncIterator

import httpx

from studiogen.clients.llm_client import (
    ProviderAdapter,
    estimate_tokens,
    get_client,
    iter_sse_data,
    stream_http,
)
from studiogen.config import settings
from studiogen.errors import BackendError
from studiogen.models import GenerationRequest, ProviderId
from studiogen.services.prompt_builder import PromptOptions, build_prompt

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
NAME_MODEL = "gemini-2.5-flash"
DEFAULT_PROJECT_NAME = "NewProject"

_NAME_PROMPT = (
    "Generate a short, creative two-word project name (in PascalCase, no "
    "spaces, like 'QuantumQuill') for the following concept: \"{prompt}\". "
    "Reply with ONLY the name and nothing else."
)
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def _candidate_text(event: dict) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = event.get("candidates") or []
    if not candidates:
        block = (event.get("promptFeedback") or {}).get("blockReason")
        if block:
            raise BackendError(ProviderId.GEMINI.value, f"prompt blocked ({block})")
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiAdapter(ProviderAdapter):
    """Streams from ``models/{model}:streamGenerateContent``.

    The system prompt goes in ``systemInstruction``; attachments ride along
    as ``inlineData`` parts of the single user turn.  Gemini is the only
    backend asked for a thought preamble.
    """

    provider_id = ProviderId.GEMINI

    def __init__(self, api_key: str | None = None, *, base_url: str = GEMINI_API_BASE) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else settings.GEMINI_API_KEY

    def _headers(self) -> dict:
        return {
            "x-goog-api-key": self._require_key(self.api_key),
            "Content-Type": "application/json",
        }

    def build_body(self, request: GenerationRequest) -> dict:
        """Translate *request* into a ``generateContent`` body."""
        prompt = build_prompt(request, PromptOptions(thought_preamble=True))
        parts: list[dict] = [{"text": prompt.user}]
        for att in request.attachments:
            parts.append({"inlineData": {"data": att.data, "mimeType": att.mime_type}})
        return {
            "systemInstruction": {"parts": [{"text": prompt.system}]},
            "contents": [{"role": "user", "parts": parts}],
        }

    async def _decode(self, response: httpx.Response) -> AsyncIterator[str]:
        async for event in iter_sse_data(response):
            text = _candidate_text(event)
            if text:
                yield text

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        headers = self._headers()
        body = self.build_body(request)
        url = f"{self._base_url}/{request.model_id}:streamGenerateContent?alt=sse"
        tokens = estimate_tokens(body["systemInstruction"]["parts"][0]["text"] + request.prompt)
        logger.info("Gemini stream: model=%s ~%d tokens", request.model_id, tokens)
        fragments = stream_http(
            self.name, url, headers=headers, body=body, decode=self._decode,
            estimated_tokens=tokens,
        )
        async with aclosing(fragments):
            async for text in fragments:
                yield text

    async def suggest_project_name(self, prompt: str) -> str:
        """Ask the model for a short PascalCase project name.

        Never raises: any failure (no key, HTTP error, empty reply) falls
        back to ``DEFAULT_PROJECT_NAME``.
        """
        url = f"{self._base_url}/{NAME_MODEL}:generateContent"
        body = {"contents": [{"parts": [{"text": _NAME_PROMPT.format(prompt=prompt)}]}]}
        try:
            response = await get_client().post(url, headers=self._headers(), json=body)
            response.raise_for_status()
            text = _candidate_text(response.json())
        except Exception as exc:
            logger.warning("Project name suggestion failed: %s", exc)
            return DEFAULT_PROJECT_NAME
        return _NON_ALNUM.sub("", text.strip()) or DEFAULT_PROJECT_NAME
