"""OpenRouter adapters -- OpenAI-compatible chat completions over SSE.

``KimiAdapter`` talks to the same endpoint with a Kimi model and a reduced
system prompt (no environment section, no optional result fields).
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator

import httpx

from studiogen.clients.llm_client import (
    ProviderAdapter,
    chat_completions_body,
    estimate_tokens,
    iter_sse_data,
    openai_delta_text,
    stream_http,
)
from studiogen.config import settings
from studiogen.models import GenerationRequest, ProviderId
from studiogen.services.prompt_builder import PromptOptions, build_prompt

logger = logging.getLogger(__name__)

OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


async def decode_chat_completions(response: httpx.Response) -> AsyncIterator[str]:
    """Yield ``choices[0].delta.content`` from an OpenAI-style SSE stream."""
    async for event in iter_sse_data(response):
        text = openai_delta_text(event)
        if text:
            yield text


class OpenRouterAdapter(ProviderAdapter):
    """Streams from OpenRouter with ``response_format: json_object``."""

    provider_id = ProviderId.OPENROUTER
    prompt_options = PromptOptions()

    def __init__(self, api_key: str | None = None, *, url: str = OPENROUTER_CHAT_URL) -> None:
        self._api_key = api_key
        self._url = url

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else settings.OPENROUTER_API_KEY

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._require_key(self.api_key)}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.OPENROUTER_REFERER,
            "X-Title": settings.OPENROUTER_TITLE,
        }

    def model_for(self, request: GenerationRequest) -> str:
        return request.model_id

    def build_body(self, request: GenerationRequest) -> dict:
        """Translate *request* into a chat-completions body."""
        prompt = build_prompt(request, self.prompt_options)
        user_content: str | list[dict] = prompt.user
        images = [a for a in request.attachments if a.mime_type.startswith("image/")]
        if images:
            user_content = [{"type": "text", "text": prompt.user}]
            for att in images:
                user_content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{att.mime_type};base64,{att.data}"},
                })
        return chat_completions_body(self.model_for(request), prompt.system, user_content)

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        headers = self._headers()
        body = self.build_body(request)
        tokens = estimate_tokens(body["messages"][0]["content"] + request.prompt)
        logger.info("%s stream: model=%s ~%d tokens", self.name, body["model"], tokens)
        fragments = stream_http(
            self.name, self._url, headers=headers, body=body,
            decode=decode_chat_completions, estimated_tokens=tokens,
        )
        async with aclosing(fragments):
            async for text in fragments:
                yield text


class KimiAdapter(OpenRouterAdapter):
    """Kimi via OpenRouter, with the minimal result schema."""

    provider_id = ProviderId.KIMI
    prompt_options = PromptOptions(full_schema=False)

    def model_for(self, request: GenerationRequest) -> str:
        # Requests routed to Kimi keep their own model id when it names one.
        if "kimi" in request.model_id.lower():
            return request.model_id
        return settings.KIMI_MODEL
