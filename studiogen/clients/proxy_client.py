"""Proxy adapter -- OpenAI and DeepSeek through the local ``/api/generate``.

The proxy holds the server-side keys and streams back plain UTF-8 text, so
this adapter does no framing work beyond incremental decoding.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator

import httpx

from studiogen.clients.llm_client import ProviderAdapter, estimate_tokens, stream_http
from studiogen.config import settings
from studiogen.models import GenerationRequest, ProviderId

logger = logging.getLogger(__name__)

# Provider labels the proxy router accepts (matched case-insensitively).
_PROXY_LABELS = {
    ProviderId.OPENAI: "OpenAI",
    ProviderId.DEEPSEEK: "DeepSeek",
}


async def decode_plain_text(response: httpx.Response) -> AsyncIterator[str]:
    async for text in response.aiter_text():
        if text:
            yield text


class ProxyAdapter(ProviderAdapter):
    """Streams from the generation proxy for one OpenAI-compatible backend."""

    def __init__(self, provider_id: ProviderId, *, url: str | None = None) -> None:
        if provider_id not in _PROXY_LABELS:
            raise ValueError(f"{provider_id.value} is not served by the proxy")
        self.provider_id = provider_id
        self._url = url

    @property
    def url(self) -> str:
        return self._url or settings.PROXY_URL

    def build_body(self, request: GenerationRequest) -> dict:
        return {
            "prompt": request.prompt,
            "existingFiles": [f.model_dump() for f in request.existing_files],
            "envVars": dict(request.environment),
            "provider": _PROXY_LABELS[self.provider_id],
            "model": request.model_id,
        }

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        body = self.build_body(request)
        tokens = estimate_tokens(
            request.prompt + "".join(f.content for f in request.existing_files)
        )
        logger.info("%s proxy stream: model=%s ~%d tokens", self.name, request.model_id, tokens)
        fragments = stream_http(
            self.name, self.url,
            headers={"Content-Type": "application/json"},
            body=body, decode=decode_plain_text, estimated_tokens=tokens,
        )
        async with aclosing(fragments):
            async for text in fragments:
                yield text
