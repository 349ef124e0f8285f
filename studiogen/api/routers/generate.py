"""Generation proxy router -- ``POST /api/generate``.

Calls OpenAI or DeepSeek with the server-held key and streams the reply
back as plain UTF-8 text, so the client-side adapter never sees a key or
any SSE framing.
"""

import logging
from typing import AsyncIterator

import httpx
from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from studiogen.clients.llm_client import chat_completions_body, get_client
from studiogen.clients.openrouter_client import decode_chat_completions
from studiogen.config import settings
from studiogen.models import ProjectFile
from studiogen.services.prompt_builder import build_system_prompt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEEPSEEK_CHAT_URL = "https://api.deepseek.com/v1/chat/completions"

# lowercase provider -> (display label, upstream URL, settings attribute)
_UPSTREAMS = {
    "openai": ("OpenAI", OPENAI_CHAT_URL, "OPENAI_API_KEY"),
    "deepseek": ("DeepSeek", DEEPSEEK_CHAT_URL, "DEEPSEEK_API_KEY"),
}


class GenerateBody(BaseModel):
    """Request body, keyed the way the browser client sends it."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str
    model: str
    prompt: str
    existing_files: list[ProjectFile] = Field(default_factory=list, alias="existingFiles")
    env_vars: dict[str, str] = Field(default_factory=dict, alias="envVars")


async def _plain_text(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Re-encode upstream deltas; the upstream response is closed however the stream ends."""
    try:
        async for text in decode_chat_completions(upstream):
            yield text.encode("utf-8")
    finally:
        await upstream.aclose()


@router.post("/generate")
async def generate(body: GenerateBody):
    """Proxy one streaming generation to an OpenAI-compatible backend."""
    entry = _UPSTREAMS.get(body.provider.lower())
    if entry is None:
        return JSONResponse({"error": f"Unsupported provider: {body.provider}"}, status_code=400)
    label, url, key_name = entry

    api_key = getattr(settings, key_name)
    if not api_key:
        logger.error("%s is not configured", key_name)
        return JSONResponse(
            {"error": f"The {label} API key is not configured on the server."},
            status_code=500,
        )

    system = build_system_prompt(body.existing_files, body.env_vars)
    client = get_client()
    request = client.build_request(
        "POST",
        url,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json=chat_completions_body(body.model, system, body.prompt),
    )
    try:
        upstream = await client.send(request, stream=True)
    except httpx.TransportError as exc:
        logger.warning("%s upstream unreachable: %s", label, exc)
        return JSONResponse({"error": f"{label} API unreachable: {exc}"}, status_code=502)

    if upstream.status_code >= 400:
        error_body = (await upstream.aread()).decode("utf-8", errors="replace")
        await upstream.aclose()
        logger.warning("Error from %s (%d): %.500s", label, upstream.status_code, error_body)
        return PlainTextResponse(
            f"{label} API error: {error_body}", status_code=upstream.status_code,
        )

    logger.info("Proxying %s stream: model=%s", label, body.model)
    return StreamingResponse(
        _plain_text(upstream),
        media_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
        background=BackgroundTask(upstream.aclose),
    )
