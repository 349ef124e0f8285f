"""Tests for clients/openrouter_client.py -- OpenRouter and Kimi adapters."""

import json
from contextlib import aclosing

import httpx
import pytest

from studiogen.clients.openrouter_client import KimiAdapter, OpenRouterAdapter
from studiogen.errors import AuthError
from studiogen.models import Attachment, ProviderId
from tests.conftest import make_request, sse_body


def _delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


async def _collect(adapter, request) -> list[str]:
    gen = adapter.stream(request)
    async with aclosing(gen):
        return [t async for t in gen]


@pytest.mark.asyncio
async def test_stream_extracts_delta_content(mock_http):
    body = sse_body([_delta('{"mess'), {"choices": [{"delta": {"role": "assistant"}}]}, _delta('age": "x"}')])
    seen = mock_http(lambda req: httpx.Response(200, content=body))

    request = make_request(provider_id=ProviderId.OPENROUTER, model_id="openai/gpt-4o")
    out = await _collect(OpenRouterAdapter(), request)

    assert "".join(out) == '{"message": "x"}'
    req = seen[0]
    assert req.headers["authorization"] == "Bearer test-openrouter-key"
    assert req.headers["http-referer"] == "https://codagem.studio"
    assert req.headers["x-title"] == "Codagem Studio"
    sent = json.loads(req.content)
    assert sent["model"] == "openai/gpt-4o"
    assert sent["stream"] is True
    assert sent["response_format"] == {"type": "json_object"}
    assert (sent["temperature"], sent["top_p"]) == (0.1, 0.9)


def test_image_attachments_become_data_urls():
    request = make_request(
        "What is this?",
        provider_id=ProviderId.OPENROUTER,
        attachments=(
            Attachment(data="QUJD", mime_type="image/png"),
            Attachment(data="cGRm", mime_type="application/pdf"),
        ),
    )
    user = OpenRouterAdapter("k").build_body(request)["messages"][1]["content"]
    assert user[0] == {"type": "text", "text": "What is this?"}
    assert user[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}}
    assert len(user) == 2


def test_plain_prompt_without_attachments():
    body = OpenRouterAdapter("k").build_body(make_request("hi", environment={"A": "1"}))
    assert body["messages"][1]["content"] == "hi"
    assert '"A": "1"' in body["messages"][0]["content"]


def test_kimi_uses_reduced_prompt_and_kimi_model():
    adapter = KimiAdapter("k")
    body = adapter.build_body(make_request(environment={"SECRET": "x"}, model_id="gemini-2.5-flash"))
    system = body["messages"][0]["content"]
    assert "SECRET" not in system
    assert "supabaseAdminAction" not in system
    assert body["model"] == "moonshotai/kimi-k2"
    assert adapter.provider_id is ProviderId.KIMI


def test_kimi_keeps_explicit_kimi_model():
    body = KimiAdapter("k").build_body(make_request(model_id="moonshotai/kimi-dev-72b"))
    assert body["model"] == "moonshotai/kimi-dev-72b"


@pytest.mark.asyncio
async def test_rejected_key_is_auth_error(mock_http):
    mock_http(lambda req: httpx.Response(401, json={"error": {"message": "No auth credentials found"}}))
    with pytest.raises(AuthError, match="No auth credentials"):
        await _collect(OpenRouterAdapter(), make_request(provider_id=ProviderId.OPENROUTER))
