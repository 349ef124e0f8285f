"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``set_test_config`` — autouse fixture that patches common settings
- ``mock_http`` — installs an ``httpx.MockTransport`` as the shared client
- ``make_request`` / ``sample_result_json`` — request and payload builders
"""

import json

import httpx
import pytest

from studiogen.models import GenerationMode, GenerationRequest, ProjectFile, ProviderId


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "studiogen.config.settings.GEMINI_API_KEY": "test-gemini-key",
    "studiogen.config.settings.OPENROUTER_API_KEY": "test-openrouter-key",
    "studiogen.config.settings.OPENAI_API_KEY": "test-openai-key",
    "studiogen.config.settings.DEEPSEEK_API_KEY": "test-deepseek-key",
    "studiogen.config.settings.PROXY_URL": "http://proxy.test/api/generate",
    "studiogen.config.settings.ADMIN_ACTION_URL": "http://admin.test/api/supabase-admin",
    "studiogen.config.settings.LLM_MAX_RETRIES": 2,
    "studiogen.config.settings.LLM_RETRY_BACKOFF_BASE": 0.0,
    "studiogen.config.settings.GENERATION_MAX_ATTEMPTS": 3,
    "studiogen.config.settings.GENERATION_RETRY_DELAY": 0.0,
    "studiogen.config.settings.CACHE_ELIGIBLE_MODELS": "gemini-2.0-flash",
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic configuration with no real credentials and no backoff.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)
    # Never let a test reuse a client created by another test.
    monkeypatch.setattr("studiogen.clients.llm_client._client", None)


@pytest.fixture
def mock_http(monkeypatch):
    """Return an installer: ``mock_http(handler)`` routes all shared-client
    traffic through *handler* and returns the list of captured requests.
    """

    def install(handler):
        seen: list[httpx.Request] = []

        async def _recording(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
        monkeypatch.setattr("studiogen.clients.llm_client._client", client)
        return seen

    return install


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_request(
    prompt: str = "Build a todo app",
    *,
    files: tuple[ProjectFile, ...] = (),
    environment: dict | None = None,
    mode: GenerationMode = GenerationMode.CHAT,
    provider_id: ProviderId = ProviderId.GEMINI,
    model_id: str = "gemini-2.5-flash",
    attachments: tuple = (),
) -> GenerationRequest:
    return GenerationRequest(
        prompt=prompt,
        existing_files=files,
        environment=environment or {},
        mode=mode,
        provider_id=provider_id,
        model_id=model_id,
        attachments=attachments,
    )


def sample_result_json(**overrides) -> str:
    data = {
        "message": "Created a todo app.",
        "files": [
            {"name": "index.html", "language": "html", "content": "<html></html>"},
            {"name": "script.js", "language": "javascript", "content": "console.log(1);"},
        ],
    }
    data.update(overrides)
    return json.dumps(data)


def sse_body(events: list[dict], *, done: bool = True) -> bytes:
    """Encode *events* as an SSE body of ``data:`` lines."""
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()
