"""Tests for services/generation_service.py -- the request pipeline."""

import asyncio

import pytest

from studiogen.clients.llm_client import ProviderAdapter
from studiogen.clients.registry import AdapterRegistry
from studiogen.errors import (
    AuthError,
    BackendError,
    MalformedPayload,
    NetworkError,
    NoStructuredPayload,
)
from studiogen.models import GenerationMode, ProjectFile, ProviderId
from studiogen.services.generation_service import GenerationService, observes_progress
from studiogen.services.response_cache import InMemoryStore, ResponseCache
from studiogen.services.stream_ingest import GenerationCallbacks
from tests.conftest import make_request, sample_result_json


def _chunks(text: str, size: int = 20) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


class ScriptedAdapter(ProviderAdapter):
    """Plays one script per ``stream`` call (the last script repeats).

    A script item is a text fragment, an exception to raise, or an
    ``asyncio.Event`` to wait on.
    """

    provider_id = ProviderId.GEMINI

    def __init__(self, *scripts: list) -> None:
        self.scripts = scripts
        self.calls = 0
        self.closed = 0

    async def stream(self, request):
        self.calls += 1
        script = self.scripts[min(self.calls - 1, len(self.scripts) - 1)]
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                yield item
        finally:
            self.closed += 1


class Recorder(GenerationCallbacks):
    def __init__(self) -> None:
        self.raw: list[str] = []
        self.thoughts: list[str] = []
        self.files: list[str] = []
        self.retries: list[tuple[int, Exception]] = []
        super().__init__(
            on_raw_chunk=self.raw.append,
            on_thought=self.thoughts.append,
            on_file_progress=self.files.append,
            on_retry=lambda attempt, exc: self.retries.append((attempt, exc)),
        )


def _service(adapter: ProviderAdapter, cache: ResponseCache | None = None, **kwargs) -> GenerationService:
    return GenerationService(AdapterRegistry({adapter.provider_id: adapter}), cache, **kwargs)


def _cache() -> ResponseCache:
    return ResponseCache(InMemoryStore(), eligible_models=frozenset({"gemini-2.0-flash"}))


GOOD = "Creating the app.\n---\n" + sample_result_json()


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_success_reports_progress():
    adapter = ScriptedAdapter(_chunks(GOOD))
    rec = Recorder()

    outcome = await _service(adapter).generate(make_request(), rec)

    assert outcome.ok
    assert outcome.error is None
    assert outcome.thought == "Creating the app."
    assert outcome.attempts == 1
    assert outcome.from_cache is False
    assert [f.name for f in outcome.result.files] == ["index.html", "script.js"]
    assert "".join(rec.raw) == GOOD
    assert rec.thoughts == ["Creating the app."]
    assert rec.files == ["index.html", "script.js"]
    assert adapter.closed == 1


@pytest.mark.asyncio
async def test_no_file_progress_for_followup_chat():
    existing = (ProjectFile(name="index.html", language="html", content="<p/>"),)
    rec = Recorder()
    await _service(ScriptedAdapter([GOOD])).generate(make_request(files=existing), rec)
    assert rec.files == []


def test_observes_progress():
    existing = (ProjectFile(name="a", language="text", content=""),)
    assert observes_progress(make_request())
    assert not observes_progress(make_request(files=existing))
    assert observes_progress(make_request(files=existing, mode=GenerationMode.AGENT))


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_malformed_response_is_retried():
    adapter = ScriptedAdapter(["{not json}"], [GOOD])
    rec = Recorder()

    outcome = await _service(adapter).generate(make_request(), rec)

    assert outcome.ok
    assert outcome.attempts == 2
    assert len(rec.retries) == 1
    attempt, exc = rec.retries[0]
    assert attempt == 1
    assert isinstance(exc, MalformedPayload)


@pytest.mark.asyncio
async def test_thought_emitted_at_most_once_across_retries():
    adapter = ScriptedAdapter(["First plan\n---\nno json here"], ["Second plan\n---\n" + sample_result_json()])
    rec = Recorder()

    outcome = await _service(adapter).generate(make_request(), rec)

    assert outcome.ok
    assert rec.thoughts == ["First plan"]


@pytest.mark.asyncio
async def test_network_error_mid_stream_is_retried():
    adapter = ScriptedAdapter(["partial", NetworkError("gemini", "reset")], [GOOD])
    outcome = await _service(adapter).generate(make_request())
    assert outcome.ok
    assert adapter.calls == 2


@pytest.mark.asyncio
async def test_attempts_exhausted_returns_last_error():
    adapter = ScriptedAdapter(["plain prose, no object"])
    outcome = await _service(adapter, max_attempts=2).generate(make_request())
    assert not outcome.ok
    assert isinstance(outcome.error, NoStructuredPayload)
    assert outcome.attempts == 2
    assert adapter.calls == 2


@pytest.mark.asyncio
async def test_auth_error_is_terminal():
    adapter = ScriptedAdapter([AuthError("gemini", "bad key")])
    rec = Recorder()
    outcome = await _service(adapter).generate(make_request(), rec)
    assert isinstance(outcome.error, AuthError)
    assert outcome.attempts == 1
    assert adapter.calls == 1
    assert rec.retries == []


@pytest.mark.asyncio
async def test_missing_adapter_is_backend_error():
    service = GenerationService(AdapterRegistry())
    outcome = await service.generate(make_request(provider_id=ProviderId.KIMI))
    assert isinstance(outcome.error, BackendError)


@pytest.mark.asyncio
async def test_retry_delay_uses_injected_sleep():
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    adapter = ScriptedAdapter(["{bad}"], [GOOD])
    service = _service(adapter, retry_delay=1.5, sleep=fake_sleep)
    outcome = await service.generate(make_request())
    assert outcome.ok
    assert delays == [1.5]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cache_hit_replays_without_adapter():
    cache = _cache()
    request = make_request(model_id="gemini-2.0-flash")

    first = await _service(ScriptedAdapter(_chunks(GOOD)), cache).generate(request)
    assert first.ok and not first.from_cache

    replay_adapter = ScriptedAdapter([AuthError("gemini", "should not be called")])
    rec = Recorder()
    second = await _service(replay_adapter, cache).generate(request, rec)

    assert second.ok
    assert second.from_cache is True
    assert second.thought == "Creating the app."
    assert replay_adapter.calls == 0
    assert rec.raw == [GOOD]


@pytest.mark.asyncio
async def test_failed_generation_is_not_cached():
    cache = _cache()
    request = make_request(model_id="gemini-2.0-flash")
    await _service(ScriptedAdapter(["{bad}"]), cache).generate(request)
    assert (await cache.stats()).total_entries == 0


@pytest.mark.asyncio
async def test_ineligible_model_skips_cache():
    cache = _cache()
    await _service(ScriptedAdapter([GOOD]), cache).generate(make_request(model_id="gemini-2.5-flash"))
    assert (await cache.stats()).total_entries == 0


@pytest.mark.asyncio
async def test_cache_failure_is_treated_as_miss():
    class BrokenStore(InMemoryStore):
        async def get(self, key):
            raise OSError("disk gone")

    cache = ResponseCache(BrokenStore(), eligible_models=frozenset({"gemini-2.0-flash"}))
    adapter = ScriptedAdapter([GOOD])
    outcome = await _service(adapter, cache).generate(make_request(model_id="gemini-2.0-flash"))
    assert outcome.ok
    assert adapter.calls == 1


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_event_stops_stream_and_skips_cache():
    cache = _cache()
    cancel = asyncio.Event()
    adapter = ScriptedAdapter(_chunks(GOOD))
    callbacks = GenerationCallbacks(on_raw_chunk=lambda _: cancel.set())

    outcome = await _service(adapter, cache).generate(
        make_request(model_id="gemini-2.0-flash"), callbacks, cancel,
    )

    assert outcome.cancelled
    assert not outcome.ok
    assert adapter.closed == 1
    assert (await cache.stats()).total_entries == 0


@pytest.mark.asyncio
async def test_cancel_during_retry_wait():
    cancel = asyncio.Event()
    adapter = ScriptedAdapter(["{bad}"], [GOOD])
    callbacks = GenerationCallbacks(on_retry=lambda attempt, exc: cancel.set())

    outcome = await _service(adapter).generate(make_request(), callbacks, cancel)

    assert outcome.cancelled
    assert outcome.attempts == 1
    assert adapter.calls == 1


@pytest.mark.asyncio
async def test_job_cancel_closes_blocked_stream():
    started = asyncio.Event()
    never = asyncio.Event()
    adapter = ScriptedAdapter(["Plan\n---\n", never])
    service = _service(adapter)

    job = service.start(make_request(), GenerationCallbacks(on_raw_chunk=lambda _: started.set()))
    await asyncio.wait_for(started.wait(), timeout=1)
    job.cancel()
    outcome = await job.wait()

    assert outcome.cancelled
    assert job.done
    assert adapter.closed == 1


@pytest.mark.asyncio
async def test_job_wait_returns_outcome():
    job = _service(ScriptedAdapter([GOOD])).start(make_request())
    outcome = await job.wait()
    assert outcome.ok


@pytest.mark.asyncio
async def test_cancel_event_interrupts_blocked_stream():
    started = asyncio.Event()
    never = asyncio.Event()
    cancel = asyncio.Event()
    adapter = ScriptedAdapter(["Plan\n---\n", never, GOOD])
    callbacks = GenerationCallbacks(on_raw_chunk=lambda _: started.set())

    task = asyncio.create_task(_service(adapter).generate(make_request(), callbacks, cancel))
    await asyncio.wait_for(started.wait(), timeout=1)
    cancel.set()
    outcome = await asyncio.wait_for(task, timeout=1)

    assert outcome.cancelled
    assert adapter.closed == 1


@pytest.mark.asyncio
async def test_cancel_during_cache_lookup_skips_replay():
    cancel = asyncio.Event()

    class SlowStore(InMemoryStore):
        async def get(self, key):
            cancel.set()
            return await super().get(key)

    cache = ResponseCache(SlowStore(), eligible_models=frozenset({"gemini-2.0-flash"}))
    request = make_request(model_id="gemini-2.0-flash")
    await _service(ScriptedAdapter([GOOD]), cache).generate(request)
    cancel.clear()

    rec = Recorder()
    outcome = await _service(ScriptedAdapter([GOOD]), cache).generate(request, rec, cancel)

    assert outcome.cancelled
    assert rec.raw == []


def test_explicit_max_attempts_is_respected(monkeypatch):
    monkeypatch.setattr("studiogen.config.settings.GENERATION_MAX_ATTEMPTS", 5)
    assert GenerationService(AdapterRegistry()).max_attempts == 5
    assert GenerationService(AdapterRegistry(), max_attempts=2).max_attempts == 2
    assert GenerationService(AdapterRegistry(), max_attempts=0).max_attempts == 1
