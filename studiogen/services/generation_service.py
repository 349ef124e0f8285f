"""Generation service -- runs one request through the whole pipeline.

    cache lookup -> adapter stream -> ingestion -> parse -> cache store

``generate`` never raises for pipeline failures: every outcome, including
cancellation, comes back as a ``GenerationOutcome``.  Only task
cancellation (``asyncio.CancelledError``) propagates, after the adapter
stream has been closed.

Failed attempts are retried from a fresh session when the error is
retryable (transient network failures and unparseable responses).
Authentication, quota and backend errors end the request immediately.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from studiogen.clients.registry import AdapterRegistry
from studiogen.config import settings
from studiogen.errors import GenerationCancelled, GenerationError
from studiogen.models import GenerationMode, GenerationRequest, GenerationResult
from studiogen.services.response_cache import ResponseCache, compute_fingerprint
from studiogen.services.result_parser import parse_payload
from studiogen.services.stream_ingest import GenerationCallbacks, StreamSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationOutcome:
    """Terminal state of one request.

    Exactly one of ``result`` / ``error`` is set, except for a cancelled
    outcome, which carries ``GenerationCancelled`` as its error.
    """

    result: GenerationResult | None = None
    error: GenerationError | None = None
    thought: str | None = None
    from_cache: bool = False
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.result is not None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, GenerationCancelled)

    @classmethod
    def cancelled_outcome(cls, attempts: int = 0) -> "GenerationOutcome":
        return cls(error=GenerationCancelled(), attempts=attempts)


def observes_progress(request: GenerationRequest) -> bool:
    """File progress is reported for a project's first generation and in agent mode."""
    return not request.existing_files or request.mode is GenerationMode.AGENT


class GenerationService:
    """Stateless orchestrator; one instance serves any number of projects."""

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        cache: ResponseCache | None = None,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry or AdapterRegistry.default()
        self.cache = cache
        self.max_attempts = max(
            1, settings.GENERATION_MAX_ATTEMPTS if max_attempts is None else max_attempts,
        )
        self.retry_delay = settings.GENERATION_RETRY_DELAY if retry_delay is None else retry_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        callbacks: GenerationCallbacks | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationOutcome:
        callbacks = callbacks or GenerationCallbacks()
        fingerprint = None
        if self.cache is not None and self.cache.is_eligible(request):
            fingerprint = compute_fingerprint(request)

        thought_emitted = False
        last_thought: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            if _is_set(cancel_event):
                return GenerationOutcome.cancelled_outcome(attempt - 1)

            session = StreamSession(
                observe_progress=observes_progress(request),
                callbacks=callbacks,
                thought_extracted=thought_emitted,
            )
            try:
                thought, result, from_cache = await self._attempt(
                    request, session, fingerprint, cancel_event, use_cache=attempt == 1,
                )
            except GenerationCancelled:
                logger.info("Generation cancelled (attempt %d)", attempt)
                return GenerationOutcome.cancelled_outcome(attempt)
            except asyncio.CancelledError:
                session.cancel()
                raise
            except GenerationError as exc:
                session.fail(exc)
                thought_emitted = thought_emitted or session.thought_extracted
                last_thought = session.thought or last_thought
                if not exc.retryable or attempt >= self.max_attempts:
                    logger.warning(
                        "Generation failed after %d attempt(s): [%s] %s",
                        attempt, exc.code, exc,
                    )
                    return GenerationOutcome(error=exc, thought=last_thought, attempts=attempt)

                logger.warning(
                    "Generation attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, self.max_attempts, exc.code, self.retry_delay,
                )
                if callbacks.on_retry:
                    callbacks.on_retry(attempt, exc)
                if await self._wait_or_cancel(self.retry_delay, cancel_event):
                    return GenerationOutcome.cancelled_outcome(attempt)
                continue

            return GenerationOutcome(
                result=result,
                thought=thought or last_thought,
                from_cache=from_cache,
                attempts=attempt,
            )

        raise AssertionError("unreachable")  # pragma: no cover

    def start(
        self,
        request: GenerationRequest,
        callbacks: GenerationCallbacks | None = None,
    ) -> "GenerationJob":
        """Schedule ``generate`` as a task and return a cancellable handle."""
        cancel_event = asyncio.Event()
        task = asyncio.create_task(self.generate(request, callbacks, cancel_event))
        return GenerationJob(task, cancel_event)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        request: GenerationRequest,
        session: StreamSession,
        fingerprint: str | None,
        cancel_event: asyncio.Event | None,
        *,
        use_cache: bool,
    ) -> tuple[str | None, GenerationResult, bool]:
        if fingerprint is not None and use_cache:
            cached = await self._cache_lookup(fingerprint)
            if cached is not None:
                if _is_set(cancel_event):
                    session.cancel()
                    raise GenerationCancelled()
                # Replayed as one fragment followed by end-of-stream.
                session.feed(cached)
                thought, payload = session.complete()
                return thought, parse_payload(payload), True

        adapter = self.registry.get(request.provider_id)
        fragments = adapter.stream(request)
        async with aclosing(fragments):
            try:
                while True:
                    fragment = await _next_fragment(fragments, cancel_event)
                    if fragment is None:
                        break
                    session.feed(fragment)
            except GenerationCancelled:
                session.cancel()
                raise

        if _is_set(cancel_event):
            session.cancel()
            raise GenerationCancelled()

        thought, payload = session.complete()
        result = parse_payload(payload)
        if fingerprint is not None:
            await self._cache_store(fingerprint, session.buffer)
        return thought, result, False

    async def _cache_lookup(self, fingerprint: str) -> str | None:
        try:
            return await self.cache.lookup(fingerprint)
        except Exception:
            logger.warning("Cache lookup failed for %s; treating as miss", fingerprint, exc_info=True)
            return None

    async def _cache_store(self, fingerprint: str, response: str) -> None:
        try:
            await self.cache.store(fingerprint, response)
        except Exception:
            logger.warning("Cache store failed for %s", fingerprint, exc_info=True)

    async def _wait_or_cancel(self, delay: float, cancel_event: asyncio.Event | None) -> bool:
        """Sleep for *delay*; returns ``True`` if cancelled meanwhile."""
        if cancel_event is None or delay <= 0:
            await self._sleep(delay)
            return _is_set(cancel_event)
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()


async def _pull(fragments: AsyncIterator[str]) -> str | None:
    try:
        return await anext(fragments)
    except StopAsyncIteration:
        return None


async def _next_fragment(
    fragments: AsyncIterator[str],
    cancel_event: asyncio.Event | None,
) -> str | None:
    """Next fragment, or ``None`` at end-of-stream.

    Raises ``GenerationCancelled`` as soon as *cancel_event* is set, even
    while the adapter is still waiting on its backend.  The pending read is
    cancelled so the adapter closes its response.
    """
    if cancel_event is None:
        return await _pull(fragments)
    if cancel_event.is_set():
        raise GenerationCancelled()

    pull = asyncio.create_task(_pull(fragments))
    stop = asyncio.create_task(cancel_event.wait())
    try:
        await asyncio.wait({pull, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not pull.done():
            pull.cancel()
            # The generator has to be idle before it can be closed.
            await asyncio.wait({pull})

    if cancel_event.is_set():
        if not pull.cancelled():
            pull.exception()  # mark retrieved; the fragment is discarded
        raise GenerationCancelled()
    return pull.result()


class GenerationJob:
    """Handle to a running ``generate`` task."""

    def __init__(self, task: asyncio.Task, cancel_event: asyncio.Event) -> None:
        self._task = task
        self._cancel_event = cancel_event

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Stop the request.  The adapter stream is closed and nothing is cached."""
        self._cancel_event.set()
        self._task.cancel()

    async def wait(self) -> GenerationOutcome:
        """Await the outcome; a cancelled job yields a cancelled outcome."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_event.is_set():
                return GenerationOutcome.cancelled_outcome()
            raise
