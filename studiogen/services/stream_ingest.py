"""Stream ingestion and progress extraction.

A ``StreamSession`` accumulates the fragments of one attempt and derives
two progress signals while the stream is still open:

- the *thought*: the text before the first ``\\n---\\n``, emitted once;
- the *file in progress*: the last ``"name": "<value>"`` seen so far,
  emitted whenever it changes.

The file scan is a best-effort regex over a partial document, not a
parse.  It can report names from inside file contents and it will not see
keys with escaped quotes.  The authoritative file list only comes from the
result parser after the stream ends.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from studiogen.errors import GenerationError
from studiogen.services.result_parser import split_thought
from studiogen.services.prompt_builder import THOUGHT_SENTINEL

logger = logging.getLogger(__name__)

_FILE_NAME_RE = re.compile(r'"name":\s*"([^"]+)"')

# Rescan this much of the previous buffer so a key split across two
# fragments is still found.
_SCAN_OVERLAP = 512


@dataclass
class GenerationCallbacks:
    """Observer hooks, all synchronous and all optional.

    ``on_raw_chunk`` receives every fragment in arrival order,
    ``on_thought`` fires at most once per request, ``on_file_progress``
    fires on each change of the observed file name and ``on_retry`` fires
    before a failed attempt is retried.
    """

    on_raw_chunk: Callable[[str], None] | None = None
    on_thought: Callable[[str], None] | None = None
    on_file_progress: Callable[[str], None] | None = None
    on_retry: Callable[[int, GenerationError], None] | None = None


class SessionState(str, enum.Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StreamSession:
    """Per-attempt accumulation state."""

    observe_progress: bool = False
    callbacks: GenerationCallbacks = field(default_factory=GenerationCallbacks)
    buffer: str = ""
    thought_extracted: bool = False
    thought: str | None = None
    last_observed_file_name: str | None = None
    state: SessionState = SessionState.STREAMING
    error: GenerationError | None = None
    _scan_pos: int = field(default=0, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.state is SessionState.CANCELLED

    def feed(self, fragment: str) -> bool:
        """Append *fragment* and emit any progress it reveals.

        Returns ``False`` (and does nothing) once the session has left the
        streaming state.
        """
        if self.state is not SessionState.STREAMING:
            return False
        if not fragment:
            return True

        self.buffer += fragment
        cb = self.callbacks
        if cb.on_raw_chunk:
            cb.on_raw_chunk(fragment)

        if not self.thought_extracted:
            idx = self.buffer.find(THOUGHT_SENTINEL)
            if idx != -1:
                self.thought_extracted = True
                self.thought = self.buffer[:idx].strip()
                if cb.on_thought:
                    cb.on_thought(self.thought)

        if self.observe_progress:
            self._scan_file_names()
        return True

    def _scan_file_names(self) -> None:
        latest = None
        end = self._scan_pos
        for match in _FILE_NAME_RE.finditer(self.buffer, self._scan_pos):
            latest = match.group(1)
            end = match.end()
        self._scan_pos = max(end, len(self.buffer) - _SCAN_OVERLAP, 0)
        if latest is not None and latest != self.last_observed_file_name:
            self.last_observed_file_name = latest
            if self.callbacks.on_file_progress:
                self.callbacks.on_file_progress(latest)

    def complete(self) -> tuple[str | None, str]:
        """End of stream: returns ``(thought, payload)`` for the parser."""
        if self.state is not SessionState.STREAMING:
            raise RuntimeError(f"cannot complete a session in state {self.state.value}")
        self.state = SessionState.COMPLETED
        return split_thought(self.buffer)

    def fail(self, error: GenerationError) -> None:
        """Adapter error: the buffer is discarded without parsing."""
        if self.state is SessionState.STREAMING:
            self.state = SessionState.FAILED
            self.error = error

    def cancel(self) -> None:
        if self.state is SessionState.STREAMING:
            self.state = SessionState.CANCELLED
            logger.debug("Stream session cancelled after %d chars", len(self.buffer))
