"""Project state reconciler -- applies generation outcomes to a project.

The reconciler owns one project's in-memory state: its files, environment
variables, active file and transcript.  A result is merged with upsert
semantics (never a full replace).  A failed or cancelled outcome leaves
files and environment untouched and only updates the transcript.

At most one request is in flight per project.  ``begin_request`` hands out
a token; ``commit`` and ``cancel`` only accept the current token, so a late
result from an abandoned request cannot overwrite newer state.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from studiogen.clients.admin_client import AdminActionClient
from studiogen.errors import GenerationError, RequestInFlightError, StaleRequestError
from studiogen.models import ChatMessage, GenerationResult, ProjectFile
from studiogen.services.generation_service import GenerationOutcome

logger = logging.getLogger(__name__)

THINKING_TEXT = "Thinking..."
DEFAULT_COMPLETION_TEXT = "Generation complete."
CANCELLED_TEXT = "Generation cancelled."


@dataclass
class ProjectState:
    """Mutable snapshot of one project."""

    files: list[ProjectFile] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    active_file: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    project_name: str | None = None
    in_flight_token: str | None = None

    def file_names(self) -> list[str]:
        return [f.name for f in self.files]

    def get_file(self, name: str) -> ProjectFile | None:
        for f in self.files:
            if f.name == name:
                return f
        return None

    def delete_file(self, name: str) -> None:
        """Remove *name*; the active file moves to its predecessor."""
        idx = next((i for i, f in enumerate(self.files) if f.name == name), None)
        if idx is None:
            return
        del self.files[idx]
        if self.active_file == name:
            self.active_file = self.files[max(0, idx - 1)].name if self.files else None

    def rename_file(self, old: str, new: str) -> None:
        """Rename *old* in place, keeping its position."""
        if old == new:
            return
        if self.get_file(new) is not None:
            raise ValueError(f"A file named {new!r} already exists")
        for i, f in enumerate(self.files):
            if f.name == old:
                self.files[i] = f.model_copy(update={"name": new})
                break
        else:
            raise KeyError(old)
        if self.active_file == old:
            self.active_file = new


# ---------------------------------------------------------------------------
# Pure merge rules
# ---------------------------------------------------------------------------


def merge_files(existing: Iterable[ProjectFile], incoming: Iterable[ProjectFile]) -> list[ProjectFile]:
    """Name-keyed ordered upsert.

    Existing names keep their position with the incoming content; new names
    are appended in result order.  ``[A, B, C] + [B', D] -> [A, B', C, D]``.
    """
    merged: dict[str, ProjectFile] = {f.name: f for f in existing}
    for f in incoming:
        merged[f.name] = f
    return list(merged.values())


def select_active_file(current: str | None, result_files: list[ProjectFile]) -> str | None:
    """Pick an active file only when none is selected.

    Prefers the first result file whose name contains ``html``.
    """
    if current or not result_files:
        return current
    for f in result_files:
        if "html" in f.name:
            return f.name
    return result_files[0].name


def apply_environment_delta(
    environment: dict[str, str],
    delta: dict[str, str | None],
    secret_overrides: dict[str, str] | None = None,
) -> dict[str, str]:
    """Return *environment* updated by *delta*.

    ``None`` deletes a key; any other value upserts it; keys absent from the
    delta are untouched.  A delta key the host holds a secret for takes the
    host's value instead of the generated placeholder.
    """
    overrides = secret_overrides or {}
    updated = dict(environment)
    for key, value in delta.items():
        if key in overrides and overrides[key]:
            value = overrides[key]
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    return updated


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

PersistCallback = Callable[[ProjectState], Awaitable[None]]


class ProjectReconciler:
    """Single-flight owner of one ``ProjectState``."""

    def __init__(
        self,
        state: ProjectState | None = None,
        *,
        admin_client: AdminActionClient | None = None,
        persist: PersistCallback | None = None,
        secret_overrides: dict[str, str] | None = None,
    ) -> None:
        self.state = state or ProjectState()
        self.admin_client = admin_client
        self.persist = persist
        self.secret_overrides = dict(secret_overrides or {})
        self._placeholder: ChatMessage | None = None

    @property
    def in_flight(self) -> bool:
        return self.state.in_flight_token is not None

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def begin_request(self, prompt: str) -> str:
        """Record the user's prompt and a thinking placeholder.

        Returns the request token that ``commit`` / ``cancel`` must present.

        Raises:
            RequestInFlightError: Another request already owns the project.
        """
        if self.state.in_flight_token is not None:
            raise RequestInFlightError(self.state.in_flight_token)
        token = uuid.uuid4().hex
        self.state.in_flight_token = token
        self.state.messages.append(ChatMessage(role="user", content=prompt))
        self._placeholder = ChatMessage(role="assistant", content=THINKING_TEXT, is_thinking=True)
        self.state.messages.append(self._placeholder)
        return token

    def show_thought(self, token: str, thought: str) -> None:
        """Replace the placeholder text with the model's thought."""
        self._check_token(token)
        if self._placeholder is not None and self._placeholder.is_thinking and thought:
            self._placeholder.content = thought

    def note_retry(self, token: str, attempt: int, max_attempts: int, error: GenerationError) -> None:
        """Tell the user an attempt failed and another is coming."""
        self._check_token(token)
        self.state.messages.append(ChatMessage(
            role="assistant",
            content=(
                f"Could not read the AI response (attempt {attempt}/{max_attempts}): "
                f"{error.message} Retrying..."
            ),
        ))

    def cancel(self, token: str) -> None:
        """Release the project without touching files or environment."""
        self._check_token(token)
        self._finish_placeholder(CANCELLED_TEXT)
        self._release()
        logger.info("Request %s cancelled", token[:8])

    async def commit(self, token: str, outcome: GenerationOutcome) -> None:
        """Apply *outcome* to the project.

        Raises:
            StaleRequestError: *token* is not the in-flight request.  Nothing
                is mutated.
        """
        self._check_token(token)
        try:
            if outcome.cancelled:
                self._finish_placeholder(CANCELLED_TEXT)
                logger.info("Request %s cancelled", token[:8])
            elif outcome.result is None:
                error = outcome.error
                text = error.message if error is not None else "Unknown error after several attempts."
                self._finish_placeholder(f"Error: {text}")
                logger.info("Request %s failed: %s", token[:8], text)
            else:
                self._apply_result(outcome.result, from_cache=outcome.from_cache)
                if outcome.result.admin_action:
                    await self._forward_admin_action(outcome.result.admin_action)
        finally:
            self._release()

        await self._persist()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_token(self, token: str) -> None:
        if token != self.state.in_flight_token:
            raise StaleRequestError(token, self.state.in_flight_token)

    def _release(self) -> None:
        self.state.in_flight_token = None
        self._placeholder = None

    def _finish_placeholder(
        self, content: str, *, summary: str | None = None, from_cache: bool = False,
    ) -> None:
        msg = self._placeholder
        if msg is None:
            self.state.messages.append(ChatMessage(role="assistant", content=content))
            return
        msg.content = content
        msg.summary = summary
        msg.is_thinking = False
        msg.from_cache = from_cache

    def _apply_result(self, result: GenerationResult, *, from_cache: bool) -> None:
        state = self.state
        if result.files:
            state.files = merge_files(state.files, result.files)
            state.active_file = select_active_file(state.active_file, result.files)
        if result.environment_delta:
            state.environment = apply_environment_delta(
                state.environment, result.environment_delta, self.secret_overrides,
            )
        self._finish_placeholder(
            result.message or DEFAULT_COMPLETION_TEXT,
            summary=result.summary,
            from_cache=from_cache,
        )
        logger.info(
            "Reconciled %d file(s), %d env change(s)%s",
            len(result.files), len(result.environment_delta),
            " (cached)" if from_cache else "",
        )

    async def _forward_admin_action(self, action: dict[str, Any]) -> None:
        if self.admin_client is None:
            logger.warning("Result carried an admin action but no admin client is configured")
            self.state.messages.append(ChatMessage(
                role="system", content="Database action skipped: no admin endpoint configured.",
            ))
            return
        outcome = await self.admin_client.execute(action)
        if outcome.success:
            text = "Database action executed successfully."
        else:
            text = f"Database action failed: {outcome.error or 'unknown error'}"
        self.state.messages.append(ChatMessage(role="system", content=text))

    async def _persist(self) -> None:
        if self.persist is None:
            return
        try:
            await self.persist(copy.deepcopy(self.state))
        except Exception:
            logger.exception("Project persistence failed")
