"""Generation pipeline error hierarchy.

Every error carries typed fields (not just a message string), a stable
``code`` for the UI layer, a ``retryable`` flag, supports ``to_dict()`` for
serialisation into transcript entries / API responses, and has a readable
``__str__`` for logging.

Adapters and the result parser raise these; the generation service catches
them at its boundary and returns them inside a ``GenerationOutcome`` so
nothing propagates into the UI layer as an uncaught exception.
"""

from __future__ import annotations

QUOTA_GUIDANCE = (
    "Try a more specific prompt, or remove files from the project, "
    "to reduce the size of the request."
)


class GenerationError(Exception):
    """Base error for all generation pipeline failures."""

    code: str = "generation_error"
    retryable: bool = False

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **self.detail,
        }

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Provider adapter errors
# ---------------------------------------------------------------------------


class AuthError(GenerationError):
    """Missing or rejected credential for the selected provider."""

    code = "auth"

    def __init__(self, provider: str, reason: str = "") -> None:
        self.provider = provider
        self.reason = reason
        msg = f"Authentication with {provider} failed"
        if reason:
            msg += f": {reason}"
        msg += ". Check the API key configured for this provider."
        super().__init__(msg, detail={"provider": provider})


class QuotaOrSizeError(GenerationError):
    """Request too large for the model, or the provider rate-limited it."""

    code = "quota_or_size"

    def __init__(self, provider: str, estimated_tokens: int, reason: str = "") -> None:
        self.provider = provider
        self.estimated_tokens = estimated_tokens
        self.reason = reason
        msg = (
            f"{provider} rejected the request as too large or over quota "
            f"(~{estimated_tokens:,} tokens)"
        )
        if reason:
            msg += f": {reason}"
        msg += f". {QUOTA_GUIDANCE}"
        super().__init__(
            msg,
            detail={"provider": provider, "estimated_tokens": estimated_tokens},
        )


class NetworkError(GenerationError):
    """Transient transport failure — the identical request may be retried."""

    code = "network"
    retryable = True

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(
            f"Network error talking to {provider}: {reason}",
            detail={"provider": provider},
        )


class BackendError(GenerationError):
    """Backend-reported failure not otherwise classified."""

    code = "backend"

    def __init__(self, provider: str, reason: str, *, status_code: int | None = None) -> None:
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        prefix = f"{provider} API error"
        if status_code is not None:
            prefix += f" ({status_code})"
        detail: dict = {"provider": provider}
        if status_code is not None:
            detail["status_code"] = status_code
        super().__init__(f"{prefix}: {reason}", detail=detail)


# ---------------------------------------------------------------------------
# Result parser errors
# ---------------------------------------------------------------------------


class NoStructuredPayload(GenerationError):
    """The response contains no ``{ ... }`` span at all."""

    code = "no_structured_payload"
    retryable = True

    def __init__(self, raw_length: int) -> None:
        self.raw_length = raw_length
        super().__init__(
            "No JSON object was found in the AI response. The response may be "
            "incomplete or in an unexpected format.",
            detail={"raw_length": raw_length},
        )


class MalformedPayload(GenerationError):
    """A ``{ ... }`` span was found but is not a valid result object."""

    code = "malformed_payload"
    retryable = True

    def __init__(self, parser_message: str, fragment: str = "") -> None:
        self.parser_message = parser_message
        # Diagnostics only; never shown to the user or repaired.
        self.fragment = fragment
        super().__init__(
            f"The AI response contained malformed JSON. Details: {parser_message}",
            detail={"parser_message": parser_message, "fragment_length": len(fragment)},
        )


class GenerationCancelled(GenerationError):
    """The caller cancelled the request before it resolved."""

    code = "cancelled"

    def __init__(self) -> None:
        super().__init__("Generation was cancelled.")


# ---------------------------------------------------------------------------
# Project state errors: raised to the caller, not wrapped in an outcome
# ---------------------------------------------------------------------------


class ProjectStateError(Exception):
    """Base for misuse of the project state owner."""


class RequestInFlightError(ProjectStateError):
    """A generation is already running against this project."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"A generation request is already in flight ({token})")


class StaleRequestError(ProjectStateError):
    """An outcome arrived for a request that no longer owns the project."""

    def __init__(self, token: str, current: str | None) -> None:
        self.token = token
        self.current = current
        super().__init__(
            f"Request token {token!r} does not match the in-flight request "
            f"({current!r}); result discarded"
        )
