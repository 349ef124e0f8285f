"""Pydantic data models for the generation pipeline."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class ProviderId(str, Enum):
    """LLM backends the pipeline can talk to."""

    GEMINI = "gemini"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"
    KIMI = "kimi"
    MOCK = "mock"


class GenerationMode(str, Enum):
    """Operating mode of a request."""

    CHAT = "chat"
    AGENT = "agent"


class ProjectFile(BaseModel):
    """A single project file.  Identity is the ``name``."""

    model_config = ConfigDict(frozen=True)

    name: str
    language: str
    content: str


class Attachment(BaseModel):
    """Binary attachment, already base64-encoded by the UI layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data: str
    mime_type: str = Field(..., alias="mimeType")


class GenerationRequest(BaseModel):
    """One unit of generation work (also the cache fingerprint input)."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    existing_files: tuple[ProjectFile, ...] = ()
    environment: dict[str, str] = Field(default_factory=dict)
    mode: GenerationMode = GenerationMode.CHAT
    provider_id: ProviderId = ProviderId.GEMINI
    model_id: str = "gemini-2.5-flash"
    attachments: tuple[Attachment, ...] = ()


class GenerationResult(BaseModel):
    """Structured payload recovered from a completed response.

    Field aliases match the JSON keys the backends are instructed to emit.
    Only ``message`` and ``files`` are enforced; the optional fields are
    coerced or dropped rather than rejecting the whole result.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    files: list[ProjectFile] = Field(default_factory=list)
    summary: str | None = None
    environment_delta: dict[str, str | None] = Field(
        default_factory=dict, alias="environmentVariables"
    )
    admin_action: dict[str, Any] | None = Field(None, alias="supabaseAdminAction")

    @field_validator("files", "environment_delta", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any, info: ValidationInfo) -> Any:
        # ``"files": null`` means "no files", not a malformed payload.
        if value is None:
            return [] if info.field_name == "files" else {}
        return value

    @field_validator("environment_delta", mode="before")
    @classmethod
    def _coerce_env_values(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        return {
            str(k): v if v is None or isinstance(v, str) else json.dumps(v)
            for k, v in value.items()
        }

    @field_validator("summary", mode="before")
    @classmethod
    def _drop_non_string_summary(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("admin_action", mode="before")
    @classmethod
    def _drop_non_object_action(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


class ChatMessage(BaseModel):
    """One transcript entry."""

    role: Literal["user", "assistant", "system"]
    content: str
    summary: str | None = None
    is_thinking: bool = False
    from_cache: bool = False


class CacheStats(BaseModel):
    """Counts reported by ``ResponseCache.stats``."""

    model_config = ConfigDict(frozen=True)

    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0


class AdminActionResult(BaseModel):
    """Response from the privileged-action collaborator."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: str | None = None
