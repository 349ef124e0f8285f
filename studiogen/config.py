"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Provider credentials are optional here: the
host application normally supplies per-user keys at request time, and the
values below only act as server-side defaults.
"""

VERSION = "0.1.0"

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings — sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    DEBUG: bool = False
    FRONTEND_URL: str = "http://localhost:5173"

    # -------------------------------------------------------------------------
    # Provider credentials.  Gemini and OpenRouter are called directly;
    # OpenAI and DeepSeek keys are only read by the proxy router, never by
    # the client-side adapters.
    # -------------------------------------------------------------------------
    GEMINI_API_KEY: str = ""
    OPENROUTER_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    DEEPSEEK_API_KEY: str = ""

    # Local endpoints
    PROXY_URL: str = "http://localhost:8000/api/generate"
    ADMIN_ACTION_URL: str = "http://localhost:8000/api/supabase-admin"

    # OpenRouter attribution headers
    OPENROUTER_REFERER: str = "https://codagem.studio"
    OPENROUTER_TITLE: str = "Codagem Studio"
    KIMI_MODEL: str = "moonshotai/kimi-k2"

    # Transport
    LLM_REQUEST_TIMEOUT: float = 300.0
    LLM_MAX_RETRIES: int = 2          # stream-open retries on 5xx / transport errors
    LLM_RETRY_BACKOFF_BASE: float = 2.0

    # -------------------------------------------------------------------------
    # Response cache.  Only models listed here are cached; a cached reply is
    # replayed verbatim until the TTL expires.
    # -------------------------------------------------------------------------
    CACHE_TTL_SECONDS: int = 24 * 60 * 60
    CACHE_ELIGIBLE_MODELS: str = "gemini-2.0-flash"  # comma-separated
    CACHE_ATTACHMENT_PREFIX_CHARS: int = 100

    # Whole-request retries (parse failures, transient network errors)
    GENERATION_MAX_ATTEMPTS: int = 3
    GENERATION_RETRY_DELAY: float = 2.0

    @model_validator(mode="after")
    def _check_attempts(self) -> "Settings":
        """At least one attempt is always made."""
        if self.GENERATION_MAX_ATTEMPTS < 1:
            self.GENERATION_MAX_ATTEMPTS = 1
        return self

    @property
    def cache_eligible_models(self) -> frozenset[str]:
        """``CACHE_ELIGIBLE_MODELS`` split into a set of model IDs."""
        return frozenset(
            m.strip() for m in self.CACHE_ELIGIBLE_MODELS.split(",") if m.strip()
        )


settings = Settings()
