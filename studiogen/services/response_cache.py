"""Response cache -- content-addressed TTL cache of raw model responses.

Only requests for a designated low-cost model are cached.  The cache maps a
request fingerprint to the raw, pre-parse response text; a hit is replayed
through stream ingestion exactly like a live stream.

Storage is an injectable async key-value store; expiry is enforced here,
not by the store.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from studiogen.config import settings
from studiogen.models import CacheStats, GenerationRequest

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "response_cache_"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal async string store the cache is built on."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryStore:
    """Process-local ``KeyValueStore``."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


def compute_fingerprint(request: GenerationRequest) -> str:
    """Deterministic hash of the semantically relevant request fields.

    Attachments contribute only their first
    ``CACHE_ATTACHMENT_PREFIX_CHARS`` characters, so two attachments that
    share that prefix collide.
    """
    prefix = settings.CACHE_ATTACHMENT_PREFIX_CHARS
    projection = {
        "prompt": request.prompt,
        "files": [
            {"name": f.name, "content": f.content, "language": f.language}
            for f in request.existing_files
        ],
        "environment": request.environment,
        "mode": request.mode.value,
        "model": request.model_id,
        "attachments": [
            {"data": a.data[:prefix], "mime_type": a.mime_type}
            for a in request.attachments
        ],
    }
    raw = json.dumps(projection, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    response: str
    created_at: float

    def to_json(self) -> str:
        return json.dumps(
            {"fingerprint": self.fingerprint, "response": self.response, "created_at": self.created_at}
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            fingerprint=str(data["fingerprint"]),
            response=str(data["response"]),
            created_at=float(data["created_at"]),
        )


class ResponseCache:
    """TTL cache over a ``KeyValueStore``.

    Concurrent requests may look up and store independently; the last
    writer for a fingerprint wins.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        ttl_seconds: float | None = None,
        eligible_models: frozenset[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else InMemoryStore()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL_SECONDS
        self.eligible_models = (
            eligible_models if eligible_models is not None else settings.cache_eligible_models
        )
        self._clock = clock

    def is_eligible(self, request: GenerationRequest) -> bool:
        return request.model_id in self.eligible_models

    def _is_valid(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at < self.ttl_seconds

    async def _load(self, key: str) -> CacheEntry | None:
        """Read an entry; corrupt entries raise ``ValueError``."""
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise ValueError(f"corrupt cache entry {key}") from exc

    async def lookup(self, fingerprint: str) -> str | None:
        """Return the cached response, or ``None`` on miss.

        Expired and corrupt entries are deleted as a side effect.
        """
        key = CACHE_KEY_PREFIX + fingerprint
        try:
            entry = await self._load(key)
        except ValueError:
            logger.warning("Dropping corrupt cache entry %s", fingerprint)
            await self._store.delete(key)
            return None
        if entry is None:
            return None
        if not self._is_valid(entry):
            await self._store.delete(key)
            logger.debug("Cache entry %s expired", fingerprint)
            return None
        logger.info("Cache hit %s", fingerprint)
        return entry.response

    async def store(self, fingerprint: str, response: str) -> None:
        entry = CacheEntry(fingerprint=fingerprint, response=response, created_at=self._clock())
        await self._store.set(CACHE_KEY_PREFIX + fingerprint, entry.to_json())
        logger.debug("Cached response %s (%d chars)", fingerprint, len(response))

    async def purge_expired(self) -> int:
        """Delete expired and corrupt entries.  Returns the number removed."""
        removed = 0
        for key in await self._store.keys(CACHE_KEY_PREFIX):
            try:
                entry = await self._load(key)
            except ValueError:
                entry = None
            if entry is None or not self._is_valid(entry):
                await self._store.delete(key)
                removed += 1
        if removed:
            logger.info("Purged %d expired cache entries", removed)
        return removed

    async def stats(self) -> CacheStats:
        total = valid = expired = 0
        for key in await self._store.keys(CACHE_KEY_PREFIX):
            total += 1
            try:
                entry = await self._load(key)
            except ValueError:
                entry = None
            if entry is not None and self._is_valid(entry):
                valid += 1
            else:
                expired += 1
        return CacheStats(total_entries=total, valid_entries=valid, expired_entries=expired)
