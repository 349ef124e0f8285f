"""Privileged-action client -- forwards database admin actions.

The generated result may carry an opaque admin action (e.g. ``{"query":
"CREATE TABLE ..."}``).  It is posted verbatim, merged over the
host-supplied context (project URL and service key), to the admin
endpoint, which answers ``{success, error?}``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from studiogen.clients.llm_client import get_client
from studiogen.config import settings
from studiogen.models import AdminActionResult

logger = logging.getLogger(__name__)


class AdminActionClient:
    """POSTs admin actions to ``ADMIN_ACTION_URL``.  Never raises."""

    def __init__(
        self,
        context: dict[str, Any] | None = None,
        *,
        url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.context = dict(context or {})
        self._url = url
        self._client = client

    @property
    def url(self) -> str:
        return self._url or settings.ADMIN_ACTION_URL

    async def execute(self, action: dict[str, Any]) -> AdminActionResult:
        payload = {**self.context, **action}
        client = self._client or get_client()
        try:
            response = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Admin action request failed: %s", exc)
            return AdminActionResult(success=False, error=str(exc) or type(exc).__name__)

        try:
            data = response.json()
        except ValueError:
            text = response.text.strip()[:500]
            logger.warning("Admin action returned non-JSON (%d): %s", response.status_code, text)
            return AdminActionResult(
                success=False, error=text or f"HTTP {response.status_code}",
            )

        if not isinstance(data, dict):
            return AdminActionResult(success=False, error="Unexpected response from admin endpoint")

        success = bool(data.get("success")) and response.is_success
        error = data.get("error")
        if not success and not error:
            error = f"HTTP {response.status_code}"
        if not success:
            logger.info("Admin action rejected: %s", error)
        return AdminActionResult(success=success, error=str(error) if error else None)
