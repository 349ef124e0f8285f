"""Adapter registry -- resolves a ``ProviderId`` to its adapter."""

from __future__ import annotations

from studiogen.clients.gemini_client import GeminiAdapter
from studiogen.clients.llm_client import ProviderAdapter
from studiogen.clients.mock_client import MockAdapter
from studiogen.clients.openrouter_client import KimiAdapter, OpenRouterAdapter
from studiogen.clients.proxy_client import ProxyAdapter
from studiogen.errors import BackendError
from studiogen.models import ProviderId


class AdapterRegistry:
    """Mapping of provider IDs to adapter instances."""

    def __init__(self, adapters: dict[ProviderId, ProviderAdapter] | None = None) -> None:
        self._adapters: dict[ProviderId, ProviderAdapter] = dict(adapters or {})

    @classmethod
    def default(
        cls,
        *,
        gemini_api_key: str | None = None,
        openrouter_api_key: str | None = None,
    ) -> "AdapterRegistry":
        """Registry with every built-in adapter.

        Keys left as ``None`` fall back to the configured settings.
        """
        return cls({
            ProviderId.GEMINI: GeminiAdapter(gemini_api_key),
            ProviderId.OPENROUTER: OpenRouterAdapter(openrouter_api_key),
            ProviderId.KIMI: KimiAdapter(openrouter_api_key),
            ProviderId.OPENAI: ProxyAdapter(ProviderId.OPENAI),
            ProviderId.DEEPSEEK: ProxyAdapter(ProviderId.DEEPSEEK),
            ProviderId.MOCK: MockAdapter(),
        })

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider_id] = adapter

    def get(self, provider_id: ProviderId) -> ProviderAdapter:
        try:
            return self._adapters[provider_id]
        except KeyError:
            raise BackendError(provider_id.value, "no adapter registered for this provider") from None

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._adapters
