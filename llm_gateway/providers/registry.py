"""Builds provider clients for resolved model configs."""

import httpx

from llm_gateway.config.settings import Settings
from llm_gateway.core.errors import ConfigurationError
from llm_gateway.providers.anthropic import AnthropicProvider
from llm_gateway.providers.base import ChatProvider, ProviderName
from llm_gateway.providers.openai import OpenAIProvider
from llm_gateway.routing.model_map import ModelConfig
from llm_gateway.secrets.store import CachedSecretStore


class ProviderRegistry:
    """Creates a provider client per request with a cached credential."""

    def __init__(
        self,
        settings: Settings,
        secret_store: CachedSecretStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._secret_store = secret_store
        self.transport = transport

    def secret_name_for(self, provider: ProviderName) -> str | None:
        if provider == "openai":
            return self._settings.openai_secret_name
        return self._settings.anthropic_secret_name

    async def _api_key(self, provider: ProviderName) -> str:
        secret_name = self.secret_name_for(provider)
        if not secret_name:
            return ""
        return await self._secret_store.get_secret(secret_name)

    async def provider_for(self, config: ModelConfig) -> ChatProvider:
        api_key = await self._api_key(config.provider)
        if config.provider == "openai":
            return OpenAIProvider(
                api_key=api_key,
                base_url=self._settings.openai_base_url,
                timeout_s=self._settings.provider_timeout_s,
                default_max_tokens=self._settings.default_max_tokens,
                transport=self.transport,
            )
        if config.provider == "anthropic":
            return AnthropicProvider(
                api_key=api_key,
                base_url=self._settings.anthropic_base_url,
                anthropic_version=self._settings.anthropic_version,
                timeout_s=self._settings.provider_timeout_s,
                default_max_tokens=self._settings.default_max_tokens,
                transport=self.transport,
            )
        raise ConfigurationError(f"Unknown provider: {config.provider}")
