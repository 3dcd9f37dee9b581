"""Provider registry: validated construction of provider adapters.

A :class:`ProviderRegistry` is an ordinary value. Build one with
:func:`default_registry` and pass it to whatever constructs sessions.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlparse

from chatloom.config import ProviderConfig
from chatloom.exceptions import ProviderConfigError
from chatloom.provider import (
    ModelInfo,
    ModelProvider,
    create_anthropic_provider,
    create_grok_provider,
    create_local_provider,
    create_mistral_provider,
    create_openai_provider,
)

logger = logging.getLogger(__name__)

LOCAL_PROVIDER = "local"

# (api_key, base_url, default_model) -> provider
ProviderFactory = Callable[[str | None, str | None, str], ModelProvider]


@dataclass
class _Entry:
    factory: ProviderFactory
    default_models: list[ModelInfo] = field(default_factory=list)


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


class ProviderRegistry:
    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        default_models: list[ModelInfo] | None = None,
    ) -> None:
        """Add or replace the provider called *name*."""
        self._entries[name] = _Entry(factory, list(default_models or []))

    def available_providers(self) -> list[str]:
        return list(self._entries)

    def validate_config(self, config: ProviderConfig) -> list[str]:
        """Return every problem with *config*; empty when valid."""
        errors = []
        if not config.provider:
            errors.append("Provider is required")
        elif config.provider not in self._entries:
            errors.append(f"Invalid provider: {config.provider}")

        if not config.api_key and config.provider != LOCAL_PROVIDER:
            errors.append(f"API key is required for {config.provider}")

        if not config.model:
            errors.append(f"Model is required for {config.provider}")
        elif not config.model.strip():
            errors.append("Model cannot be empty")

        if (
            config.provider == LOCAL_PROVIDER
            and config.base_url
            and not _is_valid_url(config.base_url)
        ):
            errors.append("Invalid baseURL for local LLM")
        return errors

    def create_adapter(self, config: ProviderConfig) -> ModelProvider:
        errors = self.validate_config(config)
        if errors:
            raise ProviderConfigError(errors)
        entry = self._entries[config.provider]
        return entry.factory(config.api_key, config.base_url, config.model)

    def default_models(self, provider: str) -> list[ModelInfo]:
        entry = self._entries.get(provider)
        return list(entry.default_models) if entry else []

    async def get_available_models(self, provider: str) -> list[ModelInfo]:
        """List models for *provider*, falling back to the built-in list.

        Local servers accept any model name, so nothing is listed for
        them.
        """
        if provider == LOCAL_PROVIDER:
            return []
        entry = self._entries.get(provider)
        if entry is None:
            return []
        try:
            adapter = entry.factory("dummy", None, "dummy")
            return await adapter.models()
        except Exception as e:
            logger.warning(f"Listing models for {provider} failed: {e}")
            return self.default_models(provider)


def _models(provider: str, *specs: tuple) -> list[ModelInfo]:
    return [
        ModelInfo(
            id=model_id,
            name=name,
            provider=provider,
            context_length=context_length,
            supports_tools=supports_tools,
        )
        for model_id, name, context_length, supports_tools in specs
    ]


def default_registry() -> ProviderRegistry:
    """A fresh registry with the built-in providers."""
    registry = ProviderRegistry()
    registry.register("openai", create_openai_provider, _models(
        "openai",
        ("gpt-4", "GPT-4", 8192, True),
        ("gpt-4-turbo", "GPT-4 Turbo", 128000, True),
        ("gpt-3.5-turbo", "GPT-3.5 Turbo", 4096, True),
    ))
    registry.register("anthropic", create_anthropic_provider, _models(
        "anthropic",
        ("claude-3-opus", "Claude 3 Opus", 200000, True),
        ("claude-3-sonnet", "Claude 3 Sonnet", 200000, True),
        ("claude-3-haiku", "Claude 3 Haiku", 200000, True),
    ))
    registry.register("mistral", create_mistral_provider, _models(
        "mistral",
        ("mistral-large", "Mistral Large", 32000, False),
        ("mistral-medium", "Mistral Medium", 32000, False),
        ("mistral-small", "Mistral Small", 32000, False),
    ))
    registry.register("grok", create_grok_provider, _models(
        "grok",
        ("grok-beta", "Grok Beta", 8192, False),
    ))
    registry.register(LOCAL_PROVIDER, create_local_provider, _models(
        LOCAL_PROVIDER,
        ("llama2", "Llama 2", 4096, False),
        ("codellama", "Code Llama", 4096, False),
        ("mistral", "Mistral (Local)", 32000, False),
    ))
    return registry
