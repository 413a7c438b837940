"""Map each model entry's ``sdk`` key to the adapter that serves it."""

import logging
from collections.abc import Mapping

from config.config_loader import AppConfig, ModelConfig
from debate_arena.providers.anthropic import AnthropicProvider
from debate_arena.providers.base import ModelProvider, ProviderError
from debate_arena.providers.local import LocalModelProvider
from debate_arena.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "ollama": LocalModelProvider,
    "openai_compatible": LocalModelProvider,
}


def build_provider(model_cfg: ModelConfig, env: Mapping[str, str]) -> ModelProvider:
    """Instantiate the adapter for one model entry.

    Raises:
        ProviderError: Unknown sdk or missing API key.
    """
    cls = PROVIDER_CLASSES.get(model_cfg.sdk)
    if cls is None:
        raise ProviderError(model_cfg.name, f"Unknown sdk '{model_cfg.sdk}'")
    api_key = env.get(model_cfg.api_key_env, "") if model_cfg.api_key_env else ""
    return cls(model_cfg, api_key)


def build_all_providers(config: AppConfig, env: Mapping[str, str]) -> dict[str, ModelProvider]:
    """Build all available providers. Returns dict keyed by name."""
    providers: dict[str, ModelProvider] = {}
    for name in sorted(config.available_providers):
        try:
            providers[name] = build_provider(config.models[name], env)
        except ProviderError as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers
