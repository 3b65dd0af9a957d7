"""Model provider registry for multi-provider support."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from strands.models import BedrockModel

from agent_context.models.config import ModelConfig, ProviderConfig
from agent_context.models.settings import load_settings
from agent_context.providers.base import ProviderType
from agent_context.providers.strands_client import StrandsModelClient

if TYPE_CHECKING:
    from strands.models.model import Model

logger = logging.getLogger(__name__)

PROVIDERS_FILE = "providers.toml"

_default_registry: ModelProviderRegistry | None = None


class ModelProviderRegistry:
    """Registry for model providers and their models.

    Model references use the format "provider.model_name" (e.g. "bedrock.nova-pro").
    A bare name resolves against the default provider; anything else is
    treated as a raw model id.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        self._default_provider: str | None = None

    def register_provider(self, name: str, config: ProviderConfig) -> None:
        """Register a model provider.

        Args:
            name: Provider name (e.g., "bedrock", "anthropic")
            config: Provider configuration

        Raises:
            ValueError: If the provider type is not supported
        """
        ProviderType.parse(config.type)
        self._providers[name] = config
        if config.default:
            self._default_provider = name
        logger.debug("Registered provider: %s (%s)", name, config.type)

    def get_provider(self, name: str) -> ProviderConfig | None:
        return self._providers.get(name)

    def get_default_provider(self) -> str | None:
        return self._default_provider

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    def list_models(self, provider_name: str | None = None) -> list[str]:
        """List registered models as "provider.model_name" references."""
        if provider_name is not None:
            if provider_name not in self._providers:
                return []
            providers = [(provider_name, self._providers[provider_name])]
        else:
            providers = list(self._providers.items())

        return [
            f"{prov_name}.{model_name}"
            for prov_name, prov_config in providers
            for model_name in prov_config.models
        ]

    def resolve_model_id(self, reference: str) -> tuple[str, str, ModelConfig]:
        """Resolve a model reference to provider, model_id, and config.

        Raises:
            ValueError: If a registered provider does not know the model
        """
        if "." in reference:
            provider_name, model_name = reference.split(".", 1)
            provider = self._providers.get(provider_name)
            if provider is not None:
                if model_name in provider.models:
                    model_config = provider.models[model_name]
                    return provider_name, model_config.model_id, model_config
                msg = f"Unknown model '{model_name}' in provider '{provider_name}'"
                raise ValueError(msg)

        if self._default_provider:
            provider = self._providers[self._default_provider]
            if reference in provider.models:
                model_config = provider.models[reference]
                return self._default_provider, model_config.model_id, model_config

        logger.debug("Treating '%s' as raw model_id", reference)
        provider_name = self._default_provider or ProviderType.BEDROCK.value
        return provider_name, reference, ModelConfig(model_id=reference)

    def max_context_tokens(self, reference: str) -> int | None:
        """Context window configured for a model, if any."""
        _, _, model_config = self.resolve_model_id(reference)
        return model_config.max_context_tokens

    def create_model(self, reference: str, *, overrides: dict[str, Any] | None = None) -> Model:
        """Create a Strands model instance from a reference.

        Args:
            reference: Model reference (e.g., "bedrock.nova-pro", "nova-lite", or raw model_id)
            overrides: Optional config overrides (temperature, max_tokens, streaming)
        """
        provider_name, model_id, model_config = self.resolve_model_id(reference)
        provider = self._providers.get(provider_name)
        effective_config = self.apply_overrides(model_config, overrides)

        provider_type = ProviderType.parse(provider.type) if provider else ProviderType.BEDROCK
        if provider is None or provider_type is ProviderType.BEDROCK:
            region = provider.region if provider and provider.region else "eu-central-1"
            return BedrockModel(
                model_id=model_id,
                region_name=region,
                temperature=effective_config.temperature,
                max_tokens=effective_config.max_tokens,
                streaming=effective_config.streaming,
            )
        if provider_type is ProviderType.ANTHROPIC:
            return self._create_anthropic_model(provider, effective_config)
        if provider_type is ProviderType.OPENAI:
            return self._create_openai_model(provider, effective_config)
        return self._create_ollama_model(provider, effective_config)

    def create_client(
        self,
        reference: str,
        *,
        overrides: dict[str, Any] | None = None,
    ) -> StrandsModelClient:
        """Create a ``ModelClient`` for a model reference."""
        provider_name, model_id, _ = self.resolve_model_id(reference)
        model = self.create_model(reference, overrides=overrides)
        return StrandsModelClient(model, provider=provider_name, model_name=model_id)

    def apply_overrides(self, config: ModelConfig, overrides: dict[str, Any] | None) -> ModelConfig:
        """Apply overrides to a model config, returning a new config."""
        if not overrides:
            return config

        return config.model_copy(
            update={
                "temperature": overrides.get("temperature", config.temperature),
                "max_tokens": overrides.get("max_tokens", config.max_tokens),
                "streaming": overrides.get("streaming", config.streaming),
                "extra": {**config.extra, **overrides.get("extra", {})},
            }
        )

    def _create_anthropic_model(self, provider: ProviderConfig, model_config: ModelConfig) -> Model:
        api_key = os.getenv(provider.api_key_env or "ANTHROPIC_API_KEY")
        if not api_key:
            msg = f"Missing API key: set {provider.api_key_env or 'ANTHROPIC_API_KEY'}"
            raise ValueError(msg)

        from strands.models.anthropic import AnthropicModel  # noqa: PLC0415

        return AnthropicModel(
            model_id=model_config.model_id,
            client_args={"api_key": api_key},
            max_tokens=model_config.max_tokens or 4096,
            params={"temperature": model_config.temperature},
        )

    def _create_openai_model(self, provider: ProviderConfig, model_config: ModelConfig) -> Model:
        api_key = os.getenv(provider.api_key_env or "OPENAI_API_KEY")
        if not api_key:
            msg = f"Missing API key: set {provider.api_key_env or 'OPENAI_API_KEY'}"
            raise ValueError(msg)

        from strands.models.openai import OpenAIModel  # noqa: PLC0415

        params: dict[str, Any] = {"temperature": model_config.temperature}
        if model_config.max_tokens:
            params["max_tokens"] = model_config.max_tokens
        return OpenAIModel(
            model_id=model_config.model_id,
            client_args={"api_key": api_key},
            params=params,
        )

    def _create_ollama_model(self, provider: ProviderConfig, model_config: ModelConfig) -> Model:
        host = provider.extra.get("host")
        if not host:
            msg = "Ollama provider requires extra.host (example: http://ollama:11434)."
            raise ValueError(msg)

        from strands.models.ollama import OllamaModel  # noqa: PLC0415

        return OllamaModel(
            host=host,
            model_id=model_config.model_id,
            temperature=model_config.temperature,
        )


def _load_toml_file(path: Path) -> dict[str, Any]:
    """Load TOML file, return empty dict if not found."""
    if not path.exists():
        return {}
    with path.open("rb") as file:
        return tomllib.load(file)


def _parse_model(provider_name: str, model_name: str, data: dict[str, Any]) -> ModelConfig:
    model_id = data.get("model_id")
    if not model_id:
        msg = f"Missing model_id for model '{model_name}' in provider '{provider_name}'"
        raise ValueError(msg)
    max_context_tokens = data.get("max_context_tokens")
    return ModelConfig(
        model_id=str(model_id),
        temperature=float(data.get("temperature", 0.7)),
        max_tokens=data.get("max_tokens"),
        max_context_tokens=int(max_context_tokens) if max_context_tokens else None,
        streaming=bool(data.get("streaming", True)),
        extra=dict(data.get("extra", {})),
    )


def load_providers(config_dir: str | Path = "config") -> ModelProviderRegistry:
    """Load model providers from ``<config_dir>/providers.toml``.

    A missing file yields an empty registry and a warning; raw model ids
    still resolve to Bedrock.
    """
    registry = ModelProviderRegistry()
    path = Path(config_dir) / PROVIDERS_FILE
    data = _load_toml_file(path)
    if not data:
        logger.warning(
            "No providers found in %s. Model references like 'bedrock.nova-lite' will fail.",
            path,
        )
        return registry

    for name, config in data.get("providers", {}).items():
        models = {
            model_name: _parse_model(name, model_name, model_data)
            for model_name, model_data in config.get("models", {}).items()
        }
        provider_config = ProviderConfig(
            type=str(config.get("type", "bedrock")),
            region=config.get("region"),
            api_key_env=config.get("api_key_env"),
            default=bool(config.get("default", False)),
            models=models,
            extra=dict(config.get("extra", {})),
        )
        registry.register_provider(name, provider_config)

    logger.info(
        "Loaded %d model providers with %d total models",
        len(registry.list_providers()),
        len(registry.list_models()),
    )
    return registry


def get_default_registry(config_dir: str | Path | None = None) -> ModelProviderRegistry:
    """Get or create the default model provider registry.

    Without ``config_dir`` the providers are read from the configured
    ``AGENT_CONTEXT_CONFIG_DIR``.
    """
    global _default_registry  # noqa: PLW0603
    if _default_registry is None:
        _default_registry = load_providers(config_dir or load_settings().config_dir)
    return _default_registry


def reset_default_registry() -> None:
    """Drop the cached default registry."""
    global _default_registry  # noqa: PLW0603
    _default_registry = None
