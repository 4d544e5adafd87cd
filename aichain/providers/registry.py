"""Provider registry mapping provider ids to adapter factories."""

import logging
from typing import Callable, Dict, List, Optional

from .. import config as settings
from ..auth import AuthMethod
from .base import BaseAgentProvider, ProviderConfig
from .claude import ClaudeProvider
from .codex import CodexProvider
from .gemini import GeminiProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig, AuthMethod], BaseAgentProvider]

PROVIDER_CLASSES: Dict[str, ProviderFactory] = {
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
    "codex": CodexProvider,
}


class ProviderRegistry:
    """Registry for building providers bound to a resolved auth method."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}
        self._provider_configs: Dict[str, ProviderConfig] = {}

    def register(
        self,
        provider_id: str,
        factory: ProviderFactory,
        config: Optional[ProviderConfig] = None,
    ) -> None:
        """
        Register (or replace) a provider.

        Args:
            provider_id: Provider identifier used in pipeline steps
            factory: Callable (config, auth) -> provider instance
            config: Provider configuration (defaults to an empty config)
        """
        self._factories[provider_id] = factory
        self._provider_configs[provider_id] = config or ProviderConfig(provider_id=provider_id)

    def create(self, provider_id: str, auth: AuthMethod) -> BaseAgentProvider:
        """
        Build a provider instance for one run.

        Args:
            provider_id: Provider identifier
            auth: Auth method resolved for this provider

        Returns:
            Provider instance

        Raises:
            KeyError: Provider not registered
        """
        factory = self._factories[provider_id]
        return factory(self._provider_configs[provider_id], auth)

    def get_config(self, provider_id: str) -> Optional[ProviderConfig]:
        return self._provider_configs.get(provider_id)

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def provider_ids(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, provider_id: str) -> bool:
        return self.has_provider(provider_id)


def default_config(provider_id: str) -> ProviderConfig:
    """ProviderConfig for a built-in provider, from environment settings."""
    return ProviderConfig(
        provider_id=provider_id,
        model=settings.PROVIDER_MODELS.get(provider_id),
        timeout=settings.PROVIDER_TIMEOUT,
        cli_binary=settings.PROVIDER_CLI_BINARIES.get(provider_id),
    )


def default_registry() -> ProviderRegistry:
    """Registry with the built-in Claude, Gemini and Codex adapters."""
    registry = ProviderRegistry()
    for provider_id, provider_class in PROVIDER_CLASSES.items():
        registry.register(provider_id, provider_class, default_config(provider_id))
    logger.debug(f"Registered providers: {registry.provider_ids()}")
    return registry
