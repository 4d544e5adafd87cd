"""Agent provider abstractions for multi-agent support."""

from .base import (
    BaseAgentProvider,
    Capabilities,
    ProviderConfig,
    Response,
    ResponseStream,
)
from .registry import ProviderRegistry, default_registry

__all__ = [
    "BaseAgentProvider",
    "Capabilities",
    "ProviderConfig",
    "Response",
    "ResponseStream",
    "ProviderRegistry",
    "default_registry",
]
