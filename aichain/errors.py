"""Exception hierarchy shared by the parser, resolver, providers and executor."""

from enum import Enum
from typing import Optional


class AIChainError(Exception):
    """Base class for all aichain errors."""


# ============================================================================
# Parse errors
# ============================================================================


class ParseErrorKind(str, Enum):
    EMPTY_CHAIN = "empty_chain"
    EMPTY_STEP = "empty_step"
    TRAILING_ARROW = "trailing_arrow"
    MISSING_COLON = "missing_colon"
    EMPTY_PROVIDER = "empty_provider"
    EMPTY_ACTION = "empty_action"
    UNEXPECTED_COLON = "unexpected_colon"


class ParseError(AIChainError):
    """Malformed chain text. `position` is the offset of the offending token."""

    def __init__(self, kind: ParseErrorKind, position: int, message: str):
        self.kind = kind
        self.position = position
        self.message = message
        super().__init__(f"{message} (at offset {position})")


# ============================================================================
# Auth errors
# ============================================================================


class AuthErrorKind(str, Enum):
    NO_METHOD_AVAILABLE = "no_method_available"


class AuthError(AIChainError):
    """No usable credential could be found for a provider."""

    def __init__(
        self,
        provider_id: str,
        kind: AuthErrorKind = AuthErrorKind.NO_METHOD_AVAILABLE,
        message: Optional[str] = None,
    ):
        self.provider_id = provider_id
        self.kind = kind
        super().__init__(
            message or f"No authentication method available for provider: {provider_id}"
        )


# ============================================================================
# Provider errors
# ============================================================================


class ProviderErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    INVALID_ACTION = "invalid_action"
    TIMEOUT = "timeout"


# Retrying these cannot change the outcome
NON_RETRYABLE_KINDS = frozenset(
    {ProviderErrorKind.UNAUTHENTICATED, ProviderErrorKind.INVALID_ACTION}
)


class ProviderError(AIChainError):
    """Failure reported by (or on behalf of) a provider call."""

    def __init__(self, kind: ProviderErrorKind, provider_id: str, message: str = ""):
        self.kind = kind
        self.provider_id = provider_id
        self.message = message or kind.value
        super().__init__(f"{provider_id}: {kind.value}: {self.message}")

    @property
    def retryable(self) -> bool:
        return self.kind not in NON_RETRYABLE_KINDS


class CircuitOpenError(AIChainError):
    """Raised instead of invoking a provider whose circuit is open."""

    def __init__(self, provider_id: str, retry_after: float):
        self.provider_id = provider_id
        self.retry_after = retry_after
        super().__init__(
            f"Circuit open for provider {provider_id} (retry in {retry_after:.1f}s)"
        )


class UnknownProviderError(AIChainError):
    """A pipeline references a provider that is not registered."""

    def __init__(self, provider_id: str, known: list):
        self.provider_id = provider_id
        self.known = sorted(known)
        super().__init__(
            f"Unknown provider: '{provider_id}'. Valid providers are: {self.known}"
        )


# ============================================================================
# Transform / run errors
# ============================================================================


class TransformError(AIChainError):
    """A transform could not handle its input. Never retried."""

    def __init__(self, transform_name: str, message: str):
        self.transform_name = transform_name
        super().__init__(f"Transform '{transform_name}' failed: {message}")


class PipelineCancelled(AIChainError):
    """The run-level cancellation signal fired."""

    def __init__(self, step_index: int):
        self.step_index = step_index
        super().__init__(f"Pipeline cancelled at step {step_index}")


class ConfigError(AIChainError):
    """A pipeline definitions file is malformed."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")
