"""Credential resolution for providers.

The resolver is a pure lookup over a `ConfiguredMethods` value assembled by
configuration loading (see `aichain.config.discover_configured_methods`). It
never reads files, touches the OS or validates a token over the network; a
credential that turns out to be bad surfaces later as an UNAUTHENTICATED
provider error.

Priority, first match wins:
    0. API key given explicitly (--api-key)       -> ApiKey
    1. existing CLI session for the provider      -> CliAuth
    2. API key from the environment               -> ApiKey
    3. credential from the configuration file     -> AccountBased / ApiKey
    4. interactive (browser) login                -> BrowserAuth
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from .errors import AuthError

logger = logging.getLogger(__name__)


# ============================================================================
# Auth methods
# ============================================================================


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "***"
    return f"{secret[:4]}...{secret[-2:]}"


@dataclass(frozen=True)
class ApiKey:
    key: str = field(repr=False)

    def describe(self) -> str:
        return f"api key {_mask(self.key)}"


@dataclass(frozen=True)
class AccountBased:
    provider: str
    session_token: str = field(repr=False)

    def describe(self) -> str:
        return f"{self.provider} account session {_mask(self.session_token)}"


@dataclass(frozen=True)
class CliAuth:
    provider: str

    def describe(self) -> str:
        return f"{self.provider} CLI session"


@dataclass(frozen=True)
class BrowserAuth:
    callback_url: str

    def describe(self) -> str:
        return f"browser login via {self.callback_url}"


AuthMethod = Union[ApiKey, AccountBased, CliAuth, BrowserAuth]


# ============================================================================
# Configured sources
# ============================================================================

# Environment variables checked for each provider, in order
ENV_KEY_NAMES: Dict[str, Tuple[str, ...]] = {
    "claude": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "codex": ("CODEX_API_KEY", "OPENAI_API_KEY"),
}


def env_key_names(provider_id: str) -> Tuple[str, ...]:
    return ENV_KEY_NAMES.get(provider_id, (f"{provider_id.upper()}_API_KEY",))


@dataclass(frozen=True)
class ConfiguredMethods:
    """
    Everything the resolver may look at, gathered by an outside collaborator.

    Attributes:
        api_keys: provider -> API key set explicitly for this invocation
        cli_sessions: Providers whose CLI session markers were detected
        env: Environment variables (only the *_API_KEY ones matter)
        config_credentials: provider -> {"api_key": ...} or {"session_token": ...}
        interactive: Whether an interactive login may be started
        login_callback_url: Callback URL for the browser login flow
    """

    api_keys: Mapping[str, str] = field(default_factory=dict)
    cli_sessions: FrozenSet[str] = frozenset()
    env: Mapping[str, str] = field(default_factory=dict)
    config_credentials: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    interactive: bool = False
    login_callback_url: Optional[str] = None


def _present(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())


# ============================================================================
# Resolver
# ============================================================================


def _from_explicit_key(provider_id: str, configured: ConfiguredMethods) -> Optional[AuthMethod]:
    value = configured.api_keys.get(provider_id)
    if _present(value):
        return ApiKey(key=value.strip())
    return None


def _from_cli_session(provider_id: str, configured: ConfiguredMethods) -> Optional[AuthMethod]:
    if provider_id in configured.cli_sessions:
        return CliAuth(provider=provider_id)
    return None


def _from_env(provider_id: str, configured: ConfiguredMethods) -> Optional[AuthMethod]:
    for name in env_key_names(provider_id):
        value = configured.env.get(name)
        if _present(value):
            return ApiKey(key=value.strip())
    return None


def _from_config_file(provider_id: str, configured: ConfiguredMethods) -> Optional[AuthMethod]:
    entry = configured.config_credentials.get(provider_id) or {}
    token = entry.get("session_token")
    if _present(token):
        return AccountBased(provider=provider_id, session_token=token.strip())
    key = entry.get("api_key")
    if _present(key):
        return ApiKey(key=key.strip())
    return None


def _from_interactive_login(provider_id: str, configured: ConfiguredMethods) -> Optional[AuthMethod]:
    if configured.interactive and _present(configured.login_callback_url):
        return BrowserAuth(callback_url=configured.login_callback_url)
    return None


AUTH_CHAIN: Tuple[Tuple[str, Callable[[str, ConfiguredMethods], Optional[AuthMethod]]], ...] = (
    ("explicit_key", _from_explicit_key),
    ("cli_session", _from_cli_session),
    ("environment", _from_env),
    ("config_file", _from_config_file),
    ("interactive_login", _from_interactive_login),
)


def resolve(provider_id: str, configured_methods: ConfiguredMethods) -> AuthMethod:
    """
    Return the first usable auth method for a provider.

    Args:
        provider_id: Provider identifier (e.g. "claude")
        configured_methods: Sources assembled by configuration loading

    Returns:
        AuthMethod from the highest-priority source that is present

    Raises:
        AuthError: NO_METHOD_AVAILABLE when every source is absent
    """
    for source, lookup in AUTH_CHAIN:
        method = lookup(provider_id, configured_methods)
        if method is not None:
            logger.debug(f"Resolved auth for {provider_id} from {source}: {method.describe()}")
            return method

    raise AuthError(
        provider_id,
        message=(
            f"No authentication found for provider: {provider_id} "
            f"(log in with its CLI or set {' / '.join(env_key_names(provider_id))})"
        ),
    )


class AuthCache:
    """
    Per-run memo of resolution results.

    A run resolves each provider at most once, the first time a step needs
    it. Failures are memoised too; resolution is pure, so asking again within
    the same run cannot give a different answer. Never share across runs.
    """

    def __init__(self, configured_methods: ConfiguredMethods):
        self.configured_methods = configured_methods
        self._results: Dict[str, Union[AuthMethod, AuthError]] = {}

    def get(self, provider_id: str) -> AuthMethod:
        if provider_id not in self._results:
            try:
                self._results[provider_id] = resolve(provider_id, self.configured_methods)
            except AuthError as e:
                self._results[provider_id] = e

        result = self._results[provider_id]
        if isinstance(result, AuthError):
            raise result
        return result

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._results
