"""Tests for credential resolution and discovery.

Covers:
- Priority order of auth sources
- NO_METHOD_AVAILABLE when nothing is configured
- Per-run AuthCache memoisation
- Secret masking in reprs and descriptions
- CLI session marker detection and ConfiguredMethods assembly
"""

import pytest

from aichain import config
from aichain.auth import (
    AccountBased,
    ApiKey,
    AuthCache,
    BrowserAuth,
    CliAuth,
    ConfiguredMethods,
    env_key_names,
    resolve,
)
from aichain.errors import AuthError, AuthErrorKind

FULL = ConfiguredMethods(
    cli_sessions=frozenset({"claude"}),
    env={"CLAUDE_API_KEY": "sk-env-claude-123456"},
    config_credentials={"claude": {"api_key": "sk-file-claude-123456"}},
    interactive=True,
    login_callback_url="http://localhost:8765/callback",
)


# ==================== Priority ====================


class TestResolvePriority:
    """Each source wins over every source below it."""

    def test_explicit_key_beats_everything(self):
        configured = ConfiguredMethods(
            api_keys={"claude": "sk-flag-claude-123456"},
            cli_sessions=FULL.cli_sessions,
            env=FULL.env,
            config_credentials=FULL.config_credentials,
        )

        assert resolve("claude", configured) == ApiKey(key="sk-flag-claude-123456")

    def test_explicit_key_for_another_provider_is_ignored(self):
        configured = ConfiguredMethods(api_keys={"codex": "sk-codex"}, cli_sessions=FULL.cli_sessions)

        assert resolve("claude", configured) == CliAuth(provider="claude")

    def test_cli_session_wins(self):
        assert resolve("claude", FULL) == CliAuth(provider="claude")

    def test_env_key_when_no_cli_session(self):
        configured = ConfiguredMethods(
            env=FULL.env,
            config_credentials=FULL.config_credentials,
            interactive=True,
            login_callback_url=FULL.login_callback_url,
        )

        assert resolve("claude", configured) == ApiKey(key="sk-env-claude-123456")

    def test_config_file_when_no_env_key(self):
        configured = ConfiguredMethods(
            config_credentials=FULL.config_credentials,
            interactive=True,
            login_callback_url=FULL.login_callback_url,
        )

        assert resolve("claude", configured) == ApiKey(key="sk-file-claude-123456")

    def test_config_session_token_is_account_based(self):
        configured = ConfiguredMethods(
            config_credentials={"gemini": {"session_token": "ya29.token-abcdef", "api_key": "k"}}
        )

        assert resolve("gemini", configured) == AccountBased(
            provider="gemini", session_token="ya29.token-abcdef"
        )

    def test_browser_login_last(self):
        configured = ConfiguredMethods(interactive=True, login_callback_url="http://localhost:1/cb")

        assert resolve("codex", configured) == BrowserAuth(callback_url="http://localhost:1/cb")

    def test_fallback_env_names(self):
        configured = ConfiguredMethods(env={"ANTHROPIC_API_KEY": "sk-ant-abcdefgh"})

        assert resolve("claude", configured) == ApiKey(key="sk-ant-abcdefgh")

    def test_primary_env_name_preferred(self):
        configured = ConfiguredMethods(env={"OPENAI_API_KEY": "fallback", "CODEX_API_KEY": "primary"})

        assert resolve("codex", configured) == ApiKey(key="primary")

    def test_blank_env_key_is_absent(self):
        configured = ConfiguredMethods(
            env={"GEMINI_API_KEY": "   "},
            config_credentials={"gemini": {"api_key": "from-file"}},
        )

        assert resolve("gemini", configured) == ApiKey(key="from-file")

    def test_unknown_provider_uses_generic_env_name(self):
        assert env_key_names("mistral") == ("MISTRAL_API_KEY",)
        configured = ConfiguredMethods(env={"MISTRAL_API_KEY": "m-key"})

        assert resolve("mistral", configured) == ApiKey(key="m-key")


# ==================== Failure ====================


class TestNoMethodAvailable:
    def test_nothing_configured(self):
        with pytest.raises(AuthError) as exc_info:
            resolve("claude", ConfiguredMethods())

        assert exc_info.value.kind == AuthErrorKind.NO_METHOD_AVAILABLE
        assert exc_info.value.provider_id == "claude"
        assert "No authentication found for provider: claude" in str(exc_info.value)

    def test_interactive_disabled(self):
        with pytest.raises(AuthError):
            resolve("claude", ConfiguredMethods(login_callback_url="http://localhost:1/cb"))

    def test_other_providers_credentials_do_not_leak(self):
        configured = ConfiguredMethods(
            cli_sessions=FULL.cli_sessions,
            env=FULL.env,
            config_credentials=FULL.config_credentials,
        )

        with pytest.raises(AuthError):
            resolve("gemini", configured)


# ==================== Cache ====================


class TestAuthCache:
    def test_success_is_memoised(self):
        cache = AuthCache(FULL)

        assert "claude" not in cache
        first = cache.get("claude")
        assert "claude" in cache
        assert cache.get("claude") is first

    def test_failure_is_memoised(self):
        cache = AuthCache(ConfiguredMethods())

        with pytest.raises(AuthError) as first:
            cache.get("codex")
        with pytest.raises(AuthError) as second:
            cache.get("codex")

        assert first.value is second.value


# ==================== Secrets ====================


class TestSecretsStayHidden:
    def test_api_key_not_in_repr(self):
        method = ApiKey(key="sk-very-secret-value")

        assert "sk-very-secret-value" not in repr(method)
        assert "sk-very-secret-value" not in method.describe()

    def test_session_token_not_in_repr(self):
        method = AccountBased(provider="gemini", session_token="ya29.secret-token")

        assert "ya29.secret-token" not in repr(method)
        assert "gemini" in method.describe()


# ==================== Discovery ====================


class TestDiscovery:
    def test_no_markers_no_sessions(self, temp_home):
        assert config.detect_cli_sessions(temp_home) == frozenset()

    def test_markers_detected(self, temp_home):
        (temp_home / ".claude").mkdir()
        (temp_home / ".claude" / ".credentials.json").write_text("{}")
        (temp_home / ".codex").mkdir()
        (temp_home / ".codex" / "auth.json").write_text("{}")

        assert config.detect_cli_sessions(temp_home) == frozenset({"claude", "codex"})

    def test_detection_restricted_to_providers(self, temp_home):
        (temp_home / ".gemini").mkdir()
        (temp_home / ".gemini" / "oauth_creds.json").write_text("{}")

        assert config.detect_cli_sessions(temp_home, providers=["claude"]) == frozenset()

    def test_discover_configured_methods(self, temp_home, mock_env_vars):
        configured = config.discover_configured_methods(
            home=temp_home,
            config_credentials={"gemini": {"api_key": "file-key"}},
            interactive=False,
        )

        assert configured.cli_sessions == frozenset()
        assert configured.env["CLAUDE_API_KEY"] == mock_env_vars["CLAUDE_API_KEY"]
        assert configured.config_credentials["gemini"] == {"api_key": "file-key"}
        assert resolve("claude", configured) == ApiKey(key=mock_env_vars["CLAUDE_API_KEY"])

    def test_discover_passes_explicit_keys(self, temp_home):
        configured = config.discover_configured_methods(
            env={}, home=temp_home, api_keys={"gemini": "flag-key"}
        )

        assert resolve("gemini", configured) == ApiKey(key="flag-key")

    def test_explicit_env_mapping(self, temp_home):
        configured = config.discover_configured_methods(env={"GEMINI_API_KEY": "g"}, home=temp_home)

        assert dict(configured.env) == {"GEMINI_API_KEY": "g"}


class TestSettingsHelpers:
    def test_get_float_parses(self, monkeypatch):
        monkeypatch.setenv("AICHAIN_TEST_FLOAT", "2.5")

        assert config.get_float("AICHAIN_TEST_FLOAT", None) == 2.5

    def test_get_float_invalid_uses_default(self, monkeypatch):
        monkeypatch.setenv("AICHAIN_TEST_FLOAT", "soon")

        assert config.get_float("AICHAIN_TEST_FLOAT", 3.0) == 3.0

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("", False)])
    def test_get_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("AICHAIN_TEST_BOOL", raw)

        assert config.get_bool("AICHAIN_TEST_BOOL") is expected
