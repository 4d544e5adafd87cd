"""Configuration for aichain, read from the environment (and a .env file)."""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from dotenv import load_dotenv

from .auth import ConfiguredMethods

load_dotenv()

# ============================================================================
# Helpers
# ============================================================================


def get_float(env_var: str, default: Optional[float]) -> Optional[float]:
    """Get a float from environment or return default."""
    raw = os.getenv(env_var)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid {env_var}={raw!r}, using default {default}"
        )
        return default


def get_bool(env_var: str, default: bool = False) -> bool:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# Execution settings
# ============================================================================

# Per provider call timeout in seconds (unset = no timeout)
STEP_TIMEOUT = get_float("AICHAIN_STEP_TIMEOUT", None)

# Default pipeline definitions file for `cli.py pipeline`
PIPELINES_FILE = os.getenv("AICHAIN_PIPELINES_FILE", "config/pipelines.yaml")

LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")

# ============================================================================
# Provider settings
# ============================================================================

PROVIDER_MODELS = {
    "claude": os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5"),
    "gemini": os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
    "codex": os.getenv("CODEX_MODEL", "gpt-5-codex"),
}

PROVIDER_CLI_BINARIES = {
    "claude": os.getenv("CLAUDE_CLI_BINARY", "claude"),
    "gemini": os.getenv("GEMINI_CLI_BINARY", "gemini"),
    "codex": os.getenv("CODEX_CLI_BINARY", "codex"),
}

PROVIDER_TIMEOUT = get_float("AICHAIN_PROVIDER_TIMEOUT", 120.0)

# ============================================================================
# Authentication sources
# ============================================================================

ALLOW_INTERACTIVE_LOGIN = get_bool("AICHAIN_ALLOW_INTERACTIVE_LOGIN", False)
LOGIN_CALLBACK_URL = os.getenv("AICHAIN_LOGIN_CALLBACK_URL", "http://localhost:8765/callback")

# Files whose presence means the agent's own CLI is logged in
CLI_SESSION_MARKERS: Dict[str, List[str]] = {
    "claude": [".claude/.credentials.json", ".claude/config.json", ".claude.json"],
    "gemini": [".gemini/oauth_creds.json", ".gemini/config.json"],
    "codex": [".codex/auth.json", ".codex/config.json"],
}


def detect_cli_sessions(
    home: Optional[Path] = None, providers: Optional[Iterable[str]] = None
) -> frozenset:
    """
    Detect which agent CLIs have a session on this machine.

    Args:
        home: Home directory to inspect (defaults to the user's home)
        providers: Restrict detection to these providers

    Returns:
        frozenset of provider ids with at least one marker file present
    """
    home = home or Path.home()
    wanted = set(providers) if providers is not None else set(CLI_SESSION_MARKERS)
    found = set()
    for provider_id, markers in CLI_SESSION_MARKERS.items():
        if provider_id not in wanted:
            continue
        if any((home / marker).exists() for marker in markers):
            found.add(provider_id)
    return frozenset(found)


def discover_configured_methods(
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
    config_credentials: Optional[Mapping[str, Mapping[str, str]]] = None,
    interactive: Optional[bool] = None,
    api_keys: Optional[Mapping[str, str]] = None,
) -> ConfiguredMethods:
    """
    Assemble the auth resolver's input from the machine's state.

    Args:
        env: Environment mapping (defaults to os.environ)
        home: Home directory for CLI session markers
        config_credentials: Credentials from the pipeline configuration file
        interactive: Allow browser login (defaults to AICHAIN_ALLOW_INTERACTIVE_LOGIN)
        api_keys: provider -> API key given on the command line; beats every other source

    Returns:
        ConfiguredMethods
    """
    return ConfiguredMethods(
        api_keys=dict(api_keys or {}),
        cli_sessions=detect_cli_sessions(home),
        env=dict(os.environ if env is None else env),
        config_credentials=dict(config_credentials or {}),
        interactive=ALLOW_INTERACTIVE_LOGIN if interactive is None else interactive,
        login_callback_url=LOGIN_CALLBACK_URL,
    )


# ============================================================================
# Logging
# ============================================================================


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, from LOG_LEVEL unless a level is given."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
