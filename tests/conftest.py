"""Pytest configuration and shared fixtures for aichain tests.

This module provides:
- Basic pytest configuration
- Scripted agents and an executor wired to them
- Setup/teardown for test isolation (environment, circuit breaker table)
"""

import os
import sys
from pathlib import Path
from typing import Dict

import pytest

# Add project root to Python path to allow imports from aichain, cli and tests.fixtures
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from aichain.pipeline.circuit_breaker import CircuitBreakerTable, get_circuit_table  # noqa: E402
from aichain.pipeline.executor import PipelineExecutor  # noqa: E402
from tests.fixtures.scripted_agents import (  # noqa: E402
    FakeClock,
    ScriptedAgents,
    configured_with_keys,
)


# ==================== Pytest Configuration ====================

def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "unit: mark test as a unit test (fast, isolated)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as an integration test (slower, multiple components)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take several seconds)"
    )


# ==================== Isolation Fixtures ====================

@pytest.fixture(scope="function", autouse=True)
def isolate_environment(monkeypatch):
    """Isolate each test by preventing environment variable pollution.

    This fixture automatically applies to all tests and ensures that
    environment variables don't leak between tests.
    """
    # Store original environment
    original_env = os.environ.copy()

    yield

    # Restore original environment after test
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(scope="function", autouse=True)
def reset_circuit_table():
    """Start every test with closed circuits in the process-wide table."""
    get_circuit_table().reset()
    yield
    get_circuit_table().reset()


@pytest.fixture
def mock_env_vars(monkeypatch) -> Dict[str, str]:
    """Provide mock API keys for all built-in providers.

    Returns:
        Dict of environment variables that can be modified per test
    """
    env_vars = {
        "CLAUDE_API_KEY": "test-claude-key-0001",
        "GEMINI_API_KEY": "test-gemini-key-0002",
        "CODEX_API_KEY": "test-codex-key-0003",
        "LOG_LEVEL": "ERROR",  # Suppress logs during tests
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


# ==================== Pipeline Fixtures ====================

@pytest.fixture
def agents() -> ScriptedAgents:
    """Scripted claude/gemini/codex providers that answer '<id> output' by default."""
    scripted = ScriptedAgents()
    for provider_id in ("claude", "gemini", "codex"):
        scripted.add(provider_id)
    return scripted


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def circuit_table(clock) -> CircuitBreakerTable:
    return CircuitBreakerTable(clock=clock)


@pytest.fixture
def executor(agents, circuit_table) -> PipelineExecutor:
    """Executor over the scripted agents with API keys for every provider."""
    return PipelineExecutor(
        agents.registry,
        configured_with_keys(),
        step_timeout=None,
        circuit_table=circuit_table,
    )


# ==================== Test Data Directory ====================

@pytest.fixture
def temp_home(tmp_path) -> Path:
    """Create an empty home directory for CLI session detection tests.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary home directory
    """
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    return home
