"""Shared test fixtures for aichain tests.

This package provides:
- Scripted providers that replay canned responses and failures
- A controllable clock for circuit breaker tests
"""

__all__ = [
    "scripted_agents",
]
