"""Chain AI coding agents (Claude, Gemini, Codex) into sequential pipelines."""

__version__ = "0.1.0"
