"""Pipeline-first architecture for chaining AI agents.

This module provides:
- A small DSL ("claude:design -> codex:implement") compiled into Pipelines
- Immutable steps, each optionally carrying a named output transform
- One ErrorStrategy per pipeline deciding what a failed step does to the run
- An async executor that threads each step's output into the next
"""

from .base import (
    CircuitBreak,
    ContinueOnError,
    ErrorStrategy,
    FailFast,
    Pipeline,
    PipelineBuilder,
    PipelineStep,
    RetryThenFallback,
    error_strategy_from_dict,
)
from .circuit_breaker import CircuitBreakerTable, CircuitState, get_circuit_table
from .executor import (
    PipelineExecutor,
    PipelineResult,
    RunState,
    StepOutcome,
    StepStatus,
    compose_prompt,
)
from .parser import format_pipeline, parse, validate_providers
from .transform import TRANSFORMS, Transform, TransformSpec, apply_transform, resolve_transform

__all__ = [
    "CircuitBreak",
    "ContinueOnError",
    "ErrorStrategy",
    "FailFast",
    "Pipeline",
    "PipelineBuilder",
    "PipelineStep",
    "RetryThenFallback",
    "error_strategy_from_dict",
    "CircuitBreakerTable",
    "CircuitState",
    "get_circuit_table",
    "PipelineExecutor",
    "PipelineResult",
    "RunState",
    "StepOutcome",
    "StepStatus",
    "compose_prompt",
    "format_pipeline",
    "parse",
    "validate_providers",
    "TRANSFORMS",
    "Transform",
    "TransformSpec",
    "apply_transform",
    "resolve_transform",
]
