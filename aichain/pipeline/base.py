from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from .transform import TransformSpec


@dataclass(frozen=True)
class PipelineStep:
    """One provider+action invocation. Immutable once built."""

    provider_id: str
    action: str
    transform: Optional[TransformSpec] = None
    # Extra instructions appended to this step's prompt
    step_context: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.provider_id}:{self.action}"


# ============================================================================
# Error strategies
# ============================================================================


@dataclass(frozen=True)
class FailFast:
    """Abort the run on the first failed step."""


@dataclass(frozen=True)
class ContinueOnError:
    """Record the failure and feed the last good output to the next step."""


@dataclass(frozen=True)
class RetryThenFallback:
    """Retry the same provider with exponential backoff, then degrade."""

    max_retries: int = 3
    backoff_base: float = 0.5  # seconds

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must be >= 0")

    def delay(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number `attempt` (0-based)."""
        return self.backoff_base * (2 ** attempt)


@dataclass(frozen=True)
class CircuitBreak:
    """Stop calling a provider for `cooldown` seconds after consecutive failures."""

    failure_threshold: int = 3
    cooldown: float = 60.0  # seconds

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown < 0:
            raise ValueError("cooldown must be >= 0")


ErrorStrategy = Union[FailFast, ContinueOnError, RetryThenFallback, CircuitBreak]

STRATEGY_TYPES = {
    "fail_fast": FailFast,
    "continue_on_error": ContinueOnError,
    "retry_then_fallback": RetryThenFallback,
    "circuit_break": CircuitBreak,
}


def error_strategy_from_dict(data: Optional[Dict[str, Any]]) -> ErrorStrategy:
    """
    Build an error strategy from a parsed config mapping.

    Example:
        {"type": "retry_then_fallback", "max_retries": 2, "backoff_base": 0.5}
    """
    if not data:
        return FailFast()
    params = dict(data)
    strategy_type = params.pop("type", "fail_fast")
    strategy_class = STRATEGY_TYPES.get(strategy_type)
    if strategy_class is None:
        raise ValueError(
            f"Unknown error strategy: {strategy_type} (expected one of {sorted(STRATEGY_TYPES)})"
        )
    return strategy_class(**params)


# ============================================================================
# Pipeline
# ============================================================================


@dataclass(frozen=True)
class Pipeline:
    """Ordered steps plus one error strategy for the whole chain. Immutable; with_step() returns a new pipeline."""

    steps: Tuple[PipelineStep, ...]
    error_strategy: ErrorStrategy = field(default_factory=FailFast)

    def __post_init__(self):
        # Accept any sequence but store a tuple so pipelines stay hashable
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise ValueError("A pipeline must have at least one step")

    def with_step(self, step: PipelineStep) -> "Pipeline":
        return Pipeline(self.steps + (step,), self.error_strategy)

    def with_strategy(self, error_strategy: ErrorStrategy) -> "Pipeline":
        return Pipeline(self.steps, error_strategy)

    @property
    def provider_ids(self) -> Tuple[str, ...]:
        return tuple(step.provider_id for step in self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[PipelineStep]:
        return iter(self.steps)

    def __repr__(self) -> str:
        return f"Pipeline(steps={[str(s) for s in self.steps]}, error_strategy={self.error_strategy!r})"


class PipelineBuilder:
    """Builder for creating pipelines programmatically."""

    def __init__(self):
        self._steps = []
        self._error_strategy: ErrorStrategy = FailFast()

    def step(
        self,
        provider_id: str,
        action: str,
        transform: Optional[TransformSpec] = None,
        step_context: Optional[str] = None,
    ) -> "PipelineBuilder":
        self._steps.append(PipelineStep(provider_id, action, transform, step_context))
        return self

    def on_error(self, error_strategy: ErrorStrategy) -> "PipelineBuilder":
        self._error_strategy = error_strategy
        return self

    def build(self) -> Pipeline:
        return Pipeline(tuple(self._steps), self._error_strategy)
