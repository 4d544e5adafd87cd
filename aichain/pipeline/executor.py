"""Sequential pipeline executor with retry, circuit-breaking and graceful degradation.

Each step of a run goes through:

    Pending(i) -> resolve auth -> check action -> [circuit gate] -> invoke
               -> succeeded: record message, apply transform, Pending(i+1)
               -> failed:    consult the pipeline's ErrorStrategy

and the run ends in one of two terminal states, COMPLETED or ABORTED. Both
carry the full list of per-step outcomes so callers can see exactly which
steps degraded.

Steps of a run never overlap: step i+1 is built from step i's output. The
only suspension points are provider calls and retry backoff sleeps, and both
are raced against the run's cancellation event.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .. import config as settings
from ..auth import AuthCache, ConfiguredMethods
from ..context import Context, Message, MessageRole
from ..errors import (
    AIChainError,
    AuthError,
    CircuitOpenError,
    PipelineCancelled,
    ProviderError,
    ProviderErrorKind,
    TransformError,
    UnknownProviderError,
)
from ..providers.base import BaseAgentProvider, Response
from ..providers.registry import ProviderRegistry, default_registry
from .base import (
    CircuitBreak,
    ContinueOnError,
    ErrorStrategy,
    FailFast,
    Pipeline,
    PipelineStep,
    RetryThenFallback,
)
from .circuit_breaker import CircuitBreakerTable, get_circuit_table
from .parser import format_pipeline
from .transform import apply_transform, resolve_transform

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    # Provider failed but the run went on with the last good output
    DEGRADED = "degraded"
    # Step could not run (auth, circuit open, invalid action), failed a
    # transform, or failed under FailFast
    FAILED = "failed"


class RunState(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class StepOutcome:
    """What happened to one step."""

    index: int
    step: PipelineStep
    status: StepStatus
    output: Optional[str] = None
    response: Optional[Response] = None
    error: Optional[AIChainError] = None
    attempts: int = 0
    partial_output: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "step": str(self.step),
            "status": self.status.value,
            "output": self.output,
            "attempts": self.attempts,
            "error": str(self.error) if self.error else None,
            "partial_output": self.partial_output,
        }


@dataclass
class PipelineResult:
    state: RunState
    context: Context
    outcomes: List[StepOutcome] = field(default_factory=list)
    error: Optional[AIChainError] = None

    @property
    def completed(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def aborted(self) -> bool:
        return self.state == RunState.ABORTED

    @property
    def final_output(self) -> Optional[str]:
        """Output of the last step that succeeded."""
        for outcome in reversed(self.outcomes):
            if outcome.succeeded:
                return outcome.output
        return None

    @property
    def degraded_steps(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
            "final_output": self.final_output,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def compose_prompt(step: PipelineStep, step_input: str) -> str:
    """Prompt for a step: its action, its extra context, then the incoming input."""
    parts = [step.action]
    if step.step_context:
        parts.append(step.step_context)
    if step_input:
        parts.append(step_input)
    return "\n\n".join(parts)


class PipelineExecutor:
    """
    Runs pipelines against registered providers.

    An executor holds no per-run state and may serve several concurrent runs.
    The circuit-breaker table is shared (process-wide by default); the auth
    cache and provider instances are created fresh for every run.

    Args:
        registry: Providers available to steps (defaults to the built-ins)
        configured_methods: Credential sources for the auth resolver
        step_timeout: Per provider call timeout in seconds, None for no limit
        circuit_table: Circuit breaker state (defaults to the process-wide table)
        on_step: Called with each StepOutcome as soon as it is known
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        configured_methods: Optional[ConfiguredMethods] = None,
        *,
        step_timeout: Optional[float] = settings.STEP_TIMEOUT,
        circuit_table: Optional[CircuitBreakerTable] = None,
        on_step: Optional[Callable[[StepOutcome], None]] = None,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.configured_methods = configured_methods or ConfiguredMethods()
        self.step_timeout = step_timeout
        self.circuit_table = circuit_table if circuit_table is not None else get_circuit_table()
        self.on_step = on_step

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, pipeline: Pipeline) -> None:
        """
        Check a pipeline before running it.

        Raises:
            UnknownProviderError: A step targets an unregistered provider
            TransformError: A step names an unknown transform or bad parameters
        """
        for step in pipeline:
            if not self.registry.has_provider(step.provider_id):
                raise UnknownProviderError(step.provider_id, self.registry.provider_ids())
            resolve_transform(step.transform)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        pipeline: Pipeline,
        initial_input: str = "",
        context: Optional[Context] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        stream: bool = False,
        on_chunk: Optional[Callable[[int, str], None]] = None,
    ) -> PipelineResult:
        """
        Execute every step of `pipeline` in order.

        Args:
            pipeline: Steps and error strategy
            initial_input: Input handed to the first step
            context: Run context (a fresh one if omitted); mutated in place
            cancel_event: Setting it aborts the run promptly
            stream: Prefer streaming for providers that support it
            on_chunk: Called with (step index, chunk) while streaming

        Returns:
            PipelineResult in state COMPLETED or ABORTED

        Raises:
            UnknownProviderError, TransformError: From validate(), before any step runs
        """
        self.validate(pipeline)
        context = context if context is not None else Context()
        strategy = pipeline.error_strategy
        auth_cache = AuthCache(self.configured_methods)
        providers: Dict[str, BaseAgentProvider] = {}
        outcomes: List[StepOutcome] = []
        current_input = initial_input

        logger.info(
            f"Running pipeline '{format_pipeline(pipeline)}' "
            f"({len(pipeline)} steps, strategy={type(strategy).__name__})"
        )

        for index, step in enumerate(pipeline.steps):
            if cancel_event is not None and cancel_event.is_set():
                return self._finish(RunState.ABORTED, context, outcomes, PipelineCancelled(index))

            try:
                outcome = await self._run_step(
                    index, step, current_input, context, strategy,
                    auth_cache, providers, cancel_event, stream, on_chunk,
                )
            except PipelineCancelled as e:
                return self._finish(RunState.ABORTED, context, outcomes, e)

            outcomes.append(outcome)
            if self.on_step is not None:
                self.on_step(outcome)

            if outcome.succeeded:
                current_input = outcome.output
                continue

            if isinstance(outcome.error, TransformError) or isinstance(strategy, FailFast):
                return self._finish(RunState.ABORTED, context, outcomes, outcome.error)

            logger.warning(
                f"Step {index} ({step}) {outcome.status.value}; continuing with last good output"
            )

        return self._finish(RunState.COMPLETED, context, outcomes)

    async def fan_out(
        self,
        provider_ids: Sequence[str],
        prompt: str,
        context: Optional[Context] = None,
        *,
        error_strategy: Optional[ErrorStrategy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, PipelineResult]:
        """
        Send the same prompt to several providers concurrently.

        Each provider gets its own one-step run on its own copy of `context`.
        A provider listed more than once is asked once.

        Returns:
            provider id -> PipelineResult
        """
        provider_ids = list(dict.fromkeys(provider_ids))
        base_context = context if context is not None else Context()
        strategy = error_strategy or ContinueOnError()
        pipelines = [
            Pipeline((PipelineStep(provider_id, prompt),), strategy)
            for provider_id in provider_ids
        ]
        for pipeline in pipelines:
            self.validate(pipeline)

        results = await asyncio.gather(
            *(
                self.run(pipeline, "", base_context.copy(), cancel_event=cancel_event)
                for pipeline in pipelines
            )
        )
        return dict(zip(provider_ids, results))

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        index: int,
        step: PipelineStep,
        step_input: str,
        context: Context,
        strategy: ErrorStrategy,
        auth_cache: AuthCache,
        providers: Dict[str, BaseAgentProvider],
        cancel_event: Optional[asyncio.Event],
        stream: bool,
        on_chunk: Optional[Callable[[int, str], None]],
    ) -> StepOutcome:
        provider_id = step.provider_id

        try:
            provider = self._provider_for(provider_id, auth_cache, providers)
            provider.check_action(step.action)
            if isinstance(strategy, CircuitBreak):
                self.circuit_table.before_call(provider_id)
        except (AuthError, ProviderError, CircuitOpenError) as e:
            logger.warning(f"Step {index} ({step}) not invoked: {e}")
            return self._failed(index, step, context, e, StepStatus.FAILED, attempts=0)

        prompt = compose_prompt(step, step_input)
        attempts_allowed = strategy.max_retries + 1 if isinstance(strategy, RetryThenFallback) else 1
        error: Optional[ProviderError] = None
        chunks: List[str] = []

        for attempt in range(attempts_allowed):
            chunks = []
            try:
                response = await self._invoke(
                    index, provider, prompt, context, cancel_event, stream, on_chunk, chunks
                )
            except ProviderError as e:
                error = e
                logger.warning(
                    f"Step {index} ({step}) failed (attempt {attempt + 1}/{attempts_allowed}): {e}"
                )
                if isinstance(strategy, CircuitBreak):
                    self.circuit_table.record_failure(
                        provider_id, strategy.failure_threshold, strategy.cooldown
                    )
                if attempt + 1 < attempts_allowed and e.retryable:
                    delay = strategy.delay(attempt)
                    await self._guard(asyncio.sleep(delay), cancel_event, index)
                    continue
                break
            else:
                if isinstance(strategy, CircuitBreak):
                    self.circuit_table.record_success(provider_id)
                return self._succeeded(index, step, context, response, attempts=attempt + 1)

        status = StepStatus.FAILED if isinstance(strategy, FailFast) else StepStatus.DEGRADED
        return self._failed(
            index, step, context, error, status,
            attempts=attempt + 1,
            partial_output="".join(chunks) or None,
        )

    def _provider_for(
        self,
        provider_id: str,
        auth_cache: AuthCache,
        providers: Dict[str, BaseAgentProvider],
    ) -> BaseAgentProvider:
        if provider_id not in providers:
            auth = auth_cache.get(provider_id)
            logger.info(f"Using {auth.describe()} for {provider_id}")
            providers[provider_id] = self.registry.create(provider_id, auth)
        return providers[provider_id]

    async def _invoke(
        self,
        index: int,
        provider: BaseAgentProvider,
        prompt: str,
        context: Context,
        cancel_event: Optional[asyncio.Event],
        stream: bool,
        on_chunk: Optional[Callable[[int, str], None]],
        chunks: List[str],
    ) -> Response:
        call = self._call(index, provider, prompt, context, stream, on_chunk, chunks)
        if self.step_timeout is not None:
            call = asyncio.wait_for(call, self.step_timeout)
        try:
            return await self._guard(call, cancel_event, index)
        except asyncio.TimeoutError:
            raise ProviderError(
                ProviderErrorKind.TIMEOUT,
                provider.name,
                f"no response within {self.step_timeout}s",
            )

    async def _call(
        self,
        index: int,
        provider: BaseAgentProvider,
        prompt: str,
        context: Context,
        stream: bool,
        on_chunk: Optional[Callable[[int, str], None]],
        chunks: List[str],
    ) -> Response:
        if not (stream and provider.capabilities().supports_streaming):
            return await provider.execute(prompt, context)

        response_stream = await provider.stream(prompt, context)
        async for chunk in response_stream:
            chunks.append(chunk)
            if on_chunk is not None:
                on_chunk(index, chunk)
        return Response(
            content="".join(chunks),
            metadata={"provider": provider.name, "streamed": True},
        )

    async def _guard(
        self, awaitable: Awaitable, cancel_event: Optional[asyncio.Event], index: int
    ):
        """Await `awaitable`, abandoning it if the cancel event fires first."""
        if cancel_event is None:
            return await awaitable

        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work

        if work.cancelled():
            raise PipelineCancelled(index)
        return work.result()

    # ------------------------------------------------------------------
    # Outcomes (the only places that touch the context)
    # ------------------------------------------------------------------

    def _succeeded(
        self,
        index: int,
        step: PipelineStep,
        context: Context,
        response: Response,
        attempts: int,
    ) -> StepOutcome:
        try:
            next_input = apply_transform(step.transform, response, context)
        except TransformError as e:
            logger.error(f"Step {index} ({step}) transform failed: {e}")
            return self._failed(index, step, context, e, StepStatus.FAILED, attempts=attempts)

        context.add_message(
            Message(role=MessageRole.ASSISTANT, content=response.content, provider_id=step.provider_id)
        )
        logger.info(f"Step {index} ({step}) succeeded after {attempts} attempt(s)")
        return StepOutcome(
            index=index,
            step=step,
            status=StepStatus.SUCCEEDED,
            output=next_input,
            response=response,
            attempts=attempts,
        )

    def _failed(
        self,
        index: int,
        step: PipelineStep,
        context: Context,
        error: AIChainError,
        status: StepStatus,
        attempts: int,
        partial_output: Optional[str] = None,
    ) -> StepOutcome:
        context.record_step_error(index, step.provider_id, error)
        return StepOutcome(
            index=index,
            step=step,
            status=status,
            error=error,
            attempts=attempts,
            partial_output=partial_output,
        )

    def _finish(
        self,
        state: RunState,
        context: Context,
        outcomes: List[StepOutcome],
        error: Optional[AIChainError] = None,
    ) -> PipelineResult:
        result = PipelineResult(state=state, context=context, outcomes=outcomes, error=error)
        if state == RunState.ABORTED:
            logger.error(f"Pipeline aborted after {len(outcomes)} step(s): {error}")
        else:
            degraded = len(result.degraded_steps)
            logger.info(f"Pipeline completed ({len(outcomes)} steps, {degraded} degraded)")
        return result
