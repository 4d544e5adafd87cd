"""Base abstract class for agent providers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional, Tuple

from ..auth import AccountBased, ApiKey, AuthMethod, BrowserAuth, CliAuth
from ..context import Context, MessageRole
from ..errors import ProviderError, ProviderErrorKind
from . import cli_runner

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Configuration for a provider."""

    provider_id: str
    model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 120.0
    max_tokens: int = 4096
    cli_binary: Optional[str] = None
    # None accepts any non-empty action
    allowed_actions: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class Capabilities:
    """What a provider can do; queried before the executor relies on it."""

    supports_streaming: bool = False
    supports_files: bool = False
    max_context_tokens: Optional[int] = None


@dataclass
class Response:
    """Response from an agent."""

    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, key: str, value: Any) -> "Response":
        self.metadata[key] = value
        return self


class ResponseStream:
    """
    Lazy, finite, single-use sequence of content chunks.

    Iterate with `async for`. A failure after the stream started is raised
    from the iteration as a ProviderError and ends the sequence. Iterating a
    second time raises RuntimeError.
    """

    def __init__(self, chunks: AsyncIterator[str]):
        self._chunks = chunks
        self._started = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("ResponseStream cannot be restarted")
        self._started = True
        return self._chunks.__aiter__()

    async def collect(self) -> str:
        """Drain the stream and join its chunks."""
        parts = []
        async for chunk in self:
            parts.append(chunk)
        return "".join(parts)


class BaseAgentProvider(ABC):
    """
    Abstract base class for agent providers.

    A provider is bound to the AuthMethod resolved for it. API keys and
    account session tokens are handed to the provider's SDK or HTTP API
    (`_execute_api` / `_stream_api`); a CLI session is used by running the
    agent's own command line (`cli_command`). Browser logins cannot be
    completed from inside a pipeline and fail as unauthenticated.
    """

    provider_id: str = ""
    default_cli_binary: str = ""

    def __init__(self, config: ProviderConfig, auth: AuthMethod):
        self.config = config
        self.auth = auth

    @property
    def name(self) -> str:
        return self.provider_id

    @abstractmethod
    def capabilities(self) -> Capabilities:
        pass

    @abstractmethod
    async def _execute_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> Response:
        pass

    @abstractmethod
    def _stream_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> AsyncIterator[str]:
        pass

    @abstractmethod
    def cli_command(self) -> List[str]:
        """
        Build the non-interactive command line for the agent's CLI.

        The command must read its prompt from stdin.

        Returns:
            argv list
        """
        pass

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def check_action(self, action: str) -> None:
        """
        Reject actions this provider does not accept.

        Raises:
            ProviderError: INVALID_ACTION
        """
        if not action or not action.strip():
            raise ProviderError(
                ProviderErrorKind.INVALID_ACTION, self.name, "action is empty"
            )
        allowed = self.config.allowed_actions
        if allowed is not None and action not in allowed:
            raise ProviderError(
                ProviderErrorKind.INVALID_ACTION,
                self.name,
                f"action '{action}' not in {sorted(allowed)}",
            )

    async def execute(self, prompt: str, context: Context) -> Response:
        """
        Run one prompt to completion.

        Args:
            prompt: Prompt text for this step
            context: Conversation/environment state of the run

        Returns:
            Response with content and metadata

        Raises:
            ProviderError: On any failure reaching the agent
        """
        system, rendered = self.render_prompt(prompt, context)

        if isinstance(self.auth, CliAuth):
            output = await cli_runner.run_cli(
                self.name,
                self.cli_command(),
                self._join_system(system, rendered),
                env=context.environment or None,
            )
            response = Response(content=output.strip())
        else:
            self._require_api_credential()
            response = await self._execute_api(system, rendered, context)

        return self._annotate(response, context)

    async def stream(self, prompt: str, context: Context) -> ResponseStream:
        """
        Start a streamed response.

        Credential problems are raised here, before any chunk is produced.
        Later failures are raised from the returned stream's iteration.
        """
        system, rendered = self.render_prompt(prompt, context)

        if isinstance(self.auth, CliAuth):
            chunks = cli_runner.stream_cli(
                self.name,
                self.cli_command(),
                self._join_system(system, rendered),
                env=context.environment or None,
            )
        else:
            self._require_api_credential()
            chunks = self._stream_api(system, rendered, context)

        return ResponseStream(chunks)

    # ------------------------------------------------------------------
    # Helpers shared by the adapters
    # ------------------------------------------------------------------

    def credential(self) -> Optional[str]:
        """The secret to present to the API: API key or account session token."""
        if isinstance(self.auth, ApiKey):
            return self.auth.key
        if isinstance(self.auth, AccountBased):
            return self.auth.session_token
        return None

    def binary(self) -> str:
        return self.config.cli_binary or self.default_cli_binary

    def render_prompt(self, prompt: str, context: Context) -> Tuple[Optional[str], str]:
        """
        Fold the conversation so far into the prompt.

        Earlier steps come from other agents, so history is rendered as a
        transcript inside a single user turn rather than as alternating chat
        messages.

        Returns:
            (system text or None, rendered prompt)
        """
        history = context.conversation_history
        system_parts = [m.content for m in history if m.role == MessageRole.SYSTEM]
        turns = [m for m in history if m.role != MessageRole.SYSTEM]

        sections = []
        if turns:
            transcript = "\n\n".join(
                f"[{m.provider_id or m.role.value}]\n{m.content}" for m in turns
            )
            sections.append(f"Conversation so far:\n\n{transcript}")

        if context.current_files:
            if self.capabilities().supports_files:
                listing = "\n".join(f"- {p}" for p in sorted(map(str, context.current_files)))
                sections.append(f"Files in scope:\n{listing}")
            else:
                logger.warning(
                    f"{self.name} does not support files; ignoring {len(context.current_files)} file(s)"
                )

        sections.append(prompt)
        system = "\n\n".join(system_parts) if system_parts else None
        return system, "\n\n".join(sections)

    def _require_api_credential(self) -> None:
        if isinstance(self.auth, BrowserAuth):
            raise ProviderError(
                ProviderErrorKind.UNAUTHENTICATED,
                self.name,
                f"interactive login required; complete it at {self.auth.callback_url}",
            )
        if not self.credential():
            raise ProviderError(
                ProviderErrorKind.UNAUTHENTICATED, self.name, "no credential configured"
            )

    def _annotate(self, response: Response, context: Context) -> Response:
        response.metadata.setdefault("provider", self.name)
        response.metadata.setdefault("auth_method", type(self.auth).__name__)
        if context.conversation_history:
            response.metadata.setdefault(
                "conversation_length", len(context.conversation_history)
            )
        return response

    @staticmethod
    def _join_system(system: Optional[str], prompt: str) -> str:
        return f"{system}\n\n{prompt}" if system else prompt

    def __repr__(self) -> str:
        return f"{type(self).__name__}(auth={self.auth!r})"
