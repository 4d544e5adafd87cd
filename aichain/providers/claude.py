"""Claude provider implementation (Anthropic API or the `claude` CLI)."""

import logging
from typing import AsyncIterator, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from ..auth import AccountBased
from ..context import Context
from ..errors import ProviderError, ProviderErrorKind
from .base import BaseAgentProvider, Capabilities, ProviderConfig, Response

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"


def translate_error(provider_id: str, error: anthropic.AnthropicError) -> ProviderError:
    """Map an Anthropic SDK exception to a ProviderError kind."""
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        kind = ProviderErrorKind.UNAUTHENTICATED
    elif isinstance(error, anthropic.RateLimitError):
        kind = ProviderErrorKind.RATE_LIMITED
    elif isinstance(error, anthropic.APITimeoutError):
        kind = ProviderErrorKind.TIMEOUT
    elif isinstance(error, anthropic.BadRequestError):
        kind = ProviderErrorKind.INVALID_ACTION
    else:
        kind = ProviderErrorKind.UNAVAILABLE
    return ProviderError(kind, provider_id, str(error))


class ClaudeProvider(BaseAgentProvider):
    """Anthropic Claude."""

    provider_id = "claude"
    default_cli_binary = "claude"

    def __init__(self, config: ProviderConfig, auth):
        super().__init__(config, auth)
        self._client: Optional[AsyncAnthropic] = None

    @property
    def client(self) -> AsyncAnthropic:
        # Only built for API-key / account auth; CLI sessions never need it
        if self._client is None:
            kwargs = {"timeout": self.config.timeout}
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            if isinstance(self.auth, AccountBased):
                kwargs["auth_token"] = self.auth.session_token
            else:
                kwargs["api_key"] = self.credential()
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    @client.setter
    def client(self, value: AsyncAnthropic) -> None:
        self._client = value

    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_streaming=True, supports_files=True, max_context_tokens=200_000
        )

    def cli_command(self) -> List[str]:
        argv = [self.binary(), "-p"]
        if self.config.model:
            argv += ["--model", self.config.model]
        return argv

    def _request(self, system: Optional[str], prompt: str) -> dict:
        request = {
            "model": self.config.model or DEFAULT_MODEL,
            "max_tokens": self.config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system
        return request

    async def _execute_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> Response:
        """
        Query Claude via the Messages API.

        Args:
            system: System text gathered from the context, if any
            prompt: Rendered prompt
            context: Run context

        Returns:
            Response with content and usage metadata
        """
        try:
            message = await self.client.messages.create(**self._request(system, prompt))
        except anthropic.AnthropicError as e:
            raise translate_error(self.name, e)

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        return Response(
            content=text,
            metadata={
                "model": message.model,
                "prompt_tokens": message.usage.input_tokens,
                "completion_tokens": message.usage.output_tokens,
            },
        )

    async def _stream_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> AsyncIterator[str]:
        try:
            async with self.client.messages.stream(**self._request(system, prompt)) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.AnthropicError as e:
            raise translate_error(self.name, e)
