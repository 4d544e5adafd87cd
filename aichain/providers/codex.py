"""Codex provider implementation (OpenAI API or the `codex` CLI)."""

from typing import AsyncIterator, List, Optional

import openai
from openai import AsyncOpenAI

from ..context import Context
from ..errors import ProviderError, ProviderErrorKind
from .base import BaseAgentProvider, Capabilities, ProviderConfig, Response

DEFAULT_MODEL = "gpt-5-codex"


def translate_error(provider_id: str, error: openai.OpenAIError) -> ProviderError:
    """Map an OpenAI SDK exception to a ProviderError kind."""
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        kind = ProviderErrorKind.UNAUTHENTICATED
    elif isinstance(error, openai.RateLimitError):
        kind = ProviderErrorKind.RATE_LIMITED
    elif isinstance(error, openai.APITimeoutError):
        kind = ProviderErrorKind.TIMEOUT
    elif isinstance(error, openai.BadRequestError):
        kind = ProviderErrorKind.INVALID_ACTION
    else:
        kind = ProviderErrorKind.UNAVAILABLE
    return ProviderError(kind, provider_id, str(error))


class CodexProvider(BaseAgentProvider):
    """OpenAI Codex."""

    provider_id = "codex"
    default_cli_binary = "codex"

    def __init__(self, config: ProviderConfig, auth):
        super().__init__(config, auth)
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.credential(),
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    @client.setter
    def client(self, value: AsyncOpenAI) -> None:
        self._client = value

    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_streaming=True, supports_files=True, max_context_tokens=400_000
        )

    def cli_command(self) -> List[str]:
        argv = [self.binary(), "exec"]
        if self.config.model:
            argv += ["--model", self.config.model]
        argv.append("-")
        return argv

    def _messages(self, system: Optional[str], prompt: str) -> list:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def _execute_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> Response:
        try:
            completion = await self.client.chat.completions.create(
                model=self.config.model or DEFAULT_MODEL,
                messages=self._messages(system, prompt),
                max_completion_tokens=self.config.max_tokens,
            )
        except openai.OpenAIError as e:
            raise translate_error(self.name, e)

        choice = completion.choices[0]
        usage = completion.usage
        return Response(
            content=choice.message.content or "",
            metadata={
                "model": completion.model,
                "finish_reason": choice.finish_reason,
                "prompt_tokens": usage.prompt_tokens if usage else None,
                "completion_tokens": usage.completion_tokens if usage else None,
            },
        )

    async def _stream_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> AsyncIterator[str]:
        try:
            chunks = await self.client.chat.completions.create(
                model=self.config.model or DEFAULT_MODEL,
                messages=self._messages(system, prompt),
                max_completion_tokens=self.config.max_tokens,
                stream=True,
            )
            async for chunk in chunks:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            raise translate_error(self.name, e)
