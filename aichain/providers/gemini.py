"""Gemini provider implementation (Generative Language REST API or the `gemini` CLI)."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..auth import AccountBased
from ..context import Context
from ..errors import ProviderError, ProviderErrorKind
from .base import BaseAgentProvider, Capabilities, ProviderConfig, Response

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-pro"


def translate_error(provider_id: str, error: httpx.HTTPError) -> ProviderError:
    """Map an httpx exception to a ProviderError kind."""
    if isinstance(error, httpx.TimeoutException):
        return ProviderError(ProviderErrorKind.TIMEOUT, provider_id, str(error) or "timed out")
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            kind = ProviderErrorKind.UNAUTHENTICATED
        elif status == 429:
            kind = ProviderErrorKind.RATE_LIMITED
        elif status == 400:
            kind = ProviderErrorKind.INVALID_ACTION
        else:
            kind = ProviderErrorKind.UNAVAILABLE
        return ProviderError(kind, provider_id, f"HTTP {status}")
    return ProviderError(ProviderErrorKind.UNAVAILABLE, provider_id, str(error))


def _json_body(provider_id: str, response: httpx.Response) -> Dict[str, Any]:
    """Decode a 200 response, rejecting bodies that are not a JSON object."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        snippet = response.text[:80].strip()
        raise ProviderError(
            ProviderErrorKind.UNAVAILABLE,
            provider_id,
            f"unexpected non-JSON response: {snippet!r}",
        )
    return data


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts)


class GeminiProvider(BaseAgentProvider):
    """Google Gemini."""

    provider_id = "gemini"
    default_cli_binary = "gemini"

    def __init__(
        self,
        config: ProviderConfig,
        auth,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config, auth)
        self.http_client = http_client
        self.api_url = (config.base_url or GEMINI_API_URL).rstrip("/")

    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_streaming=True, supports_files=True, max_context_tokens=1_000_000
        )

    def cli_command(self) -> List[str]:
        # Piped stdin runs gemini non-interactively
        argv = [self.binary()]
        if self.config.model:
            argv += ["--model", self.config.model]
        return argv

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if isinstance(self.auth, AccountBased):
            headers["Authorization"] = f"Bearer {self.auth.session_token}"
        else:
            headers["x-goog-api-key"] = self.credential() or ""
        return headers

    def _payload(self, system: Optional[str], prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": self.config.max_tokens},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    def _model(self) -> str:
        return self.config.model or DEFAULT_MODEL

    @asynccontextmanager
    async def _client(self):
        if self.http_client is not None:
            yield self.http_client
        else:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                yield client

    async def _execute_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> Response:
        """
        Query Gemini via generateContent.

        Args:
            system: System instruction, if any
            prompt: Rendered prompt
            context: Run context

        Returns:
            Response with content and usage metadata
        """
        url = f"{self.api_url}/models/{self._model()}:generateContent"
        try:
            async with self._client() as client:
                response = await client.post(
                    url, headers=self._headers(), json=self._payload(system, prompt)
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise translate_error(self.name, e)

        data = _json_body(self.name, response)

        usage = data.get("usageMetadata", {})
        return Response(
            content=_extract_text(data),
            metadata={
                "model": data.get("modelVersion", self._model()),
                "prompt_tokens": usage.get("promptTokenCount"),
                "completion_tokens": usage.get("candidatesTokenCount"),
            },
        )

    async def _stream_api(
        self, system: Optional[str], prompt: str, context: Context
    ) -> AsyncIterator[str]:
        url = f"{self.api_url}/models/{self._model()}:streamGenerateContent"
        events = 0
        stray: Optional[str] = None
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    url,
                    params={"alt": "sse"},
                    headers=self._headers(),
                    json=self._payload(system, prompt),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            if stray is None and line.strip():
                                stray = line
                            continue
                        try:
                            event = json.loads(line[len("data:"):].strip())
                        except json.JSONDecodeError:
                            event = None
                        if not isinstance(event, dict):
                            logger.warning(f"Skipping malformed Gemini stream event: {line[:80]}")
                            continue
                        events += 1
                        text = _extract_text(event)
                        if text:
                            yield text
        except httpx.HTTPError as e:
            raise translate_error(self.name, e)

        if not events and stray is not None:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                self.name,
                f"unexpected non-SSE response: {stray[:80]!r}",
            )
