"""Generative completion capability.

Wraps an OpenAI-compatible chat API (OpenRouter by default) behind the
narrow :class:`CompletionClient` interface used by the correction,
classification, extraction, metadata, and Q&A stages.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

import httpx
import openai

from docintel.exceptions import (
    CapabilityNotConfiguredError,
    MalformedResponseError,
    ModelWarmingUpError,
    ServiceError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from docintel.utils.config import CompletionConfig
from docintel.utils.logger import get_logger

logger = get_logger(__name__)


class CompletionClient(ABC):
    """Contract for generative completion providers."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Return the model's reply to ``prompt`` as plain text."""

    async def complete_json(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Complete ``prompt`` and parse the reply as a JSON object."""
        content = await self.complete(
            prompt, temperature=temperature, max_tokens=max_tokens, json_mode=True
        )
        return parse_json_object(content)

    async def aclose(self) -> None:
        """Release the underlying connection pool."""


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse a JSON object out of a model reply.

    Models occasionally wrap JSON in a Markdown code fence; the fence is
    stripped before parsing.

    Raises:
        MalformedResponseError: If the reply is not a JSON object.
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Completion reply is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError("Completion reply is not a JSON object")
    return data


class OpenAICompletionClient(CompletionClient):
    """Completion client built on the ``openai`` async SDK.

    The underlying SDK client is created on first use and reused for every
    later call; it holds no per-document state.

    Args:
        config: Completion service configuration.
        api_key: Explicit key; defaults to the configured environment variable.
    """

    def __init__(self, config: CompletionConfig, api_key: str | None = None) -> None:
        self.config = config
        self._api_key = api_key or config.api_key
        self._client: openai.AsyncOpenAI | None = None

    @property
    def is_configured(self) -> bool:
        return self.config.enabled and bool(self._api_key)

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self.is_configured:
            raise CapabilityNotConfiguredError("Completion service has no API key")
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        client = self._get_client()
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                temperature=(
                    self.config.temperature if temperature is None else temperature
                ),
                max_tokens=max_tokens or self.config.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except (openai.APITimeoutError, httpx.TimeoutException) as exc:
            raise ServiceTimeoutError(f"Completion request timed out: {exc}") from exc
        except (openai.APIConnectionError, httpx.ConnectError) as exc:
            raise ServiceUnavailableError(f"Completion provider unreachable: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code == 503 and "loading" in str(exc).lower():
                raise ModelWarmingUpError(f"Completion model loading: {exc}") from exc
            if exc.status_code >= 500 or exc.status_code == 429:
                raise ServiceUnavailableError(
                    f"Completion provider error {exc.status_code}: {exc}"
                ) from exc
            raise ServiceError(f"Completion request rejected: {exc}") from exc
        except openai.APIError as exc:
            raise ServiceError(f"Completion provider API error: {exc}") from exc

        if not response.choices:
            raise MalformedResponseError("Completion returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise MalformedResponseError("Completion returned empty content")
        logger.debug("Completion returned %d characters", len(content))
        return content
