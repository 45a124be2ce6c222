"""LLM Provider implementation using Anthropic Claude API."""

import os
from dataclasses import dataclass
from typing import Protocol

import anthropic

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ChatResult:
    """Outcome of a chat call. Failures are reported, not raised."""

    success: bool
    content: str = ""
    error: str | None = None


class ILLMProvider(Protocol):
    """Abstraction for LLM access."""

    async def chat(
        self,
        messages: list[dict],  # [{"role": "user", "content": "..."}]
        system_prompt: str | None = None,
    ) -> ChatResult:
        """Generate a reply; never raises for upstream failures."""
        ...


class LLMProvider:
    """Anthropic Claude API provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 1024,
    ):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable not set")

        self._model = model
        self._max_tokens = max_tokens
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    async def complete(
        self,
        messages: list[dict],  # [{"role": "user", "content": "..."}]
        system: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion using Claude API."""
        try:
            kwargs = {}
            if system:
                kwargs["system"] = system

            response = await self._client.messages.create(
                model=self._model,
                messages=messages,
                max_tokens=max_tokens or self._max_tokens,
                **kwargs,
            )

            return response.content[0].text

        except Exception as e:
            # Re-raise for handling by caller
            raise RuntimeError(f"LLM API error: {e}") from e

    async def chat(
        self,
        messages: list[dict],
        system_prompt: str | None = None,
    ) -> ChatResult:
        """Chat contract over ``complete``."""
        try:
            content = await self.complete(messages, system=system_prompt)
        except RuntimeError as e:
            logger.error("Chat call failed: %s", e)
            return ChatResult(success=False, error=str(e))
        return ChatResult(success=True, content=content)

    async def close(self) -> None:
        await self._client.close()
