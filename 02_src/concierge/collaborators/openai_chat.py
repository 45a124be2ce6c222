"""Chat provider for OpenAI-compatible endpoints (SiliconFlow, DashScope compatible mode)."""

import httpx

from ..logging_config import get_logger
from .api_caller import call_api
from .llm_provider import ChatResult

logger = get_logger(__name__)


DEFAULT_BASE_URL = "https://api.siliconflow.cn/v1"
DEFAULT_MODEL = "Qwen/Qwen2.5-7B-Instruct"


class OpenAICompatibleChatProvider:
    """``POST {base_url}/chat/completions`` through ``call_api``."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retries: int = 1,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ):
        if not api_key:
            raise ValueError("API key for the chat endpoint is not set")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._model = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._timeout = timeout
        self._retries = retries
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def chat(
        self,
        messages: list[dict],
        system_prompt: str | None = None,
    ) -> ChatResult:
        payload_messages = list(messages)
        if system_prompt:
            payload_messages.insert(0, {"role": "system", "content": system_prompt})

        response = await call_api(
            self._client,
            "POST",
            self._url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "model": self._model,
                "messages": payload_messages,
                "temperature": self._temperature,
                "max_tokens": self._max_tokens,
            },
            timeout=self._timeout,
            retries=self._retries,
            log_prefix="[Chat]",
        )
        if not response.success:
            return ChatResult(success=False, error=response.error)

        try:
            content = response.data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.error("Unexpected chat response shape: %s", response.data)
            return ChatResult(success=False, error="Unexpected chat response shape")

        return ChatResult(success=True, content=content or "")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
