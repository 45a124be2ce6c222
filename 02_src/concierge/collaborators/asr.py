"""Speech-to-text providers."""

from dataclasses import dataclass
from typing import Protocol

import httpx

from ..logging_config import get_logger
from .api_caller import call_api

logger = get_logger(__name__)


@dataclass
class ASRResult:
    success: bool
    text: str = ""
    error: str | None = None
    provider: str | None = None


class IASRProvider(Protocol):
    """Speech-to-text collaborator."""

    async def speech_to_text(self, audio: bytes) -> ASRResult:
        """Transcribe audio. Failures are reported in the result."""
        ...


class TranscriptionASR:
    """Multipart upload to an ``/audio/transcriptions`` endpoint."""

    name = "asr"
    base_url = ""
    endpoint = ""
    default_model = ""
    filename = "audio.wav"

    def __init__(
        self,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
        model: str | None = None,
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self._model = model or self.default_model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._timeout = timeout

    async def speech_to_text(self, audio: bytes) -> ASRResult:
        if not self._api_key:
            return ASRResult(
                success=False, error=f"{self.name} API key not configured", provider=self.name
            )

        logger.info("[%s] transcribing %.1fKB", self.name, len(audio) / 1024)
        response = await call_api(
            self._client,
            "POST",
            f"{self.base_url}{self.endpoint}",
            headers={"Authorization": f"Bearer {self._api_key}"},
            data={"model": self._model},
            files={"file": (self.filename, audio, "audio/wav")},
            timeout=self._timeout,
            log_prefix=f"[{self.name} ASR]",
        )
        if not response.success:
            return ASRResult(success=False, error=response.error, provider=self.name)

        text = ""
        if isinstance(response.data, dict):
            text = str(response.data.get("text") or "").strip()
        if not text:
            return ASRResult(success=False, error="Empty transcription", provider=self.name)

        return ASRResult(success=True, text=text, provider=self.name)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DashScopeASR(TranscriptionASR):
    """Aliyun DashScope (OpenAI-compatible mode)."""

    name = "dashscope"
    base_url = "https://dashscope.aliyuncs.com"
    endpoint = "/compatible-mode/v1/audio/transcriptions"
    default_model = "paraformer-realtime-v2"


class ZhipuASR(TranscriptionASR):
    """Zhipu GLM-ASR."""

    name = "zhipu"
    base_url = "https://open.bigmodel.cn"
    endpoint = "/api/paas/v4/audio/transcriptions"
    default_model = "glm-asr-2512"
    filename = "recording.wav"


class ASRChain:
    """Tries providers in order; the first successful transcription wins."""

    name = "chain"

    def __init__(self, providers: list[IASRProvider]):
        self._providers = providers

    async def speech_to_text(self, audio: bytes) -> ASRResult:
        errors = []
        for provider in self._providers:
            result = await provider.speech_to_text(audio)
            if result.success:
                return result
            logger.warning("ASR provider %s failed: %s", result.provider, result.error)
            errors.append(f"{result.provider}: {result.error}")

        return ASRResult(
            success=False,
            error="All ASR providers failed" + (f" ({'; '.join(errors)})" if errors else ""),
            provider=self.name,
        )

    async def close(self) -> None:
        for provider in self._providers:
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
