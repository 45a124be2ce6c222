"""External collaborators: HTTP helper, LLM and ASR providers."""

from .api_caller import ApiResponse, call_api
from .asr import ASRChain, ASRResult, DashScopeASR, IASRProvider, TranscriptionASR, ZhipuASR
from .llm_provider import ChatResult, ILLMProvider, LLMProvider
from .openai_chat import OpenAICompatibleChatProvider

__all__ = [
    "ApiResponse",
    "call_api",
    "ASRChain",
    "ASRResult",
    "DashScopeASR",
    "IASRProvider",
    "TranscriptionASR",
    "ZhipuASR",
    "ChatResult",
    "ILLMProvider",
    "LLMProvider",
    "OpenAICompatibleChatProvider",
]
