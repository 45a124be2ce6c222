"""Concierge: multi-merchant question answering over an agent task bus."""

from .agents import (
    DecisionAgent,
    IntakeAgent,
    IntakeResult,
    IntentClassifier,
    KnowledgeAgent,
    ObservabilityAgent,
    PollingAgent,
)
from .app import Application, IApplication
from .bus import ITaskBus, PendingRequests, TaskBus, TaskEntry, TaskStatus
from .collaborators import ILLMProvider, LLMProvider, OpenAICompatibleChatProvider
from .config import Settings
from .errors import (
    ASRFailure,
    BusClosedError,
    ConciergeError,
    InputError,
    StorageNotInitializedError,
)
from .merchants import HotQuestionService, KnowledgeService, MerchantConfigLoader
from .models import Action, AgentName, ConversationTurn, Envelope
from .output_router import ReplyRouter
from .session import InMemorySessionBackend, RedisSessionBackend, SessionContextStore
from .storage import IStorage, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Settings",
    # Models
    "Action",
    "AgentName",
    "ConversationTurn",
    "Envelope",
    # Errors
    "ConciergeError",
    "InputError",
    "ASRFailure",
    "BusClosedError",
    "StorageNotInitializedError",
    # Components
    "ITaskBus",
    "TaskBus",
    "TaskEntry",
    "TaskStatus",
    "PendingRequests",
    "SessionContextStore",
    "InMemorySessionBackend",
    "RedisSessionBackend",
    "IStorage",
    "Storage",
    "MerchantConfigLoader",
    "HotQuestionService",
    "KnowledgeService",
    "ILLMProvider",
    "LLMProvider",
    "OpenAICompatibleChatProvider",
    "PollingAgent",
    "IntentClassifier",
    "IntakeAgent",
    "IntakeResult",
    "DecisionAgent",
    "KnowledgeAgent",
    "ObservabilityAgent",
    "ReplyRouter",
]
