"""Core data models for Concierge."""

from .dialogue import ConversationTurn, DialogRecord
from .envelope import (
    PAYLOAD_TYPES,
    Action,
    AgentName,
    Envelope,
    IntakeCompleted,
    KnowledgeFound,
    KnowledgeNotFound,
    KnowledgeOk,
    KnowledgeQuery,
    MultiMatch,
    ParsedQuestion,
    Payload,
    Reply,
    ReplySummary,
    UnknownPayload,
    UserEnter,
    now_ms,
    parse_payload,
)
from .knowledge import HotQuestion, KnowledgeItem
from .tracing import AgentHealth, DailyStats, MissingQuestion, TraceEvent

__all__ = [
    # Envelope
    "Action",
    "AgentName",
    "Envelope",
    "Payload",
    "PAYLOAD_TYPES",
    "parse_payload",
    "now_ms",
    # Payloads
    "ParsedQuestion",
    "IntakeCompleted",
    "KnowledgeQuery",
    "KnowledgeFound",
    "KnowledgeNotFound",
    "MultiMatch",
    "KnowledgeOk",
    "Reply",
    "ReplySummary",
    "UserEnter",
    "UnknownPayload",
    # Dialogue
    "ConversationTurn",
    "DialogRecord",
    # Merchant data
    "KnowledgeItem",
    "HotQuestion",
    # Tracing
    "TraceEvent",
    "AgentHealth",
    "DailyStats",
    "MissingQuestion",
]
