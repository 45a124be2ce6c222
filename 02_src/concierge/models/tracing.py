"""Tracing and observability data models."""

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass
class TraceEvent:
    """A persisted record of one envelope seen on the bus."""

    id: str
    trace_id: str
    action: str
    sender: str
    recipient: str
    merchant_id: str
    data: dict  # envelope payload in wire form
    timestamp: datetime


@dataclass
class AgentHealth:
    """Liveness bookkeeping for one upstream agent."""

    last_seen: float = 0.0  # monotonic seconds
    message_count: int = 0


@dataclass
class DailyStats:
    """Per-merchant counters for one calendar day."""

    date: str = field(default_factory=lambda: date.today().isoformat())
    total_dialogs: int = 0
    voice_dialogs: int = 0
    text_dialogs: int = 0
    cache_hits: int = 0
    ai_calls: int = 0
    avg_response_ms: float = 0.0
    response_samples: int = 0


@dataclass
class MissingQuestion:
    """A question no tier could answer, kept for knowledge-base backfill."""

    count: int = 0
    first_seen_at: int = 0  # epoch ms
    last_seen_at: int = 0
    intent_category: str | None = None
