"""Conversation turn stored in the session context store."""

from dataclasses import asdict, dataclass, fields
from typing import Any, Literal

from .envelope import now_ms


@dataclass
class ConversationTurn:
    """A single user/assistant/system turn in a session."""

    role: Literal["user", "assistant", "system"]
    content: str
    refined: str | None = None
    intent: str | None = None
    input_type: str | None = None
    source: str | None = None
    found: bool | None = None
    timestamp: int | None = None
    ticket_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, dropping unset optional fields."""
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ConversationTurn":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in raw.items() if key in known})

    def stamped(self, ticket_id: str | None = None) -> "ConversationTurn":
        """Copy with timestamp and ticket id filled in."""
        data = asdict(self)
        if ticket_id:
            data["ticket_id"] = ticket_id
        if not data.get("timestamp"):
            data["timestamp"] = now_ms()
        return ConversationTurn(**data)


@dataclass
class DialogRecord:
    """A user question paired with the answer that followed it (monitoring view)."""

    timestamp: int
    trace_id: str
    user_id: str
    merchant_id: str
    input_type: str
    question: str
    answer: str | None = None
    intent: str = ""
    source: str = ""
    found: bool = True
