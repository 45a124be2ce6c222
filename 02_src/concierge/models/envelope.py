"""Envelope: the unit of inter-agent communication on the task bus.

``data`` is a tagged payload. Each payload dataclass declares the ``Action`` it
belongs to, and ``parse_payload`` maps a wire action back to its dataclass.
Unrecognized actions are kept as ``UnknownPayload`` so consumers can log and
ignore them instead of reaching into an untyped dict.
"""

import re
import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def _to_camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.title() for part in tail)


def _to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class AgentName:
    """Bus addresses."""

    INTAKE = "A"
    DECISION = "B"
    KNOWLEDGE = "C"
    OBSERVER = "D"
    USER = "USER"
    SYSTEM = "SYSTEM"


class Action(str, Enum):
    """Documented action vocabulary. The wire format accepts any string."""

    A_PARSED = "A_PARSED"
    A_COMPLETED = "A_COMPLETED"
    B_QUERY_C = "B_QUERY_C"
    C_FOUND = "C_FOUND"
    C_NOT_FOUND = "C_NOT_FOUND"
    C_MULTI_MATCH = "C_MULTI_MATCH"
    C_OK = "C_OK"
    B_RESPONSE = "B_RESPONSE"
    B_OK = "B_OK"
    USER_ENTER = "USER_ENTER"


@dataclass(frozen=True)
class Payload:
    """Base class for tagged envelope payloads."""

    action: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        return {_to_camel(key): value for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Payload":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in raw.items():
            name = _to_snake(key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class ParsedQuestion(Payload):
    """A -> B: a classified, refined user question."""

    action: ClassVar[str] = Action.A_PARSED.value

    input_type: str = "text"
    intent_category: str = "OTHER_QUERY"
    refined_question: str = ""
    original_input: str = ""
    ticket_id: str = ""


@dataclass(frozen=True)
class IntakeCompleted(Payload):
    """A -> D: intake finished for a ticket."""

    action: ClassVar[str] = Action.A_COMPLETED.value

    success: bool = True
    input_type: str = "text"
    intent_category: str = "OTHER_QUERY"
    refined_question: str = ""
    ticket_id: str = ""


@dataclass(frozen=True)
class KnowledgeQuery(Payload):
    """B -> C: knowledge-base lookup request."""

    action: ClassVar[str] = Action.B_QUERY_C.value

    query: str = ""
    intent_category: str = "OTHER_QUERY"


@dataclass(frozen=True)
class KnowledgeFound(Payload):
    """C -> B: positive knowledge-base reply."""

    action: ClassVar[str] = Action.C_FOUND.value

    content: str = ""
    item_id: str = ""
    score: float = 0.0
    source: str = "knowledge_base"


@dataclass(frozen=True)
class KnowledgeNotFound(Payload):
    """C -> B and C -> D: nothing matched the query."""

    action: ClassVar[str] = Action.C_NOT_FOUND.value

    query: str = ""
    intent_category: str | None = None


@dataclass(frozen=True)
class MultiMatch(Payload):
    """C -> D: several candidates needed disambiguation."""

    action: ClassVar[str] = Action.C_MULTI_MATCH.value

    count: int = 0


@dataclass(frozen=True)
class KnowledgeOk(Payload):
    """C -> D: an item was returned to B."""

    action: ClassVar[str] = Action.C_OK.value

    item_id: str = ""


@dataclass(frozen=True)
class Reply(Payload):
    """B -> USER: the outbound answer."""

    action: ClassVar[str] = Action.B_RESPONSE.value

    response: str = ""
    source: str = ""
    cost_ms: int = 0


@dataclass(frozen=True)
class ReplySummary(Payload):
    """B -> D: completion summary for a ticket."""

    action: ClassVar[str] = Action.B_OK.value

    source: str = ""
    cost_ms: int = 0
    input_type: str | None = None


@dataclass(frozen=True)
class UserEnter(Payload):
    """SYSTEM -> D: a user opened a conversation."""

    action: ClassVar[str] = Action.USER_ENTER.value

    mode: str = "text"


@dataclass(frozen=True)
class UnknownPayload(Payload):
    """Payload of an action outside the documented vocabulary."""

    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "UnknownPayload":
        return cls(raw=dict(raw))


PAYLOAD_TYPES: dict[str, type[Payload]] = {
    payload_type.action: payload_type
    for payload_type in (
        ParsedQuestion,
        IntakeCompleted,
        KnowledgeQuery,
        KnowledgeFound,
        KnowledgeNotFound,
        MultiMatch,
        KnowledgeOk,
        Reply,
        ReplySummary,
        UserEnter,
    )
}


def parse_payload(action: str, raw: dict[str, Any] | None) -> Payload:
    """Decode a wire ``data`` object into the payload type for ``action``."""
    payload_type = PAYLOAD_TYPES.get(action, UnknownPayload)
    return payload_type.from_dict(raw or {})


@dataclass(frozen=True)
class Envelope:
    """One message moving through the bus, correlated by ``trace_id``."""

    trace_id: str
    sender: str
    recipient: str
    action: str
    merchant_id: str
    user_id: str
    session_id: str
    data: Payload
    timestamp: int = field(default_factory=now_ms)

    @property
    def topic(self) -> str:
        """Subscription key for this envelope's route."""
        return f"{self.sender}→{self.recipient}"

    @classmethod
    def create(
        cls,
        sender: str,
        recipient: str,
        data: Payload,
        *,
        trace_id: str,
        merchant_id: str,
        user_id: str,
        session_id: str,
    ) -> "Envelope":
        """Build an envelope whose action is taken from the payload type."""
        return cls(
            trace_id=trace_id,
            sender=sender,
            recipient=recipient,
            action=data.action,
            merchant_id=merchant_id,
            user_id=user_id,
            session_id=session_id,
            data=data,
        )

    def follow_up(self, sender: str, recipient: str, data: Payload) -> "Envelope":
        """New envelope on the same ticket and conversation."""
        return Envelope.create(
            sender,
            recipient,
            data,
            trace_id=self.trace_id,
            merchant_id=self.merchant_id,
            user_id=self.user_id,
            session_id=self.session_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable wire shape."""
        return {
            "traceId": self.trace_id,
            "from": self.sender,
            "to": self.recipient,
            "action": self.action,
            "merchantId": self.merchant_id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Envelope":
        action = str(raw.get("action", ""))
        return cls(
            trace_id=str(raw.get("traceId", "")),
            sender=str(raw.get("from", "")),
            recipient=str(raw.get("to", "")),
            action=action,
            merchant_id=str(raw.get("merchantId", "")),
            user_id=str(raw.get("userId", "")),
            session_id=str(raw.get("sessionId", "")),
            data=parse_payload(action, raw.get("data")),
            timestamp=int(raw.get("timestamp") or now_ms()),
        )
