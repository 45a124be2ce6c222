"""Session context store: per-conversation turn history with expiry."""

import json

from ..logging_config import get_logger
from ..models import ConversationTurn, DialogRecord
from .backends import ISessionBackend

logger = get_logger(__name__)


DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SIMILARITY_THRESHOLD = 0.8


def _normalize(text: str) -> str:
    return "".join(text.lower().split())


def similarity(first: str, second: str) -> float:
    """Similarity of two questions in [0, 1].

    Exact match (after lower-casing and removing whitespace) scores 1.0,
    containment in either direction 0.9, otherwise the Jaccard overlap of
    the two character sets.
    """
    a = _normalize(first)
    b = _normalize(second)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.9

    chars_a = set(a)
    chars_b = set(b)
    return len(chars_a & chars_b) / len(chars_a | chars_b)


class SessionContextStore:
    """Append-only turn lists keyed by ``ctx:{merchant}:{user}:{session}``."""

    KEY_PREFIX = "ctx:"

    def __init__(
        self,
        backend: ISessionBackend,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._similarity_threshold = similarity_threshold

    @property
    def backend(self) -> ISessionBackend:
        return self._backend

    @classmethod
    def key(cls, merchant_id: str, user_id: str, session_id: str) -> str:
        return f"{cls.KEY_PREFIX}{merchant_id}:{user_id}:{session_id}"

    async def add_turn(
        self,
        merchant_id: str,
        user_id: str,
        session_id: str,
        turn: ConversationTurn,
        ticket_id: str | None = None,
    ) -> int:
        """Append a turn and refresh the session's expiry. Returns the new length."""
        key = self.key(merchant_id, user_id, session_id)
        stamped = turn.stamped(ticket_id)
        length = await self._backend.append(
            key, json.dumps(stamped.to_dict(), ensure_ascii=False)
        )
        await self._backend.expire(key, self._ttl_seconds)
        logger.debug(
            "Appended %s turn to %s (length %s)",
            stamped.role,
            key,
            length,
            extra={"context": {"ticket_id": stamped.ticket_id}},
        )
        return length

    async def get_recent_turns(
        self, merchant_id: str, user_id: str, session_id: str, count: int = 5
    ) -> list[ConversationTurn]:
        """The last ``count`` turns, oldest first."""
        if count <= 0:
            return []
        key = self.key(merchant_id, user_id, session_id)
        items = await self._backend.range(key, -count, -1)
        return [self._decode(item) for item in items]

    async def get_full_history(
        self, merchant_id: str, user_id: str, session_id: str
    ) -> list[ConversationTurn]:
        key = self.key(merchant_id, user_id, session_id)
        items = await self._backend.range(key, 0, -1)
        return [self._decode(item) for item in items]

    async def find_similar_answer(
        self, merchant_id: str, user_id: str, session_id: str, question: str
    ) -> str | None:
        """Answer previously given to a similar question in this session.

        Scans from the newest turn backwards for a user turn whose similarity
        exceeds the threshold and which is immediately followed by an
        assistant turn.
        """
        turns = await self.get_full_history(merchant_id, user_id, session_id)
        if len(turns) < 2:
            return None

        for index in range(len(turns) - 1, -1, -1):
            turn = turns[index]
            if turn.role != "user":
                continue
            if similarity(question, turn.content) <= self._similarity_threshold:
                continue
            if index + 1 < len(turns) and turns[index + 1].role == "assistant":
                logger.info("Session cache hit: %r ~ %r", question, turn.content)
                return turns[index + 1].content

        return None

    async def clear_session(self, merchant_id: str, user_id: str, session_id: str) -> None:
        await self._backend.delete(self.key(merchant_id, user_id, session_id))

    async def get_recent_dialogs(
        self,
        merchant_id: str,
        limit: int = 10,
        max_sessions: int = 50,
        turns_per_session: int = 20,
    ) -> list[DialogRecord]:
        """Newest question/answer pairs across a merchant's sessions."""
        keys = await self._backend.scan(
            f"{self.KEY_PREFIX}{merchant_id}:*", limit=max_sessions
        )
        dialogs: list[DialogRecord] = []
        for key in keys:
            items = await self._backend.range(key, -turns_per_session, -1)
            turns = [self._decode(item) for item in items]
            dialogs.extend(self._pair_dialogs(key, turns))

        dialogs.sort(key=lambda record: record.timestamp, reverse=True)
        return dialogs[:limit]

    async def get_dialog_by_trace_id(self, trace_id: str) -> DialogRecord | None:
        """Find the question asked under ``trace_id`` and the answer that followed."""
        for key in await self._backend.scan(f"{self.KEY_PREFIX}*"):
            items = await self._backend.range(key, 0, -1)
            turns = [self._decode(item) for item in items]
            for record in self._pair_dialogs(key, turns):
                if record.trace_id == trace_id:
                    return record
        return None

    async def status(self) -> dict:
        keys = await self._backend.scan(f"{self.KEY_PREFIX}*")
        return {
            "backend": getattr(self._backend, "name", type(self._backend).__name__),
            "ttl_seconds": self._ttl_seconds,
            "key_count": len(keys),
        }

    @staticmethod
    def _decode(item: str) -> ConversationTurn:
        return ConversationTurn.from_dict(json.loads(item))

    def _pair_dialogs(self, key: str, turns: list[ConversationTurn]) -> list[DialogRecord]:
        # key layout: ctx:{merchant}:{user}:{session}
        parts = key[len(self.KEY_PREFIX) :].split(":")
        merchant_id = parts[0] if parts else "unknown"
        user_id = parts[1] if len(parts) > 1 else "unknown"

        records = []
        for index, turn in enumerate(turns):
            if turn.role != "user":
                continue
            following = turns[index + 1] if index + 1 < len(turns) else None
            answered = following is not None and following.role == "assistant"
            records.append(
                DialogRecord(
                    timestamp=turn.timestamp or 0,
                    trace_id=turn.ticket_id or f"temp-{turn.timestamp or 0}",
                    user_id=user_id,
                    merchant_id=merchant_id,
                    input_type=turn.input_type or "text",
                    question=turn.content,
                    answer=following.content if answered else None,
                    intent=turn.intent or "",
                    source=(following.source or "") if answered else "",
                    found=following.found is not False if answered else True,
                )
            )
        return records
