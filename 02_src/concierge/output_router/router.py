"""ReplyRouter: consumer of the user-facing reply channel."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from ..bus import ITaskBus
from ..logging_config import get_logger
from ..models import AgentName, Envelope, Reply

logger = get_logger(__name__)


REPLY_TOPIC = f"{AgentName.DECISION}→{AgentName.USER}"


@dataclass
class DeliveredReply:
    """A reply as handed to the user, keyed by its ticket."""

    trace_id: str
    merchant_id: str
    user_id: str
    session_id: str
    response: str
    source: str
    cost_ms: int
    timestamp: int


class IReplyRouter(Protocol):
    """Delivery of outbound replies to whoever is waiting for them."""

    async def start(self) -> None:
        """Subscribe to the reply channel."""
        ...

    async def stop(self) -> None:
        """Unsubscribe from the reply channel."""
        ...

    async def wait(self, trace_id: str, timeout: float) -> DeliveredReply | None:
        """Wait for the reply to a ticket."""
        ...


class ReplyRouter:
    """Stores replies by trace id so request handlers can pick them up.

    Entries untouched for ``retention`` seconds are purged once more than
    ``max_entries`` replies are held.
    """

    def __init__(
        self,
        bus: ITaskBus,
        retention: float = 600.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._bus = bus
        self._retention = retention
        self._max_entries = max_entries
        self._clock = clock
        self._replies: dict[str, DeliveredReply] = {}
        self._last_access: dict[str, float] = {}
        self._waiters: dict[str, asyncio.Event] = {}

    async def start(self) -> None:
        """Subscribe to B→USER."""
        self._bus.subscribe(REPLY_TOPIC, self._handle_reply)

    async def stop(self) -> None:
        self._bus.unsubscribe(REPLY_TOPIC, self._handle_reply)

    def get(self, trace_id: str) -> DeliveredReply | None:
        reply = self._replies.get(trace_id)
        if reply is not None:
            self._last_access[trace_id] = self._clock()
        return reply

    async def wait(self, trace_id: str, timeout: float) -> DeliveredReply | None:
        """Reply for ``trace_id``; None if it does not arrive within ``timeout``."""
        reply = self.get(trace_id)
        if reply is not None:
            return reply

        event = self._waiters.setdefault(trace_id, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("No reply for %s within %.1fs", trace_id, timeout)
            return None
        finally:
            self._waiters.pop(trace_id, None)
        return self.get(trace_id)

    async def _handle_reply(self, envelope: Envelope) -> None:
        if not isinstance(envelope.data, Reply):
            return

        self._replies[envelope.trace_id] = DeliveredReply(
            trace_id=envelope.trace_id,
            merchant_id=envelope.merchant_id,
            user_id=envelope.user_id,
            session_id=envelope.session_id,
            response=envelope.data.response,
            source=envelope.data.source,
            cost_ms=envelope.data.cost_ms,
            timestamp=envelope.timestamp,
        )
        self._last_access[envelope.trace_id] = self._clock()
        if len(self._replies) > self._max_entries:
            self._cleanup()

        event = self._waiters.get(envelope.trace_id)
        if event is not None:
            event.set()

    def _cleanup(self) -> None:
        now = self._clock()
        for trace_id, last_access in list(self._last_access.items()):
            if now - last_access > self._retention:
                self._replies.pop(trace_id, None)
                del self._last_access[trace_id]
