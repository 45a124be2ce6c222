"""TaskBus: central mailbox with broadcast subscriptions and a pull-based task pool."""

import itertools
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Protocol

from ..errors import BusClosedError
from ..logging_config import get_logger
from ..models import AgentName, Envelope

logger = get_logger(__name__)


TopicHandler = Callable[[Envelope], Awaitable[None]]

WILDCARD = "*"


class TaskStatus(str, Enum):
    """Lifecycle of a task-pool entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskEntry:
    """One envelope waiting in (or moving through) the task pool."""

    id: str
    envelope: Envelope
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    created_at: float = field(default_factory=time.monotonic)
    retries: int = 0
    claimed_at: float | None = None
    claim_token: str | None = None  # changes on every claim
    expires_at: float | None = None  # set once terminal; removed after this


class ITaskBus(Protocol):
    """Publish/subscribe plus the peek/claim/complete/fail task protocol."""

    @property
    def claim_lease(self) -> float | None:
        """Seconds a claim stays valid without renewal; None means forever."""
        ...

    def subscribe(self, topic: str, handler: TopicHandler) -> None:
        """Subscribe to ``"{from}→{to}"`` or to the wildcard ``"*"``."""
        ...

    def unsubscribe(self, topic: str, handler: TopicHandler) -> None:
        """Remove a previously registered handler."""
        ...

    async def publish(self, envelope: Envelope) -> str:
        """Insert a pending task and notify subscribers. Returns the task id."""
        ...

    def peek(self, agent_name: str, limit: int = 10) -> list[TaskEntry]:
        """Pending tasks addressed to ``agent_name`` (non-destructive)."""
        ...

    def claim(self, task_id: str, agent_name: str) -> TaskEntry | None:
        """Take exclusive ownership of a pending task."""
        ...

    def renew(self, task_id: str, claim_token: str) -> bool:
        """Extend the lease of a task still held under ``claim_token``."""
        ...

    def complete(self, task_id: str, claim_token: str | None = None) -> bool:
        """Mark a claimed task completed."""
        ...

    def fail(self, task_id: str, claim_token: str | None = None) -> bool:
        """Report failure of a claimed task: retry or park as failed."""
        ...


class TaskBus:
    """In-memory task bus.

    Single-event-loop design: ``claim``/``complete``/``fail`` never await, so a
    status check-and-set cannot interleave with another coroutine.
    """

    def __init__(
        self,
        max_retries: int = 3,
        completed_grace: float = 5.0,
        claim_lease: float | None = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_retries = max_retries
        self._completed_grace = completed_grace
        self._claim_lease = claim_lease
        self._clock = clock
        self._pool: dict[str, TaskEntry] = {}
        self._subscribers: dict[str, list[tuple[int, TopicHandler]]] = {}
        self._sequence = itertools.count()
        self._closed = False

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def claim_lease(self) -> float | None:
        return self._claim_lease

    def subscribe(self, topic: str, handler: TopicHandler) -> None:
        """Subscribe a handler to a topic."""
        self._subscribers.setdefault(topic, []).append((next(self._sequence), handler))

    def unsubscribe(self, topic: str, handler: TopicHandler) -> None:
        """Unsubscribe a handler; unknown handlers are ignored."""
        handlers = self._subscribers.get(topic, [])
        for index, (_, registered) in enumerate(handlers):
            if registered == handler:
                del handlers[index]
                return

    async def publish(self, envelope: Envelope) -> str:
        """Publish an envelope: pool it (unless user-bound), then notify subscribers."""
        if self._closed:
            raise BusClosedError("Task bus is closed")

        self._sweep()
        task_id = f"task_{uuid.uuid4().hex[:12]}"

        # Replies to the user go straight to the channel subscribers
        if envelope.recipient != AgentName.USER:
            self._pool[task_id] = TaskEntry(
                id=task_id, envelope=envelope, created_at=self._clock()
            )

        handlers = self._subscribers.get(WILDCARD, []) + self._subscribers.get(
            envelope.topic, []
        )
        handlers.sort(key=lambda item: item[0])

        for _, handler in handlers:
            try:
                await handler(envelope)
            except Exception:
                logger.exception(
                    "Error in subscriber for %s (%s)",
                    envelope.topic,
                    envelope.action,
                    extra={"context": {"trace_id": envelope.trace_id}},
                )

        return task_id

    def peek(self, agent_name: str, limit: int = 10) -> list[TaskEntry]:
        """Up to ``limit`` pending tasks for ``agent_name`` in insertion order."""
        self._sweep()
        tasks = []
        for entry in self._pool.values():
            if entry.status == TaskStatus.PENDING and entry.envelope.recipient == agent_name:
                tasks.append(entry)
                if len(tasks) >= limit:
                    break
        return tasks

    def claim(self, task_id: str, agent_name: str) -> TaskEntry | None:
        """Claim a pending task. Returns None if it is missing or already taken."""
        entry = self._pool.get(task_id)
        if entry is None or entry.status != TaskStatus.PENDING:
            return None

        entry.status = TaskStatus.PROCESSING
        entry.assigned_to = agent_name
        entry.claimed_at = self._clock()
        entry.claim_token = uuid.uuid4().hex
        return entry

    def renew(self, task_id: str, claim_token: str) -> bool:
        """Restart the lease of a task the caller still holds."""
        entry = self._held(task_id, claim_token)
        if entry is None:
            return False
        entry.claimed_at = self._clock()
        return True

    def complete(self, task_id: str, claim_token: str | None = None) -> bool:
        """Mark a claimed task completed; it is dropped after the grace period.

        With ``claim_token`` the call is a no-op unless that claim is still the
        current one, so a holder whose lease was reclaimed cannot finish the
        task under the new claimant.
        """
        entry = self._held(task_id, claim_token)
        if entry is None:
            return False

        entry.status = TaskStatus.COMPLETED
        entry.claim_token = None
        entry.expires_at = self._clock() + self._completed_grace
        return True

    def fail(self, task_id: str, claim_token: str | None = None) -> bool:
        """Return a claimed task to pending with retries+1, or park it as failed."""
        entry = self._held(task_id, claim_token)
        if entry is None:
            return False

        entry.claim_token = None
        if entry.retries < self._max_retries:
            entry.status = TaskStatus.PENDING
            entry.assigned_to = None
            entry.claimed_at = None
            entry.retries += 1
            logger.warning(
                "Task %s returned to pool (retry %s/%s)",
                task_id,
                entry.retries,
                self._max_retries,
            )
        else:
            entry.status = TaskStatus.FAILED
            entry.expires_at = self._clock() + self._completed_grace
            logger.error(
                "Task %s failed permanently after %s retries (%s %s)",
                task_id,
                entry.retries,
                entry.envelope.topic,
                entry.envelope.action,
                extra={"context": {"trace_id": entry.envelope.trace_id}},
            )
        return True

    def _held(self, task_id: str, claim_token: str | None) -> TaskEntry | None:
        entry = self._pool.get(task_id)
        if entry is None or entry.status != TaskStatus.PROCESSING:
            return None
        if claim_token is not None and entry.claim_token != claim_token:
            logger.warning("Stale claim on task %s ignored", task_id)
            return None
        return entry

    def get(self, task_id: str) -> TaskEntry | None:
        """Look up a task by id (diagnostics)."""
        return self._pool.get(task_id)

    def stats(self) -> dict:
        """Pool counts per status and pending counts per recipient."""
        self._sweep()
        by_status = {status.value: 0 for status in TaskStatus}
        queue_sizes: dict[str, int] = {}
        for entry in self._pool.values():
            by_status[entry.status.value] += 1
            if entry.status == TaskStatus.PENDING:
                recipient = entry.envelope.recipient
                queue_sizes[recipient] = queue_sizes.get(recipient, 0) + 1
        return {"total": len(self._pool), **by_status, "queue_sizes": queue_sizes}

    def close(self) -> None:
        """Refuse further publishes."""
        self._closed = True

    def _sweep(self) -> None:
        """Drop expired terminal entries and reclaim tasks whose lease ran out."""
        now = self._clock()
        for task_id, entry in list(self._pool.items()):
            if entry.expires_at is not None and entry.expires_at <= now:
                del self._pool[task_id]
            elif (
                self._claim_lease is not None
                and entry.status == TaskStatus.PROCESSING
                and entry.claimed_at is not None
                and now - entry.claimed_at >= self._claim_lease
            ):
                logger.warning(
                    "Claim lease expired for task %s held by %s",
                    task_id,
                    entry.assigned_to,
                )
                self.fail(task_id)
