"""Observability agent (D): liveness, daily counters and missing questions."""

import asyncio
import time
import uuid
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Callable

from ..bus import WILDCARD, ITaskBus, TaskEntry
from ..logging_config import get_logger
from ..models import (
    AgentHealth,
    AgentName,
    DailyStats,
    Envelope,
    IntakeCompleted,
    KnowledgeNotFound,
    MissingQuestion,
    MultiMatch,
    ReplySummary,
    TraceEvent,
    UserEnter,
    now_ms,
)
from ..storage import IStorage
from .base import DEFAULT_POLL_INTERVAL, PollingAgent

logger = get_logger(__name__)


DEFAULT_HEALTH_CHECK_INTERVAL = 30.0
DEFAULT_OFFLINE_AFTER = 60.0

CACHE_SOURCES = ("user_cache", "hot_question")

SUGGESTED_ACTIONS = {
    "PRICE_QUERY": "建议补充：详细价格表、优惠政策、学生/老人票价",
    "FACILITY_QUERY": "建议补充：厕所位置、母婴室、充电宝分布、停车场信息",
    "LOCATION_QUERY": "建议补充：景区建议路线、游览时长、最佳拍照点",
    "OTHER_QUERY": "建议：人工审核这些零散问题，提取关键词",
}
DEFAULT_SUGGESTED_ACTION = "建议管理员核实该意图下的常见提问"


class ObservabilityAgent(PollingAgent):
    """Watches every envelope on the bus.

    Recording is best-effort: a failure here is logged and never reaches the
    publisher.
    """

    name = AgentName.OBSERVER

    def __init__(
        self,
        bus: ITaskBus,
        storage: IStorage | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL,
        offline_after: float = DEFAULT_OFFLINE_AFTER,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ):
        super().__init__(bus, poll_interval=poll_interval)
        self._storage = storage
        self._health_check_interval = health_check_interval
        self._offline_after = offline_after
        self._clock = clock
        self._today = today
        self._health: dict[str, AgentHealth] = {}
        self._daily: dict[str, DailyStats] = {}
        self._missing: dict[str, dict[str, MissingQuestion]] = {}
        self._health_task: asyncio.Task | None = None

    def _subscribe(self) -> None:
        self._bus.subscribe(WILDCARD, self._observe)

    def _unsubscribe(self) -> None:
        self._bus.unsubscribe(WILDCARD, self._observe)

    async def start(self, poll: bool = True) -> None:
        await super().start(poll=poll)
        if poll and self._health_task is None:
            self._health_task = asyncio.create_task(self._health_loop())

    async def stop(self) -> None:
        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
        await super().stop()

    async def handle_task(self, entry: TaskEntry) -> None:
        # Mailbox copies are only acknowledged; the broadcast already recorded them
        return

    # Queries
    def check_agent_health(self) -> list[str]:
        """Agents silent for longer than the offline window."""
        now = self._clock()
        offline = []
        for agent, health in self._health.items():
            silent_for = now - health.last_seen
            if silent_for > self._offline_after:
                logger.warning("Agent %s silent for %.0fs", agent, silent_for)
                offline.append(agent)
        return offline

    def agent_health(self) -> dict[str, AgentHealth]:
        return dict(self._health)

    def merchants(self) -> list[str]:
        return sorted(set(self._daily) | set(self._missing))

    def stats(self, merchant_id: str | None = None) -> dict:
        """Counters for one merchant, or aggregated over all of them."""
        if merchant_id is not None:
            if merchant_id in self._daily:
                daily = self._stats_for(merchant_id)
            else:
                daily = DailyStats(date=self._today().isoformat())
            return {
                "merchant_id": merchant_id,
                **asdict(daily),
                "missing_questions": {
                    question: asdict(entry)
                    for question, entry in self._missing.get(merchant_id, {}).items()
                },
            }

        totals = DailyStats(date=self._today().isoformat())
        weighted_ms = 0.0
        for merchant in list(self._daily):
            daily = self._stats_for(merchant)
            totals.total_dialogs += daily.total_dialogs
            totals.voice_dialogs += daily.voice_dialogs
            totals.text_dialogs += daily.text_dialogs
            totals.cache_hits += daily.cache_hits
            totals.ai_calls += daily.ai_calls
            totals.response_samples += daily.response_samples
            weighted_ms += daily.avg_response_ms * daily.response_samples
        if totals.response_samples:
            totals.avg_response_ms = weighted_ms / totals.response_samples

        return {
            **asdict(totals),
            "merchants": self.merchants(),
            "missing_question_count": sum(len(table) for table in self._missing.values()),
        }

    def missing_questions(self, merchant_id: str) -> dict[str, MissingQuestion]:
        return dict(self._missing.get(merchant_id, {}))

    def ignore_missing_question(self, merchant_id: str, question: str) -> bool:
        """Remove a question from the missing table (e.g. once it has been answered)."""
        table = self._missing.get(merchant_id, {})
        if question not in table:
            return False
        del table[question]
        logger.info("Missing question ignored for %s: %s", merchant_id, question)
        return True

    def missing_question_clusters(self, merchant_id: str, min_questions: int = 3) -> list[dict]:
        """Missing questions grouped by intent, with a suggested follow-up."""
        table = self._missing.get(merchant_id, {})
        if len(table) < min_questions:
            return []

        clusters: dict[str, list[str]] = {}
        for question, entry in table.items():
            clusters.setdefault(entry.intent_category or "OTHER_QUERY", []).append(question)

        return [
            {
                "intent": intent,
                "count": len(questions),
                "questions": questions,
                "suggested_action": SUGGESTED_ACTIONS.get(intent, DEFAULT_SUGGESTED_ACTION),
            }
            for intent, questions in clusters.items()
        ]

    # Recording
    async def _observe(self, envelope: Envelope) -> None:
        try:
            if envelope.sender not in (AgentName.USER, AgentName.SYSTEM):
                health = self._health.setdefault(envelope.sender, AgentHealth())
                health.last_seen = self._clock()
                health.message_count += 1

            if envelope.recipient == self.name:
                self._record(envelope)

            if self._storage is not None:
                self._detach(self._persist(envelope), "trace event")
        except Exception:
            logger.exception(
                "Failed to record %s",
                envelope.action,
                extra={"context": {"trace_id": envelope.trace_id}},
            )

    def _record(self, envelope: Envelope) -> None:
        data = envelope.data
        stats = self._stats_for(envelope.merchant_id)

        if isinstance(data, IntakeCompleted):
            stats.total_dialogs += 1
            if data.input_type == "voice":
                stats.voice_dialogs += 1
            else:
                stats.text_dialogs += 1
        elif isinstance(data, ReplySummary):
            if data.source in CACHE_SOURCES:
                stats.cache_hits += 1
            if data.source.startswith("ai"):
                stats.ai_calls += 1
            stats.response_samples += 1
            n = stats.response_samples
            stats.avg_response_ms = (stats.avg_response_ms * (n - 1) + data.cost_ms) / n
        elif isinstance(data, KnowledgeNotFound):
            self._record_missing(envelope.merchant_id, data.query, data.intent_category)
        elif isinstance(data, MultiMatch):
            logger.info("Multi-match (%s candidates) on %s", data.count, envelope.trace_id)
        elif isinstance(data, UserEnter):
            logger.info("User %s entered (%s)", envelope.user_id, data.mode)

    def _record_missing(self, merchant_id: str, question: str, intent: str | None) -> None:
        if not question:
            return
        now = now_ms()
        table = self._missing.setdefault(merchant_id, {})
        entry = table.get(question)
        if entry is None:
            entry = table[question] = MissingQuestion(first_seen_at=now)
        entry.count += 1
        entry.last_seen_at = now
        if intent:
            entry.intent_category = intent
        logger.info("Missing question for %s: %s (x%s)", merchant_id, question, entry.count)

    def _stats_for(self, merchant_id: str) -> DailyStats:
        today = self._today().isoformat()
        stats = self._daily.get(merchant_id)
        if stats is not None and stats.date != today:
            logger.info(
                "Daily stats for %s on %s",
                merchant_id,
                stats.date,
                extra={"context": asdict(stats)},
            )
            stats = None
        if stats is None:
            stats = self._daily[merchant_id] = DailyStats(date=today)
        return stats

    async def _persist(self, envelope: Envelope) -> None:
        await self._storage.save_trace_event(
            TraceEvent(
                id=str(uuid.uuid4()),
                trace_id=envelope.trace_id,
                action=envelope.action,
                sender=envelope.sender,
                recipient=envelope.recipient,
                merchant_id=envelope.merchant_id,
                data=envelope.data.to_dict(),
                timestamp=datetime.fromtimestamp(envelope.timestamp / 1000, tz=timezone.utc),
            )
        )

    async def _health_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._health_check_interval)
                self.check_agent_health()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check error: {e}", exc_info=True)
