"""Knowledge agent (C): keyword retrieval with contextual disambiguation."""

import asyncio
import re
from dataclasses import dataclass
from typing import Iterable

from ..bus import ITaskBus, TaskEntry
from ..collaborators import ILLMProvider
from ..logging_config import get_logger
from ..merchants import KnowledgeService
from ..models import (
    AgentName,
    ConversationTurn,
    Envelope,
    KnowledgeFound,
    KnowledgeItem,
    KnowledgeNotFound,
    KnowledgeOk,
    KnowledgeQuery,
    MultiMatch,
)
from ..session import SessionContextStore
from .base import DEFAULT_POLL_INTERVAL, PollingAgent

logger = get_logger(__name__)


DISAMBIGUATION_PROMPT = """你是知识库检索助手，帮助选择最符合用户意图的答案。

你会收到：
1. 用户的对话历史（了解上下文）
2. 多个候选答案

你的任务：
- 分析用户真正想问什么
- 选择最相关的答案
- 只返回答案的index（数字）"""


@dataclass(frozen=True)
class ScoringWeights:
    keyword: float = 10.0
    name: float = 5.0
    content: float = 2.0


@dataclass(frozen=True)
class ScoredItem:
    item: KnowledgeItem
    score: float


def rank(
    items: Iterable[KnowledgeItem],
    query: str,
    weights: ScoringWeights = ScoringWeights(),
) -> list[ScoredItem]:
    """Score items against ``query``; zero scores are dropped.

    Sorting is stable, so equal scores keep their load order.
    """
    query_lower = query.lower()
    results = []
    for item in items:
        score = 0.0
        for keyword in item.keywords:
            if keyword and keyword.lower() in query_lower:
                score += weights.keyword
        if query_lower and query_lower in item.name.lower():
            score += weights.name
        if query_lower and query_lower in item.content.lower():
            score += weights.content

        score *= item.weight or 1.0
        if score > 0:
            results.append(ScoredItem(item=item, score=score))

    results.sort(key=lambda result: result.score, reverse=True)
    return results


def format_context(turns: list[ConversationTurn]) -> str:
    return "\n".join(
        f"{'用户' if turn.role == 'user' else '助手'}: {turn.content or ''}" for turn in turns
    )


class KnowledgeAgent(PollingAgent):
    """Answers ``B_QUERY_C`` tasks. Reads merchant data, never writes it."""

    name = AgentName.KNOWLEDGE

    def __init__(
        self,
        bus: ITaskBus,
        knowledge_service: KnowledgeService,
        context_store: SessionContextStore,
        llm: ILLMProvider | None = None,
        weights: ScoringWeights = ScoringWeights(),
        context_window: int = 5,
        preload: Iterable[str] = (),
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        super().__init__(bus, poll_interval=poll_interval)
        self._knowledge_service = knowledge_service
        self._context_store = context_store
        self._llm = llm
        self._weights = weights
        self._context_window = context_window
        self._preload = list(preload)
        self._items: dict[str, list[KnowledgeItem]] = {}
        self._load_locks: dict[str, asyncio.Lock] = {}

    async def start(self, poll: bool = True) -> None:
        for merchant_id in self._preload:
            await self.load_merchant(merchant_id)
        await super().start(poll=poll)

    async def load_merchant(self, merchant_id: str) -> int:
        """(Re)load a merchant's items. Returns how many are enabled."""
        items = await self._knowledge_service.load(merchant_id)
        self._items[merchant_id] = [item for item in items if item.enabled]
        logger.info(
            "Loaded %s knowledge items for %s", len(self._items[merchant_id]), merchant_id
        )
        return len(self._items[merchant_id])

    async def refresh(self, merchant_id: str) -> int:
        return await self.load_merchant(merchant_id)

    async def items_for(self, merchant_id: str) -> list[KnowledgeItem]:
        if merchant_id not in self._items:
            lock = self._load_locks.setdefault(merchant_id, asyncio.Lock())
            async with lock:
                if merchant_id not in self._items:
                    await self.load_merchant(merchant_id)
        return self._items[merchant_id]

    async def search(self, merchant_id: str, query: str) -> list[ScoredItem]:
        return rank(await self.items_for(merchant_id), query, self._weights)

    def status(self) -> dict:
        return {
            "merchants": {merchant: len(items) for merchant, items in self._items.items()},
            "llm_enabled": self._llm is not None,
        }

    async def handle_task(self, entry: TaskEntry) -> None:
        envelope = entry.envelope
        if not isinstance(envelope.data, KnowledgeQuery):
            logger.warning(
                "Ignoring %s from %s", envelope.action, envelope.sender,
                extra={"context": {"trace_id": envelope.trace_id}},
            )
            return
        await self._answer(envelope, envelope.data)

    async def _answer(self, envelope: Envelope, request: KnowledgeQuery) -> None:
        results = await self.search(envelope.merchant_id, request.query)

        if not results:
            logger.info("No knowledge for %r (%s)", request.query, envelope.merchant_id)
            not_found = KnowledgeNotFound(
                query=request.query, intent_category=request.intent_category
            )
            await self._bus.publish(
                envelope.follow_up(AgentName.KNOWLEDGE, AgentName.DECISION, not_found)
            )
            await self._bus.publish(
                envelope.follow_up(AgentName.KNOWLEDGE, AgentName.OBSERVER, not_found)
            )
            return

        best = results[0]
        if len(results) > 1:
            best = await self.disambiguate(envelope, results)
            await self._bus.publish(
                envelope.follow_up(
                    AgentName.KNOWLEDGE, AgentName.OBSERVER, MultiMatch(count=len(results))
                )
            )

        logger.info("Knowledge hit %s (score %s)", best.item.id, best.score)
        await self._bus.publish(
            envelope.follow_up(
                AgentName.KNOWLEDGE,
                AgentName.DECISION,
                KnowledgeFound(
                    content=best.item.content, item_id=best.item.id, score=best.score
                ),
            )
        )
        await self._bus.publish(
            envelope.follow_up(
                AgentName.KNOWLEDGE, AgentName.OBSERVER, KnowledgeOk(item_id=best.item.id)
            )
        )

    async def disambiguate(
        self, envelope: Envelope, results: list[ScoredItem]
    ) -> ScoredItem:
        """Pick one of several candidates using the recent conversation."""
        turns = await self._context_store.get_recent_turns(
            envelope.merchant_id,
            envelope.user_id,
            envelope.session_id,
            self._context_window,
        )
        context_text = format_context(turns)

        index = await self._ask_llm(context_text, results)
        if index is not None:
            return results[index]

        for result in results:
            if result.item.category and result.item.category in context_text:
                return result
        return results[0]

    async def _ask_llm(self, context_text: str, results: list[ScoredItem]) -> int | None:
        if self._llm is None:
            return None

        candidates = "\n".join(
            f"{index}. {result.item.name}: {result.item.content[:100]}"
            for index, result in enumerate(results)
        )
        prompt = (
            f"对话历史：\n{context_text or '(无历史)'}\n\n"
            f"候选答案：\n{candidates}\n\n"
            "请返回最佳答案的index（只返回数字）："
        )
        try:
            result = await self._llm.chat(
                [{"role": "user", "content": prompt}], system_prompt=DISAMBIGUATION_PROMPT
            )
        except Exception:
            logger.exception("Disambiguation call raised")
            return None
        if not result.success:
            logger.warning("Disambiguation call failed: %s", result.error)
            return None

        match = re.search(r"\d+", result.content)
        if match is None:
            logger.warning("Unparsable disambiguation answer: %r", result.content)
            return None
        index = int(match.group(0))
        if not 0 <= index < len(results):
            logger.warning("Disambiguation index %s out of range", index)
            return None
        return index
