"""Decision agent (B): resolves an answer through the tiered waterfall."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from ..bus import ITaskBus, PendingRequests, TaskEntry
from ..collaborators import ILLMProvider
from ..logging_config import get_logger
from ..merchants import HotQuestionService, MerchantConfig, MerchantConfigLoader
from ..models import (
    Action,
    AgentName,
    ConversationTurn,
    Envelope,
    KnowledgeFound,
    KnowledgeQuery,
    ParsedQuestion,
    Reply,
    ReplySummary,
)
from ..session import SessionContextStore
from .base import DEFAULT_POLL_INTERVAL, PollingAgent
from .intent import IntentCategory

logger = get_logger(__name__)


DEFAULT_KNOWLEDGE_TIMEOUT = 3.0
DEFAULT_GENERATION_TIMEOUT = 20.0

SOURCE_USER_CACHE = "user_cache"
SOURCE_HOT_QUESTION = "hot_question"
SOURCE_CHITCHAT = "chitchat"
SOURCE_KNOWLEDGE_BASE = "knowledge_base"
SOURCE_AI_FALLBACK = "ai_fallback"

KNOWLEDGE_REPLY_TOPIC = f"{AgentName.KNOWLEDGE}→{AgentName.DECISION}"


@dataclass
class Resolution:
    """Answer chosen by the waterfall and the tier it came from."""

    answer: str
    source: str
    hot_question_id: str | None = None
    item_id: str | None = None


class DecisionAgent(PollingAgent):
    """Consumes ``A_PARSED`` tasks and always replies to the user.

    Tiers, first hit wins: session cache, merchant hot questions, scripted
    chit-chat, knowledge-base round trip (time-boxed), generative fallback.
    """

    name = AgentName.DECISION

    def __init__(
        self,
        bus: ITaskBus,
        context_store: SessionContextStore,
        hot_questions: HotQuestionService,
        config_loader: MerchantConfigLoader,
        llm: ILLMProvider | None = None,
        pending: PendingRequests | None = None,
        knowledge_timeout: float = DEFAULT_KNOWLEDGE_TIMEOUT,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(bus, poll_interval=poll_interval)
        self._context_store = context_store
        self._hot_questions = hot_questions
        self._config_loader = config_loader
        self._llm = llm
        self._pending = pending or PendingRequests()
        self._knowledge_timeout = knowledge_timeout
        self._generation_timeout = generation_timeout
        self._clock = clock

    @property
    def pending(self) -> PendingRequests:
        return self._pending

    def _subscribe(self) -> None:
        self._bus.subscribe(KNOWLEDGE_REPLY_TOPIC, self._on_knowledge_reply)

    def _unsubscribe(self) -> None:
        self._bus.unsubscribe(KNOWLEDGE_REPLY_TOPIC, self._on_knowledge_reply)

    async def stop(self) -> None:
        await super().stop()
        self._pending.cancel_all()

    def refresh_hot_questions(self, merchant_id: str) -> None:
        """Drop the cached hot-question list so the next lookup reloads it."""
        self._hot_questions.invalidate(merchant_id)
        logger.info("Hot question cache cleared for %s", merchant_id)

    async def handle_task(self, entry: TaskEntry) -> None:
        envelope = entry.envelope
        if isinstance(envelope.data, ParsedQuestion):
            await self._answer(envelope, envelope.data, started=self._clock())
        elif envelope.action in (Action.C_FOUND.value, Action.C_NOT_FOUND.value):
            # Already delivered through the C→B subscription
            return
        else:
            logger.warning(
                "Ignoring %s from %s", envelope.action, envelope.sender,
                extra={"context": {"trace_id": envelope.trace_id}},
            )

    async def resolve(self, envelope: Envelope, question: ParsedQuestion) -> Resolution:
        """Run the waterfall for one question."""
        query = question.refined_question or question.original_input
        merchant_id = envelope.merchant_id
        config = self._config_loader.get(merchant_id)

        # 1. Session cache
        try:
            cached = await self._context_store.find_similar_answer(
                merchant_id, envelope.user_id, envelope.session_id, query
            )
        except Exception:
            logger.exception("Session cache lookup failed for %s", envelope.trace_id)
            cached = None
        if cached:
            return Resolution(answer=cached, source=SOURCE_USER_CACHE)

        # 2. Merchant hot questions
        try:
            hot = await self._hot_questions.match(merchant_id, query)
        except Exception:
            logger.exception("Hot question lookup failed for %s", merchant_id)
            hot = None
        if hot is not None:
            return Resolution(
                answer=hot.answer, source=SOURCE_HOT_QUESTION, hot_question_id=hot.id
            )

        # 3. Scripted chit-chat
        if question.intent_category == IntentCategory.CHITCHAT.value:
            return Resolution(answer=config.prompts.chitchat, source=SOURCE_CHITCHAT)

        # 4. Knowledge base, bounded by the timeout
        found = await self._ask_knowledge(envelope, query, question.intent_category)
        if found is not None:
            return Resolution(
                answer=found.content, source=SOURCE_KNOWLEDGE_BASE, item_id=found.item_id
            )

        # 5. Generative fallback
        return Resolution(
            answer=await self._ask_llm(query, config), source=SOURCE_AI_FALLBACK
        )

    async def _answer(
        self, envelope: Envelope, question: ParsedQuestion, started: float
    ) -> None:
        logger.info(
            "Resolving %s: %s (%s)",
            envelope.trace_id,
            question.refined_question,
            question.intent_category,
        )
        resolution = await self.resolve(envelope, question)

        await self._context_store.add_turn(
            envelope.merchant_id,
            envelope.user_id,
            envelope.session_id,
            ConversationTurn(
                role="assistant",
                content=resolution.answer,
                source=resolution.source,
                found=resolution.source != SOURCE_AI_FALLBACK,
            ),
            ticket_id=envelope.trace_id,
        )
        cost_ms = int((self._clock() - started) * 1000)

        await self._bus.publish(
            envelope.follow_up(
                AgentName.DECISION,
                AgentName.USER,
                Reply(response=resolution.answer, source=resolution.source, cost_ms=cost_ms),
            )
        )
        await self._bus.publish(
            envelope.follow_up(
                AgentName.DECISION,
                AgentName.OBSERVER,
                ReplySummary(
                    source=resolution.source,
                    cost_ms=cost_ms,
                    input_type=question.input_type,
                ),
            )
        )

        if resolution.hot_question_id:
            self._detach(
                self._hot_questions.increment_hit(
                    envelope.merchant_id, resolution.hot_question_id
                ),
                "hot question hit count",
            )

        logger.info(
            "Replied %s via %s in %sms",
            envelope.trace_id,
            resolution.source,
            cost_ms,
        )

    async def _ask_knowledge(
        self, envelope: Envelope, query: str, intent_category: str
    ) -> KnowledgeFound | None:
        request = envelope.follow_up(
            AgentName.DECISION,
            AgentName.KNOWLEDGE,
            KnowledgeQuery(query=query, intent_category=intent_category),
        )
        reply = await self._pending.request(
            envelope.trace_id,
            lambda: self._bus.publish(request),
            self._knowledge_timeout,
        )
        if isinstance(reply, KnowledgeFound):
            return reply
        return None

    async def _ask_llm(self, query: str, config: MerchantConfig) -> str:
        fallback = config.prompts.fallback
        if self._llm is None:
            logger.warning("No LLM configured, replying with the offline prompt")
            return fallback.offline

        try:
            result = await asyncio.wait_for(
                self._llm.chat(
                    [{"role": "user", "content": query}],
                    system_prompt=config.prompts.system,
                ),
                self._generation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Generative fallback timed out after %ss", self._generation_timeout
            )
            return fallback.timeout
        except Exception:
            logger.exception("Generative fallback raised")
            return fallback.error
        if not result.success:
            logger.error("Generative fallback failed: %s", result.error)
            return fallback.error
        if not result.content.strip():
            return fallback.not_found
        return result.content.strip()

    async def _on_knowledge_reply(self, envelope: Envelope) -> None:
        if envelope.action not in (Action.C_FOUND.value, Action.C_NOT_FOUND.value):
            return
        if not self._pending.resolve(envelope.trace_id, envelope.data):
            logger.info(
                "Late or unknown knowledge reply for %s dropped", envelope.trace_id
            )
