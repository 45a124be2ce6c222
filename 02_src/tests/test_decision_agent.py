"""Tests for DecisionAgent."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from concierge.agents import DecisionAgent
from concierge.bus import TaskBus, TaskStatus
from concierge.collaborators import ChatResult
from concierge.models import (
    AgentName,
    ConversationTurn,
    KnowledgeFound,
    KnowledgeNotFound,
    ParsedQuestion,
    Reply,
    ReplySummary,
)

from conftest import MERCHANT_ID, read_hit_count, write_merchant


@pytest.fixture
def outbox(bus):
    """Envelopes published by B, keyed by recipient."""
    sent = {"USER": [], "C": [], "D": []}

    async def record(envelope):
        if envelope.sender == AgentName.DECISION:
            sent[envelope.recipient].append(envelope)

    bus.subscribe("*", record)
    return sent


async def ask(bus, agent, make_envelope, question, intent="OTHER_QUERY", trace_id="ticket-1"):
    """Publish a parsed question to B and run it to completion."""
    await bus.publish(
        make_envelope(
            AgentName.INTAKE,
            AgentName.DECISION,
            ParsedQuestion(
                input_type="text",
                intent_category=intent,
                refined_question=question,
                original_input=question,
                ticket_id=trace_id,
            ),
            trace_id=trace_id,
        )
    )
    await agent.tick()
    await agent.drain()


def stub_knowledge(bus, reply):
    """Answer every B→C query immediately with ``reply``."""

    async def handler(envelope):
        await bus.publish(envelope.follow_up(AgentName.KNOWLEDGE, AgentName.DECISION, reply))

    bus.subscribe("B→C", handler)


class TestWaterfallTiers:
    """Tests for each tier of the waterfall."""

    @pytest.mark.asyncio
    async def test_hot_question(self, bus, decision_agent, make_envelope, outbox, merchants_dir):
        """Test that a hot question answers and its hit count goes up by one."""
        await ask(bus, decision_agent, make_envelope, "门票多少钱", intent="PRICE_QUERY")

        reply = outbox["USER"][0]
        assert reply.data.response == "成人门票60元。"
        assert reply.data.source == "hot_question"
        assert outbox["C"] == []
        assert read_hit_count(merchants_dir, "hot_ticket") == 1

    @pytest.mark.asyncio
    async def test_user_cache_preempts_hot_question(
        self, bus, decision_agent, context_store, make_envelope, outbox, merchants_dir
    ):
        """Test that an earlier answer in the session wins over everything else."""
        await context_store.add_turn(
            MERCHANT_ID, "u1", "s1", ConversationTurn(role="user", content="门票多少钱")
        )
        await context_store.add_turn(
            MERCHANT_ID, "u1", "s1", ConversationTurn(role="assistant", content="之前的答案")
        )

        await ask(bus, decision_agent, make_envelope, "门票多少钱", intent="PRICE_QUERY")

        assert outbox["USER"][0].data.response == "之前的答案"
        assert outbox["USER"][0].data.source == "user_cache"
        assert read_hit_count(merchants_dir, "hot_ticket") == 0

    @pytest.mark.asyncio
    async def test_chitchat(self, bus, decision_agent, make_envelope, outbox):
        await ask(bus, decision_agent, make_envelope, "你好", intent="CHITCHAT")

        reply = outbox["USER"][0]
        assert reply.data.response == "我是测试导游~"
        assert reply.data.source == "chitchat"
        assert outbox["C"] == []

    @pytest.mark.asyncio
    async def test_knowledge_base(self, bus, decision_agent, make_envelope, outbox, mock_llm):
        stub_knowledge(
            bus, KnowledgeFound(content="游客中心旁有卫生间。", item_id="k_toilet", score=15.0)
        )

        await ask(bus, decision_agent, make_envelope, "厕所在哪", intent="FACILITY_QUERY")

        query = outbox["C"][0]
        assert query.data.query == "厕所在哪"
        assert query.data.intent_category == "FACILITY_QUERY"
        assert outbox["USER"][0].data.response == "游客中心旁有卫生间。"
        assert outbox["USER"][0].data.source == "knowledge_base"
        mock_llm.chat.assert_not_called()
        assert len(decision_agent.pending) == 0

    @pytest.mark.asyncio
    async def test_knowledge_not_found_goes_to_llm(
        self, bus, decision_agent, make_envelope, outbox, mock_llm
    ):
        """Test that a negative knowledge reply falls through without waiting for the timeout."""
        stub_knowledge(bus, KnowledgeNotFound(query="有温泉吗"))
        loop = asyncio.get_running_loop()
        started = loop.time()

        await ask(bus, decision_agent, make_envelope, "有温泉吗")

        assert loop.time() - started < 0.4
        assert outbox["USER"][0].data.response == "Test response"
        assert outbox["USER"][0].data.source == "ai_fallback"
        messages = mock_llm.chat.call_args.args[0]
        assert messages == [{"role": "user", "content": "有温泉吗"}]

    @pytest.mark.asyncio
    async def test_knowledge_timeout_goes_to_llm(
        self, bus, decision_agent, make_envelope, outbox
    ):
        """Test that a silent knowledge agent leads to the generative fallback."""
        await ask(bus, decision_agent, make_envelope, "讲个故事")

        assert len(outbox["C"]) == 1
        assert outbox["USER"][0].data.source == "ai_fallback"
        assert len(decision_agent.pending) == 0

    @pytest.mark.asyncio
    async def test_late_knowledge_reply_dropped(self, bus, decision_agent, make_envelope, outbox):
        """Test that a reply after the timeout does not produce a second answer."""
        await ask(bus, decision_agent, make_envelope, "讲个故事")

        await bus.publish(
            make_envelope(
                AgentName.KNOWLEDGE,
                AgentName.DECISION,
                KnowledgeFound(content="迟到的答案", item_id="k"),
            )
        )
        await decision_agent.tick()
        await decision_agent.drain()

        assert len(outbox["USER"]) == 1
        assert outbox["USER"][0].data.response != "迟到的答案"


class TestGenerativeFallback:
    """Tests for the last tier."""

    @pytest.mark.asyncio
    async def test_llm_failure_uses_error_prompt(
        self, bus, decision_agent, make_envelope, outbox, mock_llm
    ):
        mock_llm.chat = AsyncMock(return_value=ChatResult(success=False, error="overloaded"))
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, decision_agent, make_envelope, "讲个故事")

        assert outbox["USER"][0].data.response.startswith("系统有点小状况")
        assert outbox["USER"][0].data.source == "ai_fallback"

    @pytest.mark.asyncio
    async def test_empty_llm_answer_uses_not_found_prompt(
        self, bus, decision_agent, make_envelope, outbox, mock_llm
    ):
        mock_llm.chat = AsyncMock(return_value=ChatResult(success=True, content="  "))
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, decision_agent, make_envelope, "讲个故事")

        assert outbox["USER"][0].data.response.startswith("这个问题有点超出")

    @pytest.mark.asyncio
    async def test_no_llm_configured(
        self, bus, context_store, hot_questions, config_loader, make_envelope, outbox
    ):
        agent = DecisionAgent(bus, context_store, hot_questions, config_loader, llm=None)
        await agent.start(poll=False)
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, agent, make_envelope, "讲个故事")
        await agent.stop()

        assert outbox["USER"][0].data.response.startswith("我有点不舒服")

    @pytest.mark.asyncio
    async def test_raising_llm_still_replies_once(
        self, bus, decision_agent, make_envelope, outbox, mock_llm
    ):
        """Test that a collaborator exception becomes the error prompt, not a task retry."""
        mock_llm.chat = AsyncMock(side_effect=ConnectionError("connection reset"))
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, decision_agent, make_envelope, "讲个故事")
        for _ in range(3):
            await decision_agent.tick()
            await decision_agent.drain()

        assert len(outbox["USER"]) == 1
        assert outbox["USER"][0].data.response.startswith("系统有点小状况")
        assert mock_llm.chat.await_count == 1
        assert bus.stats()["failed"] == 0

    @pytest.mark.asyncio
    async def test_slow_llm_uses_timeout_prompt(
        self, bus, context_store, hot_questions, config_loader, make_envelope, outbox
    ):
        async def slow_chat(messages, system_prompt=None):
            await asyncio.sleep(1.0)
            return ChatResult(success=True, content="太迟了")

        llm = Mock()
        llm.chat = slow_chat
        agent = DecisionAgent(
            bus, context_store, hot_questions, config_loader,
            llm=llm, knowledge_timeout=0.5, generation_timeout=0.05,
        )
        await agent.start(poll=False)
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, agent, make_envelope, "讲个故事")
        await agent.stop()

        assert outbox["USER"][0].data.response.startswith("抱歉让您久等了")


class TestClaimLease:
    """Tests for tasks that outlive the bus claim lease."""

    @pytest.mark.asyncio
    async def test_slow_task_replies_once(
        self, context_store, hot_questions, config_loader, make_envelope
    ):
        """Test that a handler running past the lease keeps its claim."""
        bus = TaskBus(claim_lease=0.05)
        replies = []

        async def record(envelope):
            replies.append(envelope)

        bus.subscribe(f"{AgentName.DECISION}→{AgentName.USER}", record)
        stub_knowledge(bus, KnowledgeNotFound())

        async def slow_chat(messages, system_prompt=None):
            await asyncio.sleep(0.2)
            return ChatResult(success=True, content="慢速答案")

        llm = Mock()
        llm.chat = slow_chat
        agent = DecisionAgent(
            bus, context_store, hot_questions, config_loader, llm=llm, knowledge_timeout=0.5
        )
        await agent.start(poll=False)

        task_id = await bus.publish(
            make_envelope(
                AgentName.INTAKE,
                AgentName.DECISION,
                ParsedQuestion(refined_question="讲个故事", original_input="讲个故事"),
            )
        )
        await agent.tick()
        await asyncio.sleep(0.1)
        await agent.tick()
        await agent.drain()
        await agent.stop()

        history = await context_store.get_full_history(MERCHANT_ID, "u1", "s1")
        assert len(replies) == 1
        assert replies[0].data.response == "慢速答案"
        assert [turn.role for turn in history] == ["assistant"]
        assert bus.get(task_id).status == TaskStatus.COMPLETED
        assert bus.get(task_id).retries == 0


class TestSideEffects:
    """Tests for what B records after answering."""

    @pytest.mark.asyncio
    async def test_assistant_turn_and_summary(
        self, bus, decision_agent, context_store, make_envelope, outbox
    ):
        await ask(bus, decision_agent, make_envelope, "门票多少钱", intent="PRICE_QUERY")

        history = await context_store.get_full_history(MERCHANT_ID, "u1", "s1")
        assert history[-1].role == "assistant"
        assert history[-1].source == "hot_question"
        assert history[-1].found is True
        assert history[-1].ticket_id == "ticket-1"

        summary = outbox["D"][0]
        assert isinstance(summary.data, ReplySummary)
        assert summary.data.source == "hot_question"
        assert summary.data.input_type == "text"
        assert summary.data.cost_ms == outbox["USER"][0].data.cost_ms

    @pytest.mark.asyncio
    async def test_ai_answer_marked_not_found(
        self, bus, decision_agent, context_store, make_envelope
    ):
        stub_knowledge(bus, KnowledgeNotFound())

        await ask(bus, decision_agent, make_envelope, "讲个故事")

        history = await context_store.get_full_history(MERCHANT_ID, "u1", "s1")
        assert history[-1].found is False

    @pytest.mark.asyncio
    async def test_repeated_question_served_from_session(
        self, bus, decision_agent, context_store, make_envelope, outbox
    ):
        """Test that asking the same thing twice hits the session cache the second time."""
        stub_knowledge(bus, KnowledgeFound(content="位于莆田。", item_id="k_location"))

        for trace_id in ("t1", "t2"):
            await context_store.add_turn(
                MERCHANT_ID, "u1", "s1", ConversationTurn(role="user", content="东里村在哪")
            )
            await ask(
                bus, decision_agent, make_envelope, "东里村在哪",
                intent="LOCATION_QUERY", trace_id=trace_id,
            )

        assert [e.data.source for e in outbox["USER"]] == ["knowledge_base", "user_cache"]
        assert outbox["USER"][1].data.response == "位于莆田。"

    @pytest.mark.asyncio
    async def test_cache_failure_degrades_to_next_tier(
        self, bus, decision_agent, context_store, make_envelope, outbox, monkeypatch
    ):
        monkeypatch.setattr(
            context_store,
            "find_similar_answer",
            AsyncMock(side_effect=ConnectionError("redis down")),
        )

        await ask(bus, decision_agent, make_envelope, "门票多少钱", intent="PRICE_QUERY")

        assert outbox["USER"][0].data.source == "hot_question"

    @pytest.mark.asyncio
    async def test_task_completed_on_bus(self, bus, decision_agent, make_envelope):
        await ask(bus, decision_agent, make_envelope, "你好", intent="CHITCHAT")

        stats = bus.stats()
        assert stats["pending"] == stats["queue_sizes"].get("D", 0)
        assert bus.peek(AgentName.DECISION) == []

    @pytest.mark.asyncio
    async def test_refresh_hot_questions(
        self, bus, decision_agent, make_envelope, outbox, merchants_dir
    ):
        await ask(bus, decision_agent, make_envelope, "门票多少钱", intent="PRICE_QUERY", trace_id="t1")
        write_merchant(
            merchants_dir,
            hot_questions=[{"id": "hot_new", "question": "Q", "keywords": ["门票"], "answer": "新价格"}],
        )
        decision_agent.refresh_hot_questions(MERCHANT_ID)

        await ask(bus, decision_agent, make_envelope, "门票贵吗", intent="PRICE_QUERY", trace_id="t2")

        assert outbox["USER"][1].data.response == "新价格"

    @pytest.mark.asyncio
    async def test_replies_carry_reply_payload(self, bus, decision_agent, make_envelope, outbox):
        await ask(bus, decision_agent, make_envelope, "你好", intent="CHITCHAT")

        reply = outbox["USER"][0]
        assert isinstance(reply.data, Reply)
        assert reply.trace_id == "ticket-1"
        assert reply.topic == "B→USER"
