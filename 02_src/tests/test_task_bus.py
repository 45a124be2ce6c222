"""Tests for TaskBus."""

import pytest

from concierge.bus import TaskBus, TaskStatus, WILDCARD
from concierge.errors import BusClosedError
from concierge.models import AgentName, KnowledgeQuery, ParsedQuestion, Reply


def _parsed(make_envelope, trace_id="ticket-1"):
    return make_envelope(
        AgentName.INTAKE,
        AgentName.DECISION,
        ParsedQuestion(refined_question="门票多少钱", original_input="门票多少钱？"),
        trace_id=trace_id,
    )


class TestTaskBusSubscriptions:
    """Tests for broadcast delivery."""

    @pytest.mark.asyncio
    async def test_topic_subscriber_receives_envelope(self, bus, make_envelope):
        """Test that a handler on the envelope's topic is called."""
        received = []

        async def handler(envelope):
            received.append(envelope)

        bus.subscribe("A→B", handler)
        envelope = _parsed(make_envelope)
        await bus.publish(envelope)

        assert received == [envelope]

    @pytest.mark.asyncio
    async def test_other_topics_not_notified(self, bus, make_envelope):
        """Test that handlers on unrelated topics are not called."""
        received = []

        async def handler(envelope):
            received.append(envelope)

        bus.subscribe("B→C", handler)
        await bus.publish(_parsed(make_envelope))

        assert received == []

    @pytest.mark.asyncio
    async def test_wildcard_receives_everything(self, bus, make_envelope):
        """Test that the wildcard subscriber sees every topic."""
        received = []

        async def handler(envelope):
            received.append(envelope.topic)

        bus.subscribe(WILDCARD, handler)
        await bus.publish(_parsed(make_envelope))
        await bus.publish(
            make_envelope(AgentName.DECISION, AgentName.KNOWLEDGE, KnowledgeQuery(query="x"))
        )

        assert received == ["A→B", "B→C"]

    @pytest.mark.asyncio
    async def test_handlers_called_in_registration_order(self, bus, make_envelope):
        """Test that topic and wildcard handlers interleave by registration order."""
        calls = []

        async def first(envelope):
            calls.append("first")

        async def second(envelope):
            calls.append("second")

        async def third(envelope):
            calls.append("third")

        bus.subscribe("A→B", first)
        bus.subscribe(WILDCARD, second)
        bus.subscribe("A→B", third)
        await bus.publish(_parsed(make_envelope))

        assert calls == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, bus, make_envelope):
        """Test that one subscriber raising does not affect the rest or the publisher."""
        received = []

        async def broken(envelope):
            raise ValueError("boom")

        async def healthy(envelope):
            received.append(envelope)

        bus.subscribe("A→B", broken)
        bus.subscribe("A→B", healthy)

        task_id = await bus.publish(_parsed(make_envelope))

        assert len(received) == 1
        assert bus.get(task_id) is not None

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus, make_envelope):
        """Test that unsubscribed handlers are no longer called."""
        received = []

        async def handler(envelope):
            received.append(envelope)

        bus.subscribe("A→B", handler)
        bus.unsubscribe("A→B", handler)
        bus.unsubscribe("A→B", handler)
        await bus.publish(_parsed(make_envelope))

        assert received == []


class TestTaskPool:
    """Tests for the peek/claim/complete/fail protocol."""

    @pytest.mark.asyncio
    async def test_publish_creates_pending_task(self, bus, make_envelope):
        """Test that publishing pools a pending task for the recipient."""
        task_id = await bus.publish(_parsed(make_envelope))

        entry = bus.get(task_id)
        assert task_id.startswith("task_")
        assert entry.status == TaskStatus.PENDING
        assert entry.retries == 0
        assert [t.id for t in bus.peek(AgentName.DECISION)] == [task_id]
        assert bus.peek(AgentName.KNOWLEDGE) == []

    @pytest.mark.asyncio
    async def test_user_bound_envelopes_not_pooled(self, bus, make_envelope):
        """Test that replies to the user are broadcast but never pooled."""
        received = []

        async def handler(envelope):
            received.append(envelope)

        bus.subscribe("B→USER", handler)
        task_id = await bus.publish(
            make_envelope(AgentName.DECISION, AgentName.USER, Reply(response="hi"))
        )

        assert len(received) == 1
        assert bus.get(task_id) is None
        assert bus.stats()["total"] == 0

    @pytest.mark.asyncio
    async def test_peek_is_fifo_and_limited(self, bus, make_envelope):
        """Test that peek returns pending tasks in insertion order up to the limit."""
        ids = [await bus.publish(_parsed(make_envelope, f"t{i}")) for i in range(5)]

        assert [t.id for t in bus.peek(AgentName.DECISION, limit=3)] == ids[:3]

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, bus, make_envelope):
        """Test that only the first claim on a task succeeds."""
        task_id = await bus.publish(_parsed(make_envelope))

        first = bus.claim(task_id, "B")
        second = bus.claim(task_id, "B2")

        assert first is not None
        assert first.status == TaskStatus.PROCESSING
        assert first.assigned_to == "B"
        assert second is None
        assert bus.peek(AgentName.DECISION) == []

    def test_claim_unknown_task(self, bus):
        """Test that claiming a missing task returns None."""
        assert bus.claim("task_missing", "B") is None
        assert bus.complete("task_missing") is False
        assert bus.fail("task_missing") is False

    @pytest.mark.asyncio
    async def test_fail_returns_task_to_pool(self, bus, make_envelope):
        """Test that a failed task becomes pending again with retries incremented."""
        task_id = await bus.publish(_parsed(make_envelope))
        bus.claim(task_id, "B")

        assert bus.fail(task_id) is True

        entry = bus.get(task_id)
        assert entry.status == TaskStatus.PENDING
        assert entry.retries == 1
        assert entry.assigned_to is None
        assert bus.claim(task_id, "B") is not None

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, make_envelope):
        """Test that a task is parked as failed after max_retries."""
        bus = TaskBus(max_retries=2)
        task_id = await bus.publish(_parsed(make_envelope))

        for _ in range(3):
            assert bus.claim(task_id, "B") is not None
            bus.fail(task_id)

        entry = bus.get(task_id)
        assert entry.status == TaskStatus.FAILED
        assert entry.retries == 2
        assert bus.claim(task_id, "B") is None

    @pytest.mark.asyncio
    async def test_completed_tasks_collected_after_grace(self, clock, make_envelope):
        """Test that completed tasks disappear once the grace period elapses."""
        bus = TaskBus(completed_grace=5.0, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        bus.claim(task_id, "B")
        bus.complete(task_id)

        clock.advance(4.9)
        assert bus.get(task_id).status == TaskStatus.COMPLETED

        clock.advance(0.2)
        assert bus.stats()["total"] == 0
        assert bus.get(task_id) is None

    @pytest.mark.asyncio
    async def test_failed_tasks_collected_after_grace(self, clock, make_envelope):
        """Test that permanently failed tasks are also garbage collected."""
        bus = TaskBus(max_retries=0, completed_grace=1.0, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        bus.claim(task_id, "B")
        bus.fail(task_id)

        assert bus.get(task_id).status == TaskStatus.FAILED
        clock.advance(2.0)
        bus.peek(AgentName.DECISION)
        assert bus.get(task_id) is None

    @pytest.mark.asyncio
    async def test_expired_claim_lease_requeues_task(self, clock, make_envelope):
        """Test that a task held past its lease returns to pending."""
        bus = TaskBus(claim_lease=10.0, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        bus.claim(task_id, "B")

        clock.advance(11.0)
        pending = bus.peek(AgentName.DECISION)

        assert [t.id for t in pending] == [task_id]
        assert pending[0].retries == 1

    @pytest.mark.asyncio
    async def test_renew_keeps_claim(self, clock, make_envelope):
        """Test that a renewed claim survives past the original lease."""
        bus = TaskBus(claim_lease=10.0, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        entry = bus.claim(task_id, "B")

        clock.advance(8.0)
        assert bus.renew(task_id, entry.claim_token) is True
        clock.advance(8.0)

        assert bus.peek(AgentName.DECISION) == []
        assert bus.get(task_id).status == TaskStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stale_holder_cannot_finish_reclaimed_task(self, clock, make_envelope):
        """Test that only the current claim may complete, fail or renew a task."""
        bus = TaskBus(claim_lease=10.0, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        stale_token = bus.claim(task_id, "B").claim_token

        clock.advance(11.0)
        bus.peek(AgentName.DECISION)
        current = bus.claim(task_id, "B")

        assert current.claim_token != stale_token
        assert bus.renew(task_id, stale_token) is False
        assert bus.complete(task_id, stale_token) is False
        assert bus.fail(task_id, stale_token) is False
        assert bus.get(task_id).status == TaskStatus.PROCESSING

        assert bus.complete(task_id, current.claim_token) is True
        assert bus.get(task_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_requires_claim(self, bus, make_envelope):
        """Test that pending or finished tasks cannot be completed or failed."""
        task_id = await bus.publish(_parsed(make_envelope))

        assert bus.complete(task_id) is False
        assert bus.fail(task_id) is False

        bus.claim(task_id, "B")
        assert bus.complete(task_id) is True
        assert bus.complete(task_id) is False
        assert bus.fail(task_id) is False

    @pytest.mark.asyncio
    async def test_lease_disabled(self, clock, make_envelope):
        """Test that claims never expire without a lease."""
        bus = TaskBus(claim_lease=None, clock=clock)
        task_id = await bus.publish(_parsed(make_envelope))
        bus.claim(task_id, "B")

        clock.advance(10_000)

        assert bus.peek(AgentName.DECISION) == []
        assert bus.get(task_id).status == TaskStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stats(self, bus, make_envelope):
        """Test pool statistics by status and recipient."""
        first = await bus.publish(_parsed(make_envelope, "t1"))
        await bus.publish(_parsed(make_envelope, "t2"))
        await bus.publish(
            make_envelope(AgentName.DECISION, AgentName.KNOWLEDGE, KnowledgeQuery(query="q"))
        )
        bus.claim(first, "B")

        stats = bus.stats()

        assert stats["total"] == 3
        assert stats["pending"] == 2
        assert stats["processing"] == 1
        assert stats["queue_sizes"] == {"B": 1, "C": 1}

    @pytest.mark.asyncio
    async def test_publish_after_close_raises(self, bus, make_envelope):
        """Test that a closed bus refuses publishes."""
        bus.close()

        with pytest.raises(BusClosedError):
            await bus.publish(_parsed(make_envelope))
