"""Pytest configuration and fixtures."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


MERCHANT_ID = "demo"

HOT_QUESTIONS = [
    {
        "id": "hot_ticket",
        "question": "门票多少钱？",
        "keywords": ["门票"],
        "answer": "成人门票60元。",
        "hitCount": 0,
        "enabled": True,
    },
    {
        "id": "hot_disabled",
        "question": "索道开吗？",
        "keywords": ["索道"],
        "answer": "索道已停运。",
        "hitCount": 0,
        "enabled": False,
    },
]

KNOWLEDGE_ITEMS = [
    {
        "id": "k_location",
        "name": "东里村位置",
        "content": "东里村位于福建省莆田市。",
        "keywords": ["在哪", "位置"],
        "category": "route",
    },
    {
        "id": "k_adult",
        "name": "成人票价",
        "content": "成人票价60元。",
        "keywords": ["票价"],
        "category": "price",
    },
    {
        "id": "k_student",
        "name": "学生票价",
        "content": "学生票价30元。",
        "keywords": ["票价"],
        "category": "student",
    },
    {
        "id": "k_toilet",
        "name": "卫生间",
        "content": "游客中心旁有卫生间。",
        "keywords": ["卫生间", "厕所"],
        "category": "facility",
        "weight": 1.5,
    },
    {
        "id": "k_disabled",
        "name": "旧索道",
        "content": "索道停运。",
        "keywords": ["索道"],
        "enabled": False,
    },
]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_merchant(
    root: Path,
    merchant_id: str = MERCHANT_ID,
    config: dict | None = None,
    hot_questions: list | None = None,
    knowledge: list | None = None,
) -> Path:
    """Create a merchant data directory under ``root``."""
    directory = root / merchant_id
    directory.mkdir(parents=True, exist_ok=True)
    if config is not None:
        (directory / "config.json").write_text(
            json.dumps(config, ensure_ascii=False), encoding="utf-8"
        )
    if hot_questions is not None:
        (directory / "hot-questions.json").write_text(
            json.dumps({"merchantId": merchant_id, "hotQuestions": hot_questions}, ensure_ascii=False),
            encoding="utf-8",
        )
    if knowledge is not None:
        (directory / "knowledge.json").write_text(
            json.dumps({"items": knowledge}, ensure_ascii=False), encoding="utf-8"
        )
    return directory


def read_hit_count(merchants_dir: Path, question_id: str, merchant_id: str = MERCHANT_ID) -> int:
    document = json.loads(
        (merchants_dir / merchant_id / "hot-questions.json").read_text(encoding="utf-8")
    )
    for entry in document["hotQuestions"]:
        if entry["id"] == question_id:
            return entry["hitCount"]
    raise KeyError(question_id)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from concierge.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    """Create a TaskBus with default settings."""
    from concierge.bus import TaskBus

    return TaskBus()


@pytest.fixture
def context_store():
    """Session store over the in-memory backend."""
    from concierge.session import InMemorySessionBackend, SessionContextStore

    return SessionContextStore(InMemorySessionBackend())


@pytest.fixture
def merchants_dir(tmp_path):
    """Merchant data directory with one fully populated merchant."""
    root = tmp_path / "merchants"
    write_merchant(
        root,
        config={
            "name": "测试景区",
            "prompts": {"chitchat": "我是测试导游~", "welcome": "欢迎来到测试景区！"},
        },
        hot_questions=HOT_QUESTIONS,
        knowledge=KNOWLEDGE_ITEMS,
    )
    return root


@pytest.fixture
def config_loader(merchants_dir):
    from concierge.merchants import MerchantConfigLoader

    return MerchantConfigLoader(merchants_dir)


@pytest.fixture
def hot_questions(config_loader):
    from concierge.merchants import HotQuestionService

    return HotQuestionService(config_loader)


@pytest.fixture
def knowledge_service(config_loader):
    from concierge.merchants import KnowledgeService

    return KnowledgeService(config_loader)


@pytest.fixture
def mock_llm():
    """Create mock LLM provider."""
    from concierge.collaborators import ChatResult

    llm = Mock()
    llm.chat = AsyncMock(return_value=ChatResult(success=True, content="Test response"))
    llm.complete = AsyncMock(return_value="Test response")
    return llm


@pytest_asyncio.fixture
async def decision_agent(bus, context_store, hot_questions, config_loader, mock_llm):
    """DecisionAgent subscribed to the bus, driven manually via tick()."""
    from concierge.agents import DecisionAgent

    agent = DecisionAgent(
        bus,
        context_store,
        hot_questions,
        config_loader,
        llm=mock_llm,
        knowledge_timeout=0.5,
    )
    await agent.start(poll=False)
    yield agent
    await agent.stop()


@pytest_asyncio.fixture
async def knowledge_agent(bus, knowledge_service, context_store):
    """KnowledgeAgent without an LLM, driven manually via tick()."""
    from concierge.agents import KnowledgeAgent

    agent = KnowledgeAgent(bus, knowledge_service, context_store)
    await agent.start(poll=False)
    yield agent
    await agent.stop()


@pytest_asyncio.fixture
async def observer(bus, clock):
    """ObservabilityAgent on the wildcard channel."""
    from concierge.agents import ObservabilityAgent

    agent = ObservabilityAgent(bus, clock=clock)
    await agent.start(poll=False)
    yield agent
    await agent.stop()


@pytest.fixture
def make_envelope():
    """Factory for envelopes on the demo merchant."""
    from concierge.models import Envelope

    def factory(sender, recipient, data, trace_id="ticket-1", user_id="u1", session_id="s1"):
        return Envelope.create(
            sender,
            recipient,
            data,
            trace_id=trace_id,
            merchant_id=MERCHANT_ID,
            user_id=user_id,
            session_id=session_id,
        )

    return factory
