"""Application bootstrap and lifecycle management."""

from pathlib import Path
from typing import Protocol

from .agents import DecisionAgent, IntakeAgent, IntakeResult, KnowledgeAgent, ObservabilityAgent
from .bus import TaskBus
from .collaborators import (
    ASRChain,
    DashScopeASR,
    IASRProvider,
    ILLMProvider,
    LLMProvider,
    OpenAICompatibleChatProvider,
    ZhipuASR,
)
from .config import Settings
from .logging_config import get_logger
from .merchants import HotQuestionService, KnowledgeService, MerchantConfigLoader
from .models import AgentName, Envelope, UserEnter
from .output_router import DeliveredReply, IReplyRouter, ReplyRouter
from .session import (
    ISessionBackend,
    InMemorySessionBackend,
    RedisSessionBackend,
    SessionContextStore,
)
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap.

    Collaborators passed in explicitly take precedence over the ones built
    from settings; the application only closes what it built itself.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_path: str | Path | None = None,
        llm: ILLMProvider | None = None,
        asr: IASRProvider | None = None,
        session_backend: ISessionBackend | None = None,
        poll: bool = True,
    ):
        self._settings = settings or Settings.from_env()
        self._db_path = db_path if db_path is not None else self._settings.db_path
        self._injected_llm = llm
        self._injected_asr = asr
        self._injected_backend = session_backend
        self._poll = poll

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._bus: TaskBus | None = None
        self._session_backend: ISessionBackend | None = None
        self._context_store: SessionContextStore | None = None
        self._config_loader: MerchantConfigLoader | None = None
        self._hot_questions: HotQuestionService | None = None
        self._llm: ILLMProvider | None = None
        self._asr: IASRProvider | None = None
        self._reply_router: IReplyRouter | None = None
        self._observer: ObservabilityAgent | None = None
        self._knowledge_agent: KnowledgeAgent | None = None
        self._decision_agent: DecisionAgent | None = None
        self._intake_agent: IntakeAgent | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Task bus
        self._bus = TaskBus()

        # 3. Session context store
        self._session_backend = self._injected_backend or self._build_session_backend()
        self._context_store = SessionContextStore(
            self._session_backend, ttl_seconds=settings.session_ttl_seconds
        )
        logger.info("Session store initialized (%s)", type(self._session_backend).__name__)

        # 4. Merchant data
        self._config_loader = MerchantConfigLoader(settings.merchants_dir)
        self._hot_questions = HotQuestionService(self._config_loader, self._storage)
        knowledge_service = KnowledgeService(self._config_loader, self._storage)

        # 5. External collaborators
        self._llm = self._injected_llm or self._build_llm()
        self._asr = self._injected_asr or self._build_asr()

        # 6. Agents; the observer subscribes first so it sees every envelope
        self._observer = ObservabilityAgent(
            self._bus, storage=self._storage, poll_interval=settings.poll_interval
        )
        self._knowledge_agent = KnowledgeAgent(
            self._bus,
            knowledge_service,
            self._context_store,
            llm=self._llm,
            preload=settings.preload_merchants,
            poll_interval=settings.poll_interval,
        )
        self._decision_agent = DecisionAgent(
            self._bus,
            self._context_store,
            self._hot_questions,
            self._config_loader,
            llm=self._llm,
            knowledge_timeout=settings.knowledge_timeout,
            generation_timeout=settings.generation_timeout,
            poll_interval=settings.poll_interval,
        )
        self._intake_agent = IntakeAgent(self._bus, self._context_store, asr=self._asr)

        for agent in (self._observer, self._knowledge_agent, self._decision_agent):
            await agent.start(poll=self._poll)

        # 7. Reply channel
        self._reply_router = ReplyRouter(self._bus)
        await self._reply_router.start()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for agent in (self._decision_agent, self._knowledge_agent, self._observer):
            if agent:
                await agent.stop()
        if self._reply_router:
            await self._reply_router.stop()
        if self._bus:
            self._bus.close()
        if self._llm is not None and self._llm is not self._injected_llm:
            await self._llm.close()
        if self._asr is not None and self._asr is not self._injected_asr:
            await self._asr.close()
        if self._session_backend is not None and self._injected_backend is None:
            await self._session_backend.close()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        if self._hot_questions:
            self._hot_questions.invalidate()
            logger.info("Reset complete")

    async def ask(
        self,
        merchant_id: str,
        user_id: str,
        session_id: str,
        raw_input: str | bytes,
        input_type: str = "text",
        timeout: float = 10.0,
    ) -> tuple[IntakeResult, DeliveredReply | None]:
        """Submit one user turn and wait for its reply."""
        result = await self.intake_agent.handle(
            user_id, session_id, raw_input, input_type, merchant_id
        )
        reply = await self.reply_router.wait(result.trace_id, timeout)
        return result, reply

    async def user_enter(
        self, merchant_id: str, user_id: str, session_id: str, mode: str = "text"
    ) -> str:
        """Announce a new conversation to the observer and return the merchant greeting."""
        await self.bus.publish(
            Envelope.create(
                AgentName.SYSTEM,
                AgentName.OBSERVER,
                UserEnter(mode=mode),
                trace_id=IntakeAgent.new_trace_id(merchant_id, user_id),
                merchant_id=merchant_id,
                user_id=user_id,
                session_id=session_id,
            )
        )
        return self._require(self._config_loader).get(merchant_id).prompts.welcome

    def _build_session_backend(self) -> ISessionBackend:
        if self._settings.redis_url:
            return RedisSessionBackend(self._settings.redis_url)
        logger.warning("REDIS_URL not set, session history is kept in memory")
        return InMemorySessionBackend()

    def _build_llm(self) -> ILLMProvider | None:
        settings = self._settings
        try:
            if settings.llm_provider == "openai_compatible":
                kwargs = {"model": settings.llm_model} if settings.llm_model else {}
                return OpenAICompatibleChatProvider(
                    settings.llm_api_key or "", base_url=settings.llm_base_url, **kwargs
                )
            kwargs = {"model": settings.llm_model} if settings.llm_model else {}
            return LLMProvider(api_key=settings.llm_api_key, **kwargs)
        except ValueError as e:
            logger.warning("LLM disabled: %s", e)
            return None

    def _build_asr(self) -> IASRProvider | None:
        providers: list[IASRProvider] = []
        if self._settings.dashscope_api_key:
            providers.append(DashScopeASR(self._settings.dashscope_api_key))
        if self._settings.zhipu_api_key:
            providers.append(ZhipuASR(self._settings.zhipu_api_key))
        if not providers:
            logger.warning("No ASR provider configured, voice input is disabled")
            return None
        return ASRChain(providers)

    def _require(self, component):
        if component is None:
            raise RuntimeError("Application not started")
        return component

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        return self._require(self._storage)

    @property
    def bus(self) -> TaskBus:
        return self._require(self._bus)

    @property
    def context_store(self) -> SessionContextStore:
        return self._require(self._context_store)

    @property
    def hot_questions(self) -> HotQuestionService:
        return self._require(self._hot_questions)

    @property
    def reply_router(self) -> IReplyRouter:
        return self._require(self._reply_router)

    @property
    def intake_agent(self) -> IntakeAgent:
        return self._require(self._intake_agent)

    @property
    def decision_agent(self) -> DecisionAgent:
        return self._require(self._decision_agent)

    @property
    def knowledge_agent(self) -> KnowledgeAgent:
        return self._require(self._knowledge_agent)

    @property
    def observer(self) -> ObservabilityAgent:
        return self._require(self._observer)
