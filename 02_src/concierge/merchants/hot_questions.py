"""Merchant hot questions: TTL-cached lookup and hit counting."""

import asyncio
import json
import time
from typing import Any, Callable

from ..logging_config import get_logger
from ..models import HotQuestion, now_ms
from ..storage import IStorage
from .config import DATABASE_SOURCE, MerchantConfigLoader

logger = get_logger(__name__)


HOT_QUESTIONS_FILE = "hot-questions.json"


class HotQuestionService:
    """Hot-question lists per merchant.

    The cache holds one list per merchant and is replaced wholesale when its
    TTL runs out, so readers never see a partially updated list.
    """

    def __init__(
        self,
        config_loader: MerchantConfigLoader,
        storage: IStorage | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config_loader = config_loader
        self._storage = storage
        self._clock = clock
        self._cache: dict[str, tuple[float, list[HotQuestion]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get(self, merchant_id: str) -> list[HotQuestion]:
        """Cached hot questions of a merchant."""
        cache_settings = self._config_loader.get(merchant_id).cache
        cached = self._cache.get(merchant_id)
        if cache_settings.enabled and cached is not None:
            loaded_at, questions = cached
            if self._clock() - loaded_at < cache_settings.ttl:
                return questions

        questions = await self.load(merchant_id)
        self._cache[merchant_id] = (self._clock(), questions)
        return questions

    async def load(self, merchant_id: str) -> list[HotQuestion]:
        """Read from the configured source, bypassing the cache."""
        source = self._config_loader.get(merchant_id).data_sources.hot_questions
        if source == DATABASE_SOURCE and self._storage is not None:
            try:
                questions = await self._storage.get_hot_questions(merchant_id)
            except Exception:
                logger.exception(
                    "Database hot questions unavailable for %s, using local file",
                    merchant_id,
                )
            else:
                if questions:
                    return questions
                logger.warning(
                    "No hot questions in database for %s, using local file", merchant_id
                )

        document = self._read_local(merchant_id)
        return [HotQuestion.from_dict(entry) for entry in document["hotQuestions"]]

    async def match(self, merchant_id: str, query: str) -> HotQuestion | None:
        """First enabled entry with a keyword contained in the lower-cased query."""
        normalized = query.lower()
        for question in await self.get(merchant_id):
            if not question.enabled:
                continue
            if any(keyword and keyword.lower() in normalized for keyword in question.keywords):
                logger.info("Hot question hit: %s -> %s", query, question.id)
                return question
        return None

    async def increment_hit(self, merchant_id: str, question_id: str) -> bool:
        """Add one to the hit count. Serialized per merchant."""
        lock = self._locks.setdefault(merchant_id, asyncio.Lock())
        async with lock:
            source = self._config_loader.get(merchant_id).data_sources.hot_questions
            if source == DATABASE_SOURCE and self._storage is not None:
                if await self._storage.increment_hot_question_hit(merchant_id, question_id):
                    return True

            document = self._read_local(merchant_id)
            for entry in document["hotQuestions"]:
                if entry.get("id") == question_id:
                    entry["hitCount"] = int(entry.get("hitCount") or 0) + 1
                    document["updatedAt"] = now_ms()
                    self._write_local(merchant_id, document)
                    return True

        logger.warning("Hot question %s not found for %s", question_id, merchant_id)
        return False

    def invalidate(self, merchant_id: str | None = None) -> None:
        """Drop cached lists (one merchant, or all)."""
        if merchant_id is None:
            self._cache.clear()
        else:
            self._cache.pop(merchant_id, None)

    def _read_local(self, merchant_id: str) -> dict[str, Any]:
        path = self._config_loader.merchant_dir(merchant_id) / HOT_QUESTIONS_FILE
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError:
            document = {}

        if isinstance(document, list):
            document = {"hotQuestions": document}
        document.setdefault("merchantId", merchant_id)
        document.setdefault("hotQuestions", [])
        return document

    def _write_local(self, merchant_id: str, document: dict[str, Any]) -> None:
        directory = self._config_loader.merchant_dir(merchant_id)
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / HOT_QUESTIONS_FILE, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
