"""Merchant knowledge-base loading."""

import json

from ..logging_config import get_logger
from ..models import KnowledgeItem
from ..storage import IStorage
from .config import DATABASE_SOURCE, MerchantConfigLoader

logger = get_logger(__name__)


KNOWLEDGE_FILE = "knowledge.json"


class KnowledgeService:
    """Loads enabled knowledge items from the merchant's configured source."""

    def __init__(self, config_loader: MerchantConfigLoader, storage: IStorage | None = None):
        self._config_loader = config_loader
        self._storage = storage

    async def load(self, merchant_id: str) -> list[KnowledgeItem]:
        source = self._config_loader.get(merchant_id).data_sources.knowledge
        if source == DATABASE_SOURCE and self._storage is not None:
            try:
                items = await self._storage.get_knowledge_items(merchant_id)
            except Exception:
                logger.exception(
                    "Database knowledge unavailable for %s, using local file", merchant_id
                )
            else:
                if items:
                    return items
                logger.warning("No knowledge in database for %s, using local file", merchant_id)

        return self._load_local(merchant_id)

    def _load_local(self, merchant_id: str) -> list[KnowledgeItem]:
        path = self._config_loader.merchant_dir(merchant_id) / KNOWLEDGE_FILE
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError:
            logger.warning("No knowledge file for merchant %s", merchant_id)
            return []

        # Either {"items": [...]} or a bare list
        raw_items = document.get("items", []) if isinstance(document, dict) else document
        items = [KnowledgeItem.from_dict(raw) for raw in raw_items if isinstance(raw, dict)]
        return [item for item in items if item.enabled]
