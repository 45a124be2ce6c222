"""Per-merchant configuration: prompts, data sources and cache settings."""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import MERCHANTS_DIR
from ..errors import InputError
from ..logging_config import get_logger

logger = get_logger(__name__)


MERCHANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

LOCAL_SOURCE = "local"
DATABASE_SOURCE = "database"


@dataclass
class FallbackPrompts:
    timeout: str = "抱歉让您久等了，我需要稍微整理一下思路。"
    error: str = "系统有点小状况，正在调整中。如需紧急帮助，请联系景区工作人员。"
    not_found: str = "这个问题有点超出我的知识范围了，建议您咨询景区工作人员。"
    offline: str = "我有点不舒服，正在休息调整。您的问题我已经记下来啦！"


@dataclass
class MerchantPrompts:
    system: str = "你是东里村的智能导游助手，请友好、专业地回答游客的问题。"
    welcome: str = "您好！欢迎来到东里村，我是智能导游小助手，有什么可以帮您的？"
    chitchat: str = "我是导游助手，专门回答景区相关问题哦~"
    fallback: FallbackPrompts = field(default_factory=FallbackPrompts)


@dataclass
class DataSources:
    knowledge: str = LOCAL_SOURCE
    hot_questions: str = LOCAL_SOURCE


@dataclass
class CacheSettings:
    enabled: bool = True
    ttl: float = 300.0  # seconds


@dataclass
class MerchantConfig:
    """Configuration for one merchant, merged over the defaults above."""

    merchant_id: str
    name: str = "东里村智能导游"
    prompts: MerchantPrompts = field(default_factory=MerchantPrompts)
    data_sources: DataSources = field(default_factory=DataSources)
    cache: CacheSettings = field(default_factory=CacheSettings)

    @classmethod
    def from_dict(cls, merchant_id: str, raw: dict[str, Any]) -> "MerchantConfig":
        """Build from a ``config.json`` document; absent or blank values keep defaults."""
        config = cls(merchant_id=merchant_id)
        if raw.get("name"):
            config.name = str(raw["name"])

        prompts = raw.get("prompts") or {}
        for key in ("system", "welcome", "chitchat"):
            if prompts.get(key):
                setattr(config.prompts, key, str(prompts[key]))

        fallback = prompts.get("fallback") or {}
        for wire_key, attr in (
            ("timeout", "timeout"),
            ("error", "error"),
            ("notFound", "not_found"),
            ("not_found", "not_found"),
            ("offline", "offline"),
        ):
            if fallback.get(wire_key):
                setattr(config.prompts.fallback, attr, str(fallback[wire_key]))

        sources = raw.get("dataSource") or raw.get("data_sources") or {}
        config.data_sources.knowledge = _normalize_source(sources.get("knowledge"))
        config.data_sources.hot_questions = _normalize_source(
            sources.get("hotQuestions", sources.get("hot_questions"))
        )

        cache = raw.get("cache") or {}
        if "enabled" in cache:
            config.cache.enabled = bool(cache["enabled"])
        if cache.get("ttl"):
            config.cache.ttl = float(cache["ttl"])

        return config


def _normalize_source(value: Any) -> str:
    # "mongodb" is accepted as an alias of the database source
    if value in (DATABASE_SOURCE, "mongodb", "db"):
        return DATABASE_SOURCE
    return LOCAL_SOURCE


class MerchantConfigLoader:
    """Reads ``{merchants_dir}/{merchant_id}/config.json`` and caches the result."""

    def __init__(self, merchants_dir: str | Path = MERCHANTS_DIR):
        self._merchants_dir = Path(merchants_dir)
        self._configs: dict[str, MerchantConfig] = {}

    @property
    def merchants_dir(self) -> Path:
        return self._merchants_dir

    def merchant_dir(self, merchant_id: str) -> Path:
        """Data directory of a merchant. Rejects ids that could escape it."""
        if not merchant_id or not MERCHANT_ID_PATTERN.match(merchant_id):
            raise InputError(f"Invalid merchant id: {merchant_id!r}")
        return self._merchants_dir / merchant_id

    def get(self, merchant_id: str) -> MerchantConfig:
        config = self._configs.get(merchant_id)
        if config is None:
            config = self._load(merchant_id)
            self._configs[merchant_id] = config
        return config

    def reload(self, merchant_id: str) -> MerchantConfig:
        self._configs.pop(merchant_id, None)
        return self.get(merchant_id)

    def _load(self, merchant_id: str) -> MerchantConfig:
        path = self.merchant_dir(merchant_id) / "config.json"
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.warning("No config for merchant %s, using defaults", merchant_id)
            return MerchantConfig(merchant_id=merchant_id)
        except json.JSONDecodeError as e:
            logger.error("Malformed config for merchant %s: %s", merchant_id, e)
            return MerchantConfig(merchant_id=merchant_id)

        config = MerchantConfig.from_dict(merchant_id, raw)
        logger.info("Loaded config for merchant %s (%s)", merchant_id, config.name)
        return config
