"""Merchant configuration and data services."""

from .config import (
    CacheSettings,
    DataSources,
    FallbackPrompts,
    MerchantConfig,
    MerchantConfigLoader,
    MerchantPrompts,
)
from .hot_questions import HotQuestionService
from .knowledge import KnowledgeService

__all__ = [
    "CacheSettings",
    "DataSources",
    "FallbackPrompts",
    "MerchantConfig",
    "MerchantConfigLoader",
    "MerchantPrompts",
    "HotQuestionService",
    "KnowledgeService",
]
