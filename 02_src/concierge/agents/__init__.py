"""Pipeline agents."""

from .base import IAgent, PollingAgent
from .decision import DecisionAgent, Resolution
from .intake import IntakeAgent, IntakeResult
from .intent import DEFAULT_RULES, IntentCategory, IntentClassifier, IntentRule
from .knowledge import KnowledgeAgent, ScoredItem, ScoringWeights, rank
from .observability import ObservabilityAgent

__all__ = [
    "IAgent",
    "PollingAgent",
    "DecisionAgent",
    "Resolution",
    "IntakeAgent",
    "IntakeResult",
    "DEFAULT_RULES",
    "IntentCategory",
    "IntentClassifier",
    "IntentRule",
    "KnowledgeAgent",
    "ScoredItem",
    "ScoringWeights",
    "rank",
    "ObservabilityAgent",
]
