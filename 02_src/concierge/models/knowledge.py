"""Merchant knowledge and hot-question data models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class KnowledgeItem:
    """A knowledge-base entry, held read-only by the knowledge agent."""

    id: str
    name: str
    content: str
    keywords: tuple[str, ...] = ()
    category: str = "info"
    enabled: bool = True
    weight: float = 1.0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "KnowledgeItem":
        """Parse a loosely-typed record, applying the documented defaults."""
        keywords = raw.get("keywords")
        try:
            weight = float(raw.get("weight") or 1.0)
        except (TypeError, ValueError):
            weight = 1.0
        return cls(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            content=str(raw.get("content") or ""),
            keywords=tuple(str(k) for k in keywords) if isinstance(keywords, list) else (),
            category=str(raw.get("category") or "info"),
            enabled=raw.get("enabled") is not False,
            weight=weight or 1.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "keywords": list(self.keywords),
            "category": self.category,
            "enabled": self.enabled,
            "weight": self.weight,
        }


@dataclass
class HotQuestion:
    """A merchant-curated Q&A entry checked before knowledge retrieval."""

    id: str
    question: str
    answer: str
    keywords: list[str] = field(default_factory=list)
    hit_count: int = 0
    enabled: bool = True

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HotQuestion":
        keywords = raw.get("keywords")
        return cls(
            id=str(raw.get("id") or ""),
            question=str(raw.get("question") or ""),
            answer=str(raw.get("answer") or ""),
            keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            hit_count=int(raw.get("hitCount", raw.get("hit_count", 0)) or 0),
            enabled=raw.get("enabled") is not False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "keywords": list(self.keywords),
            "hitCount": self.hit_count,
            "enabled": self.enabled,
        }
