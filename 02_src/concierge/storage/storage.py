"""SQLite storage implementation."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import StorageNotInitializedError
from ..models import HotQuestion, KnowledgeItem, TraceEvent


class IStorage(Protocol):
    """Persistent storage for merchant data and trace events (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Hot questions
    async def save_hot_questions(
        self, merchant_id: str, questions: list[HotQuestion]
    ) -> None:
        """Insert or replace a merchant's hot questions."""
        ...

    async def get_hot_questions(self, merchant_id: str) -> list[HotQuestion]:
        """Get a merchant's hot questions in list order."""
        ...

    async def increment_hot_question_hit(self, merchant_id: str, question_id: str) -> bool:
        """Atomically add one to a hot question's hit count."""
        ...

    # Knowledge
    async def save_knowledge_items(
        self, merchant_id: str, items: list[KnowledgeItem]
    ) -> None:
        """Insert or replace a merchant's knowledge items."""
        ...

    async def get_knowledge_items(
        self, merchant_id: str, enabled_only: bool = True
    ) -> list[KnowledgeItem]:
        """Get a merchant's knowledge items in list order."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        trace_id: str | None = None,
        merchant_id: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        # Read and execute schema
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise StorageNotInitializedError()
        return self._conn

    # Hot questions
    async def save_hot_questions(
        self, merchant_id: str, questions: list[HotQuestion]
    ) -> None:
        """Insert or replace a merchant's hot questions."""
        conn = self._require_conn()

        for position, question in enumerate(questions):
            await conn.execute(
                """
                INSERT OR REPLACE INTO hot_questions
                (merchant_id, id, question, answer, keywords, hit_count, enabled, position)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    merchant_id,
                    question.id,
                    question.question,
                    question.answer,
                    json.dumps(list(question.keywords), ensure_ascii=False),
                    question.hit_count,
                    int(question.enabled),
                    position,
                ),
            )
        await conn.commit()

    async def get_hot_questions(self, merchant_id: str) -> list[HotQuestion]:
        """Get a merchant's hot questions in list order."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            SELECT id, question, answer, keywords, hit_count, enabled
            FROM hot_questions
            WHERE merchant_id = ?
            ORDER BY position ASC, id ASC
            """,
            (merchant_id,),
        )
        rows = await cursor.fetchall()

        return [
            HotQuestion(
                id=row[0],
                question=row[1],
                answer=row[2],
                keywords=json.loads(row[3]),
                hit_count=row[4],
                enabled=bool(row[5]),
            )
            for row in rows
        ]

    async def increment_hot_question_hit(self, merchant_id: str, question_id: str) -> bool:
        """Atomically add one to a hot question's hit count."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            UPDATE hot_questions
            SET hit_count = hit_count + 1
            WHERE merchant_id = ? AND id = ?
            """,
            (merchant_id, question_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    # Knowledge
    async def save_knowledge_items(
        self, merchant_id: str, items: list[KnowledgeItem]
    ) -> None:
        """Insert or replace a merchant's knowledge items."""
        conn = self._require_conn()

        for position, item in enumerate(items):
            await conn.execute(
                """
                INSERT OR REPLACE INTO knowledge_items
                (merchant_id, id, name, content, keywords, category, enabled, weight, position)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    merchant_id,
                    item.id,
                    item.name,
                    item.content,
                    json.dumps(list(item.keywords), ensure_ascii=False),
                    item.category,
                    int(item.enabled),
                    item.weight,
                    position,
                ),
            )
        await conn.commit()

    async def get_knowledge_items(
        self, merchant_id: str, enabled_only: bool = True
    ) -> list[KnowledgeItem]:
        """Get a merchant's knowledge items in list order."""
        conn = self._require_conn()

        query = """
            SELECT id, name, content, keywords, category, enabled, weight
            FROM knowledge_items
            WHERE merchant_id = ?
        """
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY position ASC, id ASC"

        cursor = await conn.execute(query, (merchant_id,))
        rows = await cursor.fetchall()

        return [
            KnowledgeItem(
                id=row[0],
                name=row[1],
                content=row[2],
                keywords=tuple(json.loads(row[3])),
                category=row[4],
                enabled=bool(row[5]),
                weight=row[6],
            )
            for row in rows
        ]

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT INTO trace_events
            (id, trace_id, action, sender, recipient, merchant_id, data, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id or str(uuid.uuid4()),
                event.trace_id,
                event.action,
                event.sender,
                event.recipient,
                event.merchant_id,
                json.dumps(event.data, ensure_ascii=False),
                event.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def get_trace_events(
        self,
        trace_id: str | None = None,
        merchant_id: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters (oldest first)."""
        conn = self._require_conn()

        # Build query dynamically
        conditions = []
        params: list = []

        if trace_id:
            conditions.append("trace_id = ?")
            params.append(trace_id)
        if merchant_id:
            conditions.append("merchant_id = ?")
            params.append(merchant_id)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, trace_id, action, sender, recipient, merchant_id, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp ASC, rowid ASC
            LIMIT ?
        """
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            TraceEvent(
                id=row[0],
                trace_id=row[1],
                action=row[2],
                sender=row[3],
                recipient=row[4],
                merchant_id=row[5],
                data=json.loads(row[6]),
                timestamp=_parse_timestamp(row[7]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        tables = ["hot_questions", "knowledge_items", "trace_events"]

        for table in tables:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()


def _parse_timestamp(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
