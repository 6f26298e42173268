"""
Durable agent memory using SQLAlchemy on a SQLite file.

One store per installation; Subjects are isolated by ``resource_id`` keys.
Provides three channels to the agent on every generation:

- working memory: one free-text profile per Subject, seeded from a template
- semantic recall: similar past messages of the Subject across all threads
- recency window: the latest messages of the current thread
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Union
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .instructions import WORKING_MEMORY_TEMPLATE

logger = logging.getLogger("teachassist.memory")

Embedder = Callable[[str], Awaitable[list[float]]]

Base = declarative_base()


class WorkingMemoryModel(Base):
    __tablename__ = "working_memory"

    resource_id = Column(String(255), primary_key=True)
    content = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MemoryMessageModel(Base):
    __tablename__ = "memory_messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, default=lambda: str(uuid4()))
    resource_id = Column(String(255), nullable=False)
    thread_id = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    embedding = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_memory_messages_resource", "resource_id"),
        Index("idx_memory_messages_thread", "thread_id", "seq"),
    )


@dataclass
class MemoryOptions:
    """Tuning for the three memory channels."""

    last_messages: int = 15
    top_k: int = 5
    message_range: int = 3
    working_memory_enabled: bool = True
    template: str = WORKING_MEMORY_TEMPLATE


@dataclass(frozen=True)
class MemoryRecord:
    """A stored conversation message."""

    id: str
    resource_id: str
    thread_id: str
    role: str
    content: str
    seq: int = 0

    @classmethod
    def from_model(cls, model: MemoryMessageModel) -> "MemoryRecord":
        return cls(
            id=model.id,
            resource_id=model.resource_id,
            thread_id=model.thread_id,
            role=model.role,
            content=model.content,
            seq=model.seq,
        )


@dataclass
class MemoryContext:
    """Everything the memory store contributes to one generation."""

    working_memory: Optional[str] = None
    recalled: list[MemoryRecord] = field(default_factory=list)
    recent: list[MemoryRecord] = field(default_factory=list)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class MemoryStore:
    """File-backed memory shared by every Subject of an installation."""

    def __init__(
        self,
        path: Union[str, Path],
        embedder: Embedder,
        options: Optional[MemoryOptions] = None,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.options = options or MemoryOptions()
        self._embedder = embedder

        self.engine = create_engine(
            f"sqlite:///{self.path}",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info("Using memory database at: %s", self.path)

    def set_embedder(self, embedder: Embedder) -> None:
        """Rebind the embedding function, e.g. after an API key change."""
        self._embedder = embedder

    def get_session(self) -> Session:
        return self.SessionLocal()

    def close(self) -> None:
        self.engine.dispose()

    # ==================== Working memory ====================

    def _get_working_memory(self, resource_id: str) -> str:
        with self.get_session() as session:
            row = session.get(WorkingMemoryModel, resource_id)
            if row is None:
                row = WorkingMemoryModel(
                    resource_id=resource_id, content=self.options.template
                )
                session.add(row)
                session.commit()
            return row.content

    def _set_working_memory(self, resource_id: str, content: str) -> None:
        with self.get_session() as session:
            row = session.get(WorkingMemoryModel, resource_id)
            if row is None:
                session.add(WorkingMemoryModel(resource_id=resource_id, content=content))
            else:
                row.content = content
            session.commit()

    async def get_working_memory(self, resource_id: str) -> str:
        """Return the Subject's profile, seeding it from the template on first use."""
        return await asyncio.to_thread(self._get_working_memory, resource_id)

    async def update_working_memory(self, resource_id: str, content: str) -> None:
        await asyncio.to_thread(self._set_working_memory, resource_id, content)
        logger.debug("Working memory updated for resource %s", resource_id)

    # ==================== Messages ====================

    def _insert_messages(
        self,
        resource_id: str,
        thread_id: str,
        rows: list[tuple[str, str, Optional[list[float]]]],
    ) -> list[MemoryRecord]:
        with self.get_session() as session:
            models = [
                MemoryMessageModel(
                    resource_id=resource_id,
                    thread_id=thread_id,
                    role=role,
                    content=content,
                    embedding=embedding,
                )
                for role, content, embedding in rows
            ]
            session.add_all(models)
            session.commit()
            return [MemoryRecord.from_model(m) for m in models]

    async def save_messages(
        self,
        resource_id: str,
        thread_id: str,
        messages: Iterable[tuple[str, str]],
    ) -> list[MemoryRecord]:
        """Persist ``(role, content)`` turns with their embeddings."""
        rows = []
        for role, content in messages:
            embedding = None
            if content.strip():
                try:
                    embedding = await self._embedder(content)
                except Exception as e:
                    logger.warning("Embedding failed, storing message without vector: %s", e)
            rows.append((role, content, embedding))
        return await asyncio.to_thread(self._insert_messages, resource_id, thread_id, rows)

    def _recent_messages(
        self, resource_id: str, thread_id: str, limit: int
    ) -> list[MemoryRecord]:
        with self.get_session() as session:
            rows = (
                session.query(MemoryMessageModel)
                .filter(MemoryMessageModel.resource_id == resource_id)
                .filter(MemoryMessageModel.thread_id == thread_id)
                .order_by(MemoryMessageModel.seq.desc())
                .limit(limit)
                .all()
            )
            return [MemoryRecord.from_model(r) for r in reversed(rows)]

    async def recent_messages(
        self, resource_id: str, thread_id: str, limit: Optional[int] = None
    ) -> list[MemoryRecord]:
        """Return the Subject's last messages in a thread, oldest first."""
        if limit is None:
            limit = self.options.last_messages
        if limit <= 0:
            return []
        return await asyncio.to_thread(
            self._recent_messages, resource_id, thread_id, limit
        )

    def _rank_and_expand(
        self,
        resource_id: str,
        query_embedding: list[float],
        exclude_ids: set[str],
    ) -> list[MemoryRecord]:
        with self.get_session() as session:
            candidates = (
                session.query(MemoryMessageModel)
                .filter(MemoryMessageModel.resource_id == resource_id)
                .filter(MemoryMessageModel.embedding.isnot(None))
                .all()
            )
            scored = [
                (cosine_similarity(query_embedding, c.embedding), c)
                for c in candidates
                if c.id not in exclude_ids
            ]
            scored.sort(key=lambda pair: (-pair[0], pair[1].seq))
            hits = [c for _score, c in scored[: self.options.top_k]]

            selected: dict[int, MemoryMessageModel] = {}
            span = self.options.message_range
            for hit in hits:
                thread = (
                    session.query(MemoryMessageModel)
                    .filter(MemoryMessageModel.thread_id == hit.thread_id)
                    .filter(MemoryMessageModel.resource_id == resource_id)
                    .order_by(MemoryMessageModel.seq)
                    .all()
                )
                position = next(i for i, m in enumerate(thread) if m.seq == hit.seq)
                for neighbour in thread[max(0, position - span) : position + span + 1]:
                    if neighbour.id not in exclude_ids:
                        selected[neighbour.seq] = neighbour

            return [MemoryRecord.from_model(selected[s]) for s in sorted(selected)]

    async def semantic_recall(
        self,
        resource_id: str,
        query: str,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> list[MemoryRecord]:
        """Return up to ``top_k`` similar past messages with surrounding context."""
        if not query.strip() or self.options.top_k <= 0:
            return []
        try:
            query_embedding = await self._embedder(query)
        except Exception as e:
            logger.warning("Embedding failed, skipping semantic recall: %s", e)
            return []
        return await asyncio.to_thread(
            self._rank_and_expand, resource_id, query_embedding, set(exclude_ids or ())
        )

    async def build_context(
        self, resource_id: str, thread_id: str, query: str = ""
    ) -> MemoryContext:
        """Gather working memory, semantic recall and the recency window."""
        context = MemoryContext()
        if self.options.working_memory_enabled:
            context.working_memory = await self.get_working_memory(resource_id)
        context.recent = await self.recent_messages(resource_id, thread_id)
        context.recalled = await self.semantic_recall(
            resource_id, query, exclude_ids={r.id for r in context.recent}
        )
        return context
