"""
Lưu trữ kho kiến thức + chunk và tìm kiếm lân cận theo cosine similarity.

Trên Postgres, việc tìm kiếm chạy trong DB qua pgvector (cosine_distance).
Các dialect khác (SQLite khi chạy test/local) tính điểm bằng numpy.
"""

import asyncio
import logging
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError

from knowledge_hub.core.exceptions import (
    EmbeddingDimensionMismatch,
    NotFound,
    StorageError,
    ValidationError,
)
from knowledge_hub.models.knowledge import DocumentChunk, KnowledgeBase

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class KnowledgeBaseInfo:
    id: uuid.UUID
    title: str
    description: str
    icon: str
    created_at: Optional[datetime]
    document_count: int = 0


@dataclass
class ChunkRecord:
    """Một chunk đã có embedding, sẵn sàng để ghi xuống store."""

    knowledge_base_id: uuid.UUID
    content: str
    source: str
    embedding: np.ndarray
    size: Optional[str] = None
    chunk_index: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ScoredChunk:
    id: uuid.UUID
    knowledge_base_id: uuid.UUID
    content: str
    source: str
    size: Optional[str]
    created_at: Optional[datetime]
    similarity: float

    @property
    def metadata(self) -> dict:
        return {"source": self.source, "size": self.size}


@dataclass
class DocumentGroup:
    """View 'tài liệu' = nhóm chunk theo tên file nguồn."""

    id: uuid.UUID  # chunk đại diện (mới nhất)
    source: str
    size: Optional[str]
    uploaded_at: Optional[datetime]
    chunk_count: int


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class VectorStore:
    def __init__(self, session_factory, dimension: int):
        self._session_factory = session_factory
        self.dimension = dimension
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, kb_id: uuid.UUID) -> asyncio.Lock:
        # Ghi vào cùng một kho được tuần tự hóa trong process
        return self._locks.setdefault(kb_id, asyncio.Lock())

    def _check_dimension(self, vector) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingDimensionMismatch(self.dimension, int(vector.shape[-1]) if vector.ndim else 0)
        return vector

    # ------------------------------------------------------------------
    # Knowledge bases
    # ------------------------------------------------------------------

    @staticmethod
    def _select_with_counts():
        doc_count = func.count(distinct(DocumentChunk.source)).label("document_count")
        return (
            select(KnowledgeBase, doc_count)
            .outerjoin(DocumentChunk, DocumentChunk.knowledge_base_id == KnowledgeBase.id)
            .group_by(KnowledgeBase.id)
        )

    @staticmethod
    def _to_info(kb: KnowledgeBase, document_count: int = 0) -> KnowledgeBaseInfo:
        return KnowledgeBaseInfo(
            id=kb.id,
            title=kb.title,
            description=kb.description or "",
            icon=kb.icon or "book",
            created_at=kb.created_at,
            document_count=int(document_count or 0),
        )

    async def create_knowledge_base(self, title: str, description: str = "", icon: str = "book") -> KnowledgeBaseInfo:
        if not title or not title.strip():
            raise ValidationError("Knowledge base title must not be empty")

        kb = KnowledgeBase(
            title=title.strip(),
            description=description or "",
            icon=icon or "book",
            created_at=utcnow(),
        )
        try:
            async with self._session_factory() as session:
                session.add(kb)
                await session.commit()
                await session.refresh(kb)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create knowledge base: {e}") from e

        logger.info("Created knowledge base %s (%s)", kb.id, kb.title)
        return self._to_info(kb)

    async def list_knowledge_bases(self) -> List[KnowledgeBaseInfo]:
        stmt = self._select_with_counts().order_by(KnowledgeBase.created_at.desc())
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list knowledge bases: {e}") from e
        return [self._to_info(kb, count) for kb, count in rows]

    async def get_knowledge_base(self, kb_id: uuid.UUID) -> KnowledgeBaseInfo:
        stmt = self._select_with_counts().where(KnowledgeBase.id == kb_id)
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load knowledge base: {e}") from e
        if row is None:
            raise NotFound(f"Knowledge base {kb_id} not found")
        kb, count = row
        return self._to_info(kb, count)

    async def find_knowledge_bases_by_title(self, fragment: str) -> List[KnowledgeBaseInfo]:
        """Tìm kho theo tên (không phân biệt hoa thường, khớp chuỗi con), mới nhất trước."""
        stmt = self._select_with_counts().order_by(KnowledgeBase.created_at.desc())
        try:
            async with self._session_factory() as session:
                if session.bind.dialect.name == "postgresql":
                    escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                    stmt = stmt.where(KnowledgeBase.title.ilike(f"%{escaped}%", escape="\\"))
                    rows = (await session.execute(stmt)).all()
                else:
                    # LIKE của SQLite chỉ bỏ qua hoa thường với ASCII ("TOÁN" != "toán") -> lọc bằng casefold
                    wanted = fragment.casefold()
                    rows = [row for row in (await session.execute(stmt)).all() if wanted in row[0].title.casefold()]
        except SQLAlchemyError as e:
            raise StorageError(f"Could not search knowledge bases: {e}") from e
        return [self._to_info(kb, count) for kb, count in rows]

    async def update_knowledge_base(
        self,
        kb_id: uuid.UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> KnowledgeBaseInfo:
        if title is not None and not title.strip():
            raise ValidationError("Knowledge base title must not be empty")

        try:
            async with self._session_factory() as session:
                kb = await session.get(KnowledgeBase, kb_id)
                if kb is None:
                    raise NotFound(f"Knowledge base {kb_id} not found")
                if title is not None:
                    kb.title = title.strip()
                if description is not None:
                    kb.description = description
                if icon is not None:
                    kb.icon = icon
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not update knowledge base: {e}") from e

        return await self.get_knowledge_base(kb_id)

    async def delete_knowledge_base(self, kb_id: uuid.UUID) -> int:
        """Xóa kho và toàn bộ chunk của nó. Trả về số chunk đã xóa."""
        async with self._lock_for(kb_id):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        kb = await session.get(KnowledgeBase, kb_id)
                        if kb is None:
                            raise NotFound(f"Knowledge base {kb_id} not found")
                        result = await session.execute(
                            delete(DocumentChunk).where(DocumentChunk.knowledge_base_id == kb_id)
                        )
                        await session.delete(kb)
            except SQLAlchemyError as e:
                raise StorageError(f"Could not delete knowledge base: {e}") from e

        self._locks.pop(kb_id, None)
        logger.info("Deleted knowledge base %s with %d chunks", kb_id, result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(self, records: Sequence[ChunkRecord]) -> int:
        """
        Ghi một batch chunk trong một transaction. Lỗi -> StorageError và
        không chunk nào được ghi; caller tự quyết định có retry hay không.
        """
        if not records:
            return 0

        rows = []
        for record in records:
            vector = self._check_dimension(record.embedding)
            rows.append(
                DocumentChunk(
                    knowledge_base_id=record.knowledge_base_id,
                    content=record.content,
                    source=record.source,
                    size=record.size,
                    chunk_index=record.chunk_index,
                    embedding=vector.tolist(),
                    created_at=record.created_at,
                )
            )

        kb_ids = sorted({record.knowledge_base_id for record in records}, key=str)
        async with AsyncExitStack() as stack:
            for kb_id in kb_ids:
                await stack.enter_async_context(self._lock_for(kb_id))
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        found = await session.execute(
                            select(func.count()).select_from(KnowledgeBase).where(KnowledgeBase.id.in_(kb_ids))
                        )
                        if found.scalar_one() != len(kb_ids):
                            raise NotFound("Knowledge base not found for one or more chunks")
                        session.add_all(rows)
            except SQLAlchemyError as e:
                raise StorageError(f"Could not insert {len(rows)} chunks: {e}") from e

        return len(rows)

    async def list_documents(self, kb_id: uuid.UUID) -> List[DocumentGroup]:
        stmt = (
            select(DocumentChunk.id, DocumentChunk.source, DocumentChunk.size, DocumentChunk.created_at)
            .where(DocumentChunk.knowledge_base_id == kb_id)
            .order_by(DocumentChunk.created_at.desc())
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list documents: {e}") from e

        # Gom nhóm theo tên file, giữ metadata của chunk mới nhất
        groups: Dict[str, DocumentGroup] = {}
        for chunk_id, source, size, created_at in rows:
            name = source or "Untitled"
            group = groups.get(name)
            if group is None:
                groups[name] = DocumentGroup(id=chunk_id, source=name, size=size, uploaded_at=created_at, chunk_count=1)
            else:
                group.chunk_count += 1
        return list(groups.values())

    async def delete_chunks_by_source(self, kb_id: uuid.UUID, source: str) -> int:
        """Xóa mọi chunk của một file nguồn trong một kho. Không khớp chunk nào -> NotFound."""
        async with self._lock_for(kb_id):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            delete(DocumentChunk).where(
                                DocumentChunk.knowledge_base_id == kb_id,
                                DocumentChunk.source == source,
                            )
                        )
            except SQLAlchemyError as e:
                raise StorageError(f"Could not delete document '{source}': {e}") from e

        if result.rowcount == 0:
            raise NotFound(f"Document '{source}' not found in knowledge base {kb_id}")
        logger.info("Deleted %d chunks of '%s' from knowledge base %s", result.rowcount, source, kb_id)
        return result.rowcount

    async def delete_document(self, kb_id: uuid.UUID, chunk_id: uuid.UUID) -> int:
        """Xóa cả file nguồn chứa chunk_id."""
        stmt = select(DocumentChunk.source).where(
            DocumentChunk.id == chunk_id,
            DocumentChunk.knowledge_base_id == kb_id,
        )
        try:
            async with self._session_factory() as session:
                source = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load document: {e}") from e
        if source is None:
            raise NotFound(f"Document {chunk_id} not found in knowledge base {kb_id}")
        return await self.delete_chunks_by_source(kb_id, source)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def similarity_search(
        self,
        kb_id: uuid.UUID,
        query_vector,
        threshold: float,
        limit: int,
    ) -> List[ScoredChunk]:
        """
        Trả về tối đa `limit` chunk của kho `kb_id` có similarity >= threshold,
        sắp xếp giảm dần theo similarity (hòa thì chunk mới hơn trước).
        """
        query_vector = self._check_dimension(query_vector)
        if limit <= 0:
            return []

        try:
            async with self._session_factory() as session:
                if session.bind.dialect.name == "postgresql":
                    return await self._search_pgvector(session, kb_id, query_vector, threshold, limit)
                return await self._search_numpy(session, kb_id, query_vector, threshold, limit)
        except SQLAlchemyError as e:
            raise StorageError(f"Similarity search failed: {e}") from e

    async def _search_pgvector(self, session, kb_id, query_vector, threshold, limit) -> List[ScoredChunk]:
        similarity = (1 - DocumentChunk.embedding.cosine_distance(query_vector.tolist())).label("similarity")
        stmt = (
            select(DocumentChunk, similarity)
            .where(DocumentChunk.knowledge_base_id == kb_id, similarity >= threshold)
            .order_by(similarity.desc(), DocumentChunk.created_at.desc())
            .limit(limit)
        )
        rows = (await session.execute(stmt)).all()
        return [self._to_scored(chunk, score) for chunk, score in rows]

    async def _search_numpy(self, session, kb_id, query_vector, threshold, limit) -> List[ScoredChunk]:
        stmt = select(DocumentChunk).where(
            DocumentChunk.knowledge_base_id == kb_id,
            DocumentChunk.embedding.is_not(None),
        )
        chunks = (await session.execute(stmt)).scalars().all()

        scored = []
        for chunk in chunks:
            score = cosine_similarity(np.asarray(chunk.embedding, dtype=np.float32), query_vector)
            if score >= threshold:
                scored.append(self._to_scored(chunk, score))

        # sort ổn định: mới nhất trước, rồi similarity giảm dần
        scored.sort(key=lambda c: c.created_at or datetime.min, reverse=True)
        scored.sort(key=lambda c: c.similarity, reverse=True)
        return scored[:limit]

    @staticmethod
    def _to_scored(chunk: DocumentChunk, score) -> ScoredChunk:
        return ScoredChunk(
            id=chunk.id,
            knowledge_base_id=chunk.knowledge_base_id,
            content=chunk.content,
            source=chunk.source,
            size=chunk.size,
            created_at=chunk.created_at,
            similarity=float(score),
        )
