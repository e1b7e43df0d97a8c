"""Almacenamiento de chunks + embeddings por tenant y fuente.

En Postgres el ranking lo hace pgvector (``embedding <=> :q``). En motores sin
operador de distancia vectorial (SQLite en dev/tests) se hace un scan exacto
de coseno en proceso sobre los chunks del tenant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatkb.core.errors import StorageError
from chatkb.core.logging import get_logger
from chatkb.db.models.knowledge_chunk import KnowledgeChunk, chunk_id
from chatkb.db.models.knowledge_source import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkRecord:
    text: str
    embedding: Sequence[float]
    ordinal: int


@dataclass(frozen=True)
class ScoredChunk:
    source_id: str
    chunk_index: int
    content: str
    distance: float


def cosine_distances(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """1 - similitud coseno de ``query`` contra cada fila de ``matrix``.

    Vectores de norma cero quedan a distancia 1 (similitud 0).
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(m, axis=1)
    denom = row_norms * q_norm
    dots = m @ q
    sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return 1.0 - sims


class VectorStore:
    def __init__(self, dimensions: int | None = None) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def _check_vector(self, vec: Sequence[float]) -> None:
        if self._dimensions and len(vec) != self._dimensions:
            raise ValueError(f"embedding has {len(vec)} dimensions, expected {self._dimensions}")

    async def upsert_source_chunks(
        self,
        session: AsyncSession,
        chatbot_id: str,
        source_id: str,
        chunks: Sequence[ChunkRecord],
    ) -> int:
        """Reemplaza todos los chunks de ``source_id`` (delete + insert).

        Corre dentro de la transacción del caller; el commit lo hace quien llama,
        junto con el cambio de status de la fuente.
        """
        ordinals = sorted(c.ordinal for c in chunks)
        if ordinals != list(range(len(chunks))):
            raise ValueError("chunk ordinals must be contiguous starting at 0")
        for c in chunks:
            self._check_vector(c.embedding)

        now = utcnow()
        rows = [
            {
                "id": chunk_id(source_id, c.ordinal),
                "chatbot_id": chatbot_id,
                "source_id": source_id,
                "content": c.text,
                "embedding": list(c.embedding),
                "chunk_index": c.ordinal,
                "created_at": now,
            }
            for c in chunks
        ]
        try:
            await session.execute(
                delete(KnowledgeChunk).where(
                    KnowledgeChunk.source_id == source_id,
                    KnowledgeChunk.chatbot_id == chatbot_id,
                )
            )
            if rows:
                await session.execute(insert(KnowledgeChunk), rows)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to store chunks: {exc}", source_id) from exc

        logger.debug("chunks_replaced", source_id=source_id, chatbot_id=chatbot_id, count=len(rows))
        return len(rows)

    async def delete_source_chunks(
        self,
        session: AsyncSession,
        source_id: str,
        chatbot_id: str | None = None,
    ) -> int:
        stmt = delete(KnowledgeChunk).where(KnowledgeChunk.source_id == source_id)
        if chatbot_id is not None:
            stmt = stmt.where(KnowledgeChunk.chatbot_id == chatbot_id)
        try:
            res = await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to delete chunks: {exc}", source_id) from exc
        return res.rowcount or 0

    async def count_source_chunks(self, session: AsyncSession, source_id: str) -> int:
        res = await session.execute(
            select(func.count()).select_from(KnowledgeChunk).where(KnowledgeChunk.source_id == source_id)
        )
        return int(res.scalar_one())

    async def query_top_k(
        self,
        session: AsyncSession,
        chatbot_id: str,
        query_embedding: Sequence[float],
        k: int,
    ) -> list[str]:
        return [c.content for c in await self.scored_top_k(session, chatbot_id, query_embedding, k)]

    async def scored_top_k(
        self,
        session: AsyncSession,
        chatbot_id: str,
        query_embedding: Sequence[float],
        k: int,
    ) -> list[ScoredChunk]:
        if k <= 0:
            return []
        self._check_vector(query_embedding)

        try:
            if session.get_bind().dialect.name == "postgresql":
                return await self._pg_top_k(session, chatbot_id, query_embedding, k)
            return await self._scan_top_k(session, chatbot_id, query_embedding, k)
        except SQLAlchemyError as exc:
            raise StorageError(f"Similarity query failed: {exc}") from exc

    async def _pg_top_k(
        self, session: AsyncSession, chatbot_id: str, query_embedding: Sequence[float], k: int
    ) -> list[ScoredChunk]:
        distance = KnowledgeChunk.embedding.cosine_distance(list(query_embedding))
        rows = (
            await session.execute(
                select(
                    KnowledgeChunk.source_id,
                    KnowledgeChunk.chunk_index,
                    KnowledgeChunk.content,
                    distance.label("distance"),
                )
                .where(
                    KnowledgeChunk.chatbot_id == chatbot_id,
                    KnowledgeChunk.embedding.is_not(None),
                )
                .order_by(distance)
                .limit(k)
            )
        ).all()
        return [
            ScoredChunk(r.source_id, r.chunk_index, r.content, float(r.distance)) for r in rows
        ]

    async def _scan_top_k(
        self, session: AsyncSession, chatbot_id: str, query_embedding: Sequence[float], k: int
    ) -> list[ScoredChunk]:
        rows = (
            await session.execute(
                select(
                    KnowledgeChunk.source_id,
                    KnowledgeChunk.chunk_index,
                    KnowledgeChunk.content,
                    KnowledgeChunk.embedding,
                )
                .where(
                    KnowledgeChunk.chatbot_id == chatbot_id,
                    KnowledgeChunk.embedding.is_not(None),
                )
                .order_by(KnowledgeChunk.created_at, KnowledgeChunk.source_id, KnowledgeChunk.chunk_index)
            )
        ).all()
        if not rows:
            return []

        distances = cosine_distances(query_embedding, np.array([r.embedding for r in rows]))
        # stable: a igual distancia manda el orden de almacenamiento
        order = np.argsort(distances, kind="stable")[:k]
        return [
            ScoredChunk(rows[i].source_id, rows[i].chunk_index, rows[i].content, float(distances[i]))
            for i in order
        ]
