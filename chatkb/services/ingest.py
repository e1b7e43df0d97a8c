"""Pipeline de ingesta: contenido -> chunks -> embeddings -> vector store.

Máquina de estados por fuente: pending -> processing -> ready | failed
('failed' y 'pending' se pueden reintentar). ``ingest`` nunca propaga errores
del pipeline: todo fallo termina en status 'failed' con el mensaje en
``error``. Solo se propagan errores de argumentos (id vacío o inexistente),
antes de tocar cualquier estado.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatkb.core.errors import ContentError, SourceNotFound
from chatkb.core.logging import get_logger
from chatkb.db.models.knowledge_source import KnowledgeSource, PROCESSING
from chatkb.services import sources as registry
from chatkb.services.chunking import chunk_text
from chatkb.services.embeddings import Embedder
from chatkb.services.vectors import ChunkRecord, VectorStore
from chatkb.services.web import PageFetcher

logger = get_logger(__name__)

DEFAULT_MAX_CONTENT_CHARS = 100_000


class IngestionPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        store: VectorStore,
        fetcher: PageFetcher | None = None,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
        stale_after: timedelta = registry.DEFAULT_STALE_AFTER,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self._session_factory = session_factory
        self._embedder = embedder
        self._store = store
        self._fetcher = fetcher
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._max_content_chars = max_content_chars
        self._stale_after = stale_after

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def ingest(self, source_id: str) -> Optional[KnowledgeSource]:
        """(Re)indexa una fuente desde cero. Devuelve el registro final."""
        async with self._session_factory() as session:
            source = await self._load(session, source_id)

            # el claim va primero: una URL en pleno fetch todavía no tiene contenido
            if not await registry.claim_source(session, source.id, stale_after=self._stale_after):
                # otra corrida la tiene en 'processing'
                logger.info("ingest_skipped_in_flight", source_id=source.id)
                return await self._reload(session, source.id)

            if not (source.content or "").strip():
                await registry.mark_failed(session, source.id, error="No content to process")
                logger.warning("ingest_no_content", source_id=source.id)
                return await self._reload(session, source.id)

            await self._index(session, source.id, source.chatbot_id, source.content)
            return await self._reload(session, source.id)

    async def ingest_claimed(self, source_id: str) -> Optional[KnowledgeSource]:
        """Para fuentes que el caller creó directamente en 'processing'."""
        async with self._session_factory() as session:
            source = await self._load(session, source_id)
            if source.status != PROCESSING:
                logger.info("ingest_claimed_not_processing", source_id=source.id, status=source.status)
                return source
            if not (source.content or "").strip():
                await registry.mark_failed(session, source.id, error="No content to process")
                return await self._reload(session, source.id)
            await self._index(session, source.id, source.chatbot_id, source.content)
            return await self._reload(session, source.id)

    async def ingest_url(self, source_id: str) -> Optional[KnowledgeSource]:
        """Fuente URL: descarga + extracción y luego el indexado normal."""
        if self._fetcher is None:
            raise RuntimeError("IngestionPipeline has no PageFetcher configured")

        async with self._session_factory() as session:
            source = await self._load(session, source_id)
            if source.type != "url" or not source.url:
                raise ValueError(f"source {source_id} is not a URL source")
            if source.status != PROCESSING and not await registry.claim_source(
                session, source.id, stale_after=self._stale_after
            ):
                return await self._reload(session, source.id)

            try:
                page = await self._fetcher.fetch(source.url)
            except Exception as e:
                logger.warning("url_fetch_failed", source_id=source.id, url=source.url, error=str(e))
                await registry.mark_failed(session, source.id, error=str(e) or "Failed to fetch URL")
                return await self._reload(session, source.id)

            await registry.set_content(session, source.id, content=page.text, name=page.title)
            await self._index(session, source.id, source.chatbot_id, page.text)
            return await self._reload(session, source.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, source_id: str) -> KnowledgeSource:
        if not source_id:
            raise ValueError("source_id is required")
        source = await registry.get_source(session, source_id)
        if source is None:
            raise SourceNotFound(source_id)
        return source

    async def _reload(self, session: AsyncSession, source_id: str) -> Optional[KnowledgeSource]:
        # None si la borraron mientras se procesaba
        return await registry.get_source(session, source_id)

    async def _index(self, session: AsyncSession, source_id: str, chatbot_id: str, content: str) -> None:
        """Pasos truncar -> chunk -> embed -> store -> ready. Cualquier error -> failed."""
        log = logger.bind(source_id=source_id, chatbot_id=chatbot_id)
        log.info("ingest_started", chars=len(content))
        try:
            text = content[: self._max_content_chars]
            pieces = chunk_text(text, self._chunk_size, self._chunk_overlap)
            if not pieces:
                raise ContentError("No chunks created", source_id)

            vectors = await self._embedder.embed_many(pieces)

            # si el usuario borró la fuente durante el embedding, se descarta el resultado
            if await registry.get_source(session, source_id) is None:
                log.info("ingest_discarded_source_deleted")
                return

            records = [ChunkRecord(text=p, embedding=v, ordinal=i) for i, (p, v) in enumerate(zip(pieces, vectors))]
            stored = await self._store.upsert_source_chunks(session, chatbot_id, source_id, records)
            await registry.mark_ready(session, source_id, chunk_count=stored, commit=False)
            await session.commit()
            log.info("ingest_ready", chunks=stored)
        except Exception as e:
            await session.rollback()
            log.warning("ingest_failed", error=str(e), error_type=type(e).__name__)
            await registry.mark_failed(session, source_id, error=str(e) or type(e).__name__)
