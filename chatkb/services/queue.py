"""Cola de ingesta: el worker toma fuentes 'pending' y las procesa en orden FIFO."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatkb.core.errors import SourceNotFound
from chatkb.core.logging import get_logger
from chatkb.db.models.knowledge_source import KnowledgeSource, PROCESSING
from chatkb.services import sources as registry
from chatkb.services.ingest import IngestionPipeline

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueueStats:
    pending: int = 0
    processing: int = 0
    ready: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class JobScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pipeline: IngestionPipeline,
    ) -> None:
        self._session_factory = session_factory
        self._pipeline = pipeline

    async def process_pending_jobs(self, limit: int = 2) -> int:
        """
        Procesa hasta ``limit`` fuentes pendientes, la más vieja primero y de a
        una. Si una explota se loguea y se sigue con la próxima.
        Devuelve cuántas se intentaron.
        """
        async with self._session_factory() as session:
            batch = await registry.list_pending(session, limit=limit)
            ids = [s.id for s in batch]

        if not ids:
            logger.debug("queue_empty")
            return 0

        logger.info("queue_batch_started", count=len(ids))
        for source_id in ids:
            try:
                await self._pipeline.ingest(source_id)
            except Exception as e:
                logger.exception("queue_job_failed", source_id=source_id, error=str(e))
        logger.info("queue_batch_finished", count=len(ids))
        return len(ids)

    async def get_queue_stats(self) -> QueueStats:
        async with self._session_factory() as session:
            counts = await registry.count_by_status(session)
        return QueueStats(**counts)

    async def retry_source(self, chatbot_id: str, source_id: str) -> Optional[KnowledgeSource]:
        """Reintento manual: salta la cola y procesa en el momento."""
        async with self._session_factory() as session:
            source = await registry.get_source(session, source_id, chatbot_id)
        if source is None:
            raise SourceNotFound(source_id)
        logger.info("source_retry", source_id=source_id, chatbot_id=chatbot_id, status=source.status)
        if source.type == "url" and not (source.content or "").strip():
            if source.status == PROCESSING:
                return source
            # la descarga nunca llegó a guardar contenido
            return await self._pipeline.ingest_url(source_id)
        return await self._pipeline.ingest(source_id)
