from datetime import timedelta
from typing import Dict, List, Optional
from urllib.parse import urlparse
from sqlalchemy import delete, func, or_, and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from chatkb.core.errors import ProcessingTimeout
from chatkb.core.logging import get_logger
from chatkb.db.models.chatbot import Chatbot
from chatkb.db.models.knowledge_chunk import KnowledgeChunk
from chatkb.db.models.knowledge_source import (
    KnowledgeSource, PENDING, PROCESSING, READY, FAILED, STATUSES, utcnow,
)

logger = get_logger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=10)

async def ensure_chatbot(session: AsyncSession, chatbot_id: str, *, user_id: str = "", name: str = "Chatbot") -> Chatbot:
    bot = await session.get(Chatbot, chatbot_id)
    if bot is None:
        bot = Chatbot(id=chatbot_id, user_id=user_id or chatbot_id, name=name, system_prompt="")
        session.add(bot)
        await session.commit()
    return bot

async def create_file_source(session: AsyncSession, *, chatbot_id: str, name: str, content: str, status: str = PENDING) -> KnowledgeSource:
    # upload normal -> 'pending' (lo toma el worker); indexado directo -> 'processing'
    if status not in (PENDING, PROCESSING):
        raise ValueError(f"invalid initial status {status}")
    source = KnowledgeSource(chatbot_id=chatbot_id, type="file", name=name, content=content, status=status)
    session.add(source)
    await session.commit()
    await session.refresh(source)
    return source

async def create_url_source(session: AsyncSession, *, chatbot_id: str, url: str) -> KnowledgeSource:
    source = KnowledgeSource(
        chatbot_id=chatbot_id,
        type="url",
        name=urlparse(url).hostname or url,
        url=url,
        status=PROCESSING,
    )
    session.add(source)
    await session.commit()
    await session.refresh(source)
    return source

async def get_source(session: AsyncSession, source_id: str, chatbot_id: Optional[str] = None) -> Optional[KnowledgeSource]:
    stmt = select(KnowledgeSource).where(KnowledgeSource.id == source_id)
    if chatbot_id is not None:
        stmt = stmt.where(KnowledgeSource.chatbot_id == chatbot_id)
    # populate_existing: el status puede haber cambiado por un UPDATE masivo en esta sesión
    return (await session.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()

async def reclassify_stale(session: AsyncSession, *, stale_after: timedelta = DEFAULT_STALE_AFTER, chatbot_id: Optional[str] = None) -> int:
    """Pasa a 'failed' las fuentes en 'processing' sin actualizar hace más de ``stale_after``."""
    cutoff = utcnow() - stale_after
    stmt = (
        update(KnowledgeSource)
        .where(KnowledgeSource.status == PROCESSING, KnowledgeSource.updated_at < cutoff)
        .values(status=FAILED, error=str(ProcessingTimeout()), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if chatbot_id is not None:
        stmt = stmt.where(KnowledgeSource.chatbot_id == chatbot_id)
    res = await session.execute(stmt)
    await session.commit()
    if res.rowcount:
        logger.warning("stale_sources_failed", count=res.rowcount, chatbot_id=chatbot_id)
    return res.rowcount or 0

async def list_sources(session: AsyncSession, chatbot_id: str, *, stale_after: timedelta = DEFAULT_STALE_AFTER) -> List[KnowledgeSource]:
    await reclassify_stale(session, stale_after=stale_after, chatbot_id=chatbot_id)
    res = await session.execute(
        select(KnowledgeSource)
        .where(KnowledgeSource.chatbot_id == chatbot_id)
        .order_by(KnowledgeSource.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())

async def claim_source(session: AsyncSession, source_id: str, *, stale_after: timedelta = DEFAULT_STALE_AFTER) -> bool:
    """
    Compare-and-swap a 'processing'. Solo gana si la fuente no está siendo
    procesada por otro (o si ese proceso quedó colgado más de ``stale_after``).
    """
    cutoff = utcnow() - stale_after
    res = await session.execute(
        update(KnowledgeSource)
        .where(
            KnowledgeSource.id == source_id,
            or_(
                KnowledgeSource.status.in_((PENDING, FAILED, READY)),
                and_(KnowledgeSource.status == PROCESSING, KnowledgeSource.updated_at < cutoff),
            ),
        )
        .values(status=PROCESSING, error=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return res.rowcount == 1

async def set_content(session: AsyncSession, source_id: str, *, content: str, name: Optional[str] = None) -> None:
    values = {"content": content, "updated_at": utcnow()}
    if name:
        values["name"] = name
    await session.execute(
        update(KnowledgeSource).where(KnowledgeSource.id == source_id).values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

async def mark_ready(session: AsyncSession, source_id: str, *, chunk_count: int, commit: bool = True) -> None:
    await session.execute(
        update(KnowledgeSource)
        .where(KnowledgeSource.id == source_id)
        .values(status=READY, error=None, chunk_count=chunk_count, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if commit:
        await session.commit()

async def mark_failed(session: AsyncSession, source_id: str, *, error: str) -> None:
    await session.execute(
        update(KnowledgeSource)
        .where(KnowledgeSource.id == source_id)
        .values(status=FAILED, error=(error or "Processing failed")[:500], updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()

async def list_pending(session: AsyncSession, *, limit: int) -> List[KnowledgeSource]:
    if limit <= 0:
        return []
    res = await session.execute(
        select(KnowledgeSource)
        .where(KnowledgeSource.status == PENDING)
        .order_by(KnowledgeSource.created_at.asc())
        .limit(limit)
    )
    return list(res.scalars().all())

async def count_by_status(session: AsyncSession) -> Dict[str, int]:
    res = await session.execute(
        select(KnowledgeSource.status, func.count()).group_by(KnowledgeSource.status)
    )
    counts = {s: 0 for s in STATUSES}
    for status, n in res.all():
        if status in counts:
            counts[status] = int(n)
    return counts

async def delete_source(session: AsyncSession, source_id: str, *, chatbot_id: str) -> bool:
    source = await get_source(session, source_id, chatbot_id)
    if source is None:
        return False
    # chunks primero (no todos los motores aplican el cascade)
    await session.execute(
        delete(KnowledgeChunk).where(
            KnowledgeChunk.source_id == source_id, KnowledgeChunk.chatbot_id == chatbot_id
        )
    )
    await session.delete(source)
    await session.commit()
    logger.info("source_deleted", source_id=source_id, chatbot_id=chatbot_id)
    return True
