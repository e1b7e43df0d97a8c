from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from chatkb.core.config import Settings
from chatkb.core.errors import ContentError, SourceNotFound, SSRFRejection
from chatkb.core.logging import get_logger
from chatkb.db.models.chatbot import Chatbot
from chatkb.db.models.knowledge_source import PENDING, PROCESSING
from chatkb.routers.deps import get_pipeline, get_scheduler, get_session, get_settings
from chatkb.schemas.source import DeleteOut, SourceOut, UploadOut, UrlSourceIn
from chatkb.services import sources as registry
from chatkb.services.extract import extract_file_text
from chatkb.services.ingest import IngestionPipeline
from chatkb.services.queue import JobScheduler
from chatkb.services.web import validate_public_url

logger = get_logger(__name__)

router = APIRouter(prefix="/chatbots", tags=["knowledge"])

async def _require_chatbot(session: AsyncSession, chatbot_id: str) -> Chatbot:
    bot = await session.get(Chatbot, chatbot_id)
    if bot is None:
        raise HTTPException(status_code=404, detail="chatbot not found")
    return bot

@router.get("/{chatbot_id}/sources", response_model=List[SourceOut])
async def list_sources(
    chatbot_id: str,
    session: AsyncSession = Depends(get_session),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    await _require_chatbot(session, chatbot_id)
    return await registry.list_sources(session, chatbot_id, stale_after=pipeline.stale_after)

@router.post("/{chatbot_id}/sources/upload", response_model=UploadOut, status_code=201)
async def upload_sources(
    chatbot_id: str,
    background: BackgroundTasks,
    files: List[UploadFile] = File(...),
    index_now: bool = Query(False, description="Indexar ya en lugar de esperar al worker"),
    session: AsyncSession = Depends(get_session),
    pipeline: IngestionPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Sube uno o más archivos. Por defecto quedan 'pending' y los toma el worker;
    con ``index_now`` se crean en 'processing' y se indexan en background.
    """
    await _require_chatbot(session, chatbot_id)

    created: List[SourceOut] = []
    skipped: List[str] = []
    for f in files:
        name = f.filename or "upload"
        data = await f.read()
        if len(data) > settings.max_upload_bytes:
            logger.warning("upload_too_large", chatbot_id=chatbot_id, filename=name, size=len(data))
            skipped.append(name)
            continue
        try:
            text = extract_file_text(name, data)
        except ContentError as e:
            logger.warning("upload_unreadable", chatbot_id=chatbot_id, filename=name, error=str(e))
            skipped.append(name)
            continue
        if not text.strip():
            skipped.append(name)
            continue

        source = await registry.create_file_source(
            session,
            chatbot_id=chatbot_id,
            name=name,
            content=text,
            status=PROCESSING if index_now else PENDING,
        )
        if index_now:
            background.add_task(pipeline.ingest_claimed, source.id)
        created.append(SourceOut.model_validate(source))
        logger.info("source_uploaded", chatbot_id=chatbot_id, source_id=source.id, chars=len(text), index_now=index_now)

    if not created and skipped:
        raise HTTPException(status_code=400, detail=f"No readable files: {', '.join(skipped)}")
    return UploadOut(sources=created, skipped=skipped)

@router.post("/{chatbot_id}/sources/url", response_model=SourceOut, status_code=201)
async def add_url_source(
    chatbot_id: str,
    body: UrlSourceIn,
    background: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    await _require_chatbot(session, chatbot_id)
    url = body.url.strip()
    try:
        validate_public_url(url)
    except SSRFRejection as e:
        raise HTTPException(status_code=400, detail=str(e))

    source = await registry.create_url_source(session, chatbot_id=chatbot_id, url=url)
    background.add_task(pipeline.ingest_url, source.id)
    logger.info("url_source_created", chatbot_id=chatbot_id, source_id=source.id, url=url)
    return source

@router.post("/{chatbot_id}/sources/{source_id}/retry", response_model=SourceOut)
async def retry_source(
    chatbot_id: str,
    source_id: str,
    scheduler: JobScheduler = Depends(get_scheduler),
):
    try:
        source = await scheduler.retry_source(chatbot_id, source_id)
    except SourceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if source is None:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return source

@router.delete("/{chatbot_id}/sources/{source_id}", response_model=DeleteOut)
async def delete_source(
    chatbot_id: str,
    source_id: str,
    session: AsyncSession = Depends(get_session),
):
    if not await registry.delete_source(session, source_id, chatbot_id=chatbot_id):
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return DeleteOut()
