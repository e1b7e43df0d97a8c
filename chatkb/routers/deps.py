from typing import AsyncIterator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from chatkb.core.config import Settings
from chatkb.services.ingest import IngestionPipeline
from chatkb.services.queue import JobScheduler
from chatkb.services.rag import Retriever

# Los servicios se arman una sola vez en el lifespan (chatkb.main) y viven en app.state.

async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline

def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler

def get_retriever(request: Request) -> Retriever:
    return request.app.state.retriever
