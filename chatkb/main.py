import sys, asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatkb.core.config import Settings, settings as default_settings
from chatkb.core.logging import configure_logging, get_logger
from chatkb.db.session import init_db, make_engine, make_session_factory
from chatkb.routers import health
from chatkb.routers import knowledge as knowledge_router
from chatkb.routers import rag as rag_router
from chatkb.routers import worker as worker_router
from chatkb.services.embeddings import Embedder
from chatkb.services.ingest import IngestionPipeline
from chatkb.services.queue import JobScheduler
from chatkb.services.rag import Retriever
from chatkb.services.vectors import VectorStore
from chatkb.services.web import PageFetcher

if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

logger = get_logger(__name__)

def wire_services(
    app: FastAPI,
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    embedder: Embedder,
    fetcher: PageFetcher,
) -> None:
    """Arma el grafo de servicios y lo deja en app.state (lo leen los routers)."""
    store = VectorStore(settings.embed_dimensions)
    pipeline = IngestionPipeline(
        session_factory,
        embedder,
        store,
        fetcher,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        max_content_chars=settings.max_content_chars,
        stale_after=timedelta(minutes=settings.stale_processing_minutes),
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.scheduler = JobScheduler(session_factory, pipeline)
    app.state.retriever = Retriever(session_factory, embedder, store, timeout=settings.retrieval_timeout)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    configure_logging(settings.log_level, json_output=settings.log_json or settings.env == "prod")

    engine = make_engine(settings.database_url)
    # Crear tablas si no existen. En prod, usar migraciones.
    await init_db(engine)

    openai_client = AsyncOpenAI(
        api_key=settings.openai_api_key or None,
        base_url=settings.openai_base_url or None,
        timeout=settings.embed_timeout,
    )
    http_client = httpx.AsyncClient(timeout=settings.fetch_timeout)
    embedder = Embedder(
        openai_client,
        settings.embed_model,
        batch_size=settings.embed_batch_size,
        batch_delay=settings.embed_batch_delay,
        max_input_chars=settings.embed_max_input_chars,
        dimensions=settings.embed_dimensions,
    )
    fetcher = PageFetcher(http_client, max_bytes=settings.fetch_max_bytes)
    wire_services(app, settings=settings, session_factory=make_session_factory(engine), embedder=embedder, fetcher=fetcher)
    logger.info("app_started", env=settings.env, embed_model=settings.embed_model)
    try:
        yield
    finally:
        await http_client.aclose()
        await openai_client.close()
        await engine.dispose()
        logger.info("app_stopped")

def create_app(settings: Settings = default_settings) -> FastAPI:
    app = FastAPI(title="chatkb", lifespan=lifespan)
    app.state.settings = settings

    # CORS (ajustá orígenes en prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(health.router)
    app.include_router(knowledge_router.router)
    app.include_router(worker_router.router)
    app.include_router(rag_router.router)

    # Opcional: ping rápido
    @app.get("/")
    async def root():
        return {"ok": True, "service": "chatkb", "routers": ["health", "knowledge", "worker", "rag"]}

    return app

app = create_app()
