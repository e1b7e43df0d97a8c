from sqlalchemy import event, text as sqltext
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

def make_engine(database_url: str) -> AsyncEngine:
    # pre_ping descarta conexiones muertas del pool (el DB cierra conexiones ociosas)
    engine = create_async_engine(database_url, echo=False, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        # SQLite no aplica ON DELETE CASCADE si no se activa por conexión
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine

def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)

async def init_db(bind: AsyncEngine) -> None:
    """Crea extension pgvector (solo Postgres) y tablas si no existen. En prod, usar migraciones."""
    # importa los modelos para registrarlos en Base.metadata
    from chatkb.db import models  # noqa: F401
    from chatkb.db.base import Base

    async with bind.begin() as conn:
        if bind.dialect.name == "postgresql":
            await conn.execute(sqltext("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
