"""Shared pytest fixtures for the chatkb test suite."""

from __future__ import annotations

import re
from pathlib import Path
from typing import AsyncIterator, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatkb.core.errors import EmbeddingProviderError
from chatkb.db.session import init_db, make_engine, make_session_factory
from chatkb.services import sources as registry
from chatkb.services.ingest import IngestionPipeline
from chatkb.services.vectors import VectorStore

FAKE_DIMENSIONS = 64

_WORD = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Bag-of-words determinístico: cada palabra distinta ocupa su propia dimensión.

    Textos que comparten palabras quedan cerca en coseno; textos sin palabras
    en común quedan ortogonales.
    """

    def __init__(self, dimensions: int = FAKE_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        for word in _WORD.findall((text or "").lower()):
            if word not in self.vocabulary:
                if len(self.vocabulary) >= self.dimensions:
                    raise AssertionError("FakeEmbedder vocabulary exhausted")
                self.vocabulary[word] = len(self.vocabulary)
            vec[self.vocabulary[word]] += 1.0
        return vec

    async def embed_one(self, text: str) -> list[float]:
        return (await self.embed_many([text]))[0]

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_with is not None:
            raise self.fail_with
        return [self.vector(t) for t in texts]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """SQLite temporal con el esquema real."""
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def chatbot_id(session: AsyncSession) -> str:
    await registry.ensure_chatbot(session, "bot-1", user_id="user-1")
    return "bot-1"


@pytest_asyncio.fixture
async def other_chatbot_id(session: AsyncSession) -> str:
    await registry.ensure_chatbot(session, "bot-2", user_id="user-2")
    return "bot-2"


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store() -> VectorStore:
    return VectorStore(FAKE_DIMENSIONS)


@pytest.fixture
def pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    fake_embedder: FakeEmbedder,
    store: VectorStore,
) -> IngestionPipeline:
    return IngestionPipeline(
        session_factory,
        fake_embedder,
        store,
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest.fixture
def provider_error() -> EmbeddingProviderError:
    return EmbeddingProviderError("Failed to create embeddings: rate limited", status_code=429)
