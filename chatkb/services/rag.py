import asyncio
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatkb.core.logging import get_logger
from chatkb.services.embeddings import Embedder
from chatkb.services.vectors import ScoredChunk, VectorStore

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
DEFAULT_TOP_K = 5
DEFAULT_TIMEOUT = 8.0

# =========================
# Retrieval
# =========================

class Retriever:
    """
    Camino de consulta: embed de la pregunta -> top-k del tenant -> contexto.
    Nunca lanza: sin contexto el chat sigue funcionando, solo que sin grounding.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        store: VectorStore,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._session_factory = session_factory
        self._embedder = embedder
        self._store = store
        self._timeout = timeout

    async def search(self, chatbot_id: str, query: str, k: int = DEFAULT_TOP_K) -> List[ScoredChunk]:
        """Top-k con distancias. Propaga errores del proveedor o del store."""
        if not (query or "").strip() or k <= 0:
            return []
        vec = await self._embedder.embed_one(query)
        async with self._session_factory() as session:
            return await self._store.scored_top_k(session, chatbot_id, vec, k)

    async def retrieve_context(self, chatbot_id: str, query: str, k: int = DEFAULT_TOP_K) -> str:
        if not (query or "").strip():
            return ""
        try:
            hits = await asyncio.wait_for(self.search(chatbot_id, query, k), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("retrieval_timeout", chatbot_id=chatbot_id, timeout=self._timeout)
            return ""
        except Exception as e:
            logger.warning("retrieval_failed", chatbot_id=chatbot_id, error=str(e), error_type=type(e).__name__)
            return ""

        logger.debug("retrieval_done", chatbot_id=chatbot_id, hits=len(hits))
        return CONTEXT_SEPARATOR.join(h.content for h in hits)


# =========================
# Prompt
# =========================

def build_system_prompt(system_prompt: str, context: str) -> str:
    """Agrega el contexto recuperado al system prompt del bot (si hay)."""
    base = (system_prompt or "").strip()
    if not (context or "").strip():
        return base
    block = (
        "## Relevant knowledge\n"
        "Use the following information from the knowledge base to answer. "
        "If it does not cover the question, say so instead of guessing.\n\n"
        f"{context.strip()}"
    )
    return f"{base}\n\n{block}" if base else block
