"""Cliente de embeddings sobre la API de OpenAI (o cualquier gateway compatible).

El cliente ``openai.AsyncOpenAI`` se construye en el composition root
(``chatkb.main``) y se inyecta acá; no hay singletons perezosos.
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import openai

from chatkb.core.errors import EmbeddingProviderError
from chatkb.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_BATCH_SIZE = 20
DEFAULT_BATCH_DELAY = 0.1
MAX_INPUT_CHARS = 8000


class Embedder:
    """Convierte textos en vectores densos de dimensión fija.

    ``embed_many`` manda lotes de ``batch_size`` textos con una pausa corta
    entre lotes (rate limit del proveedor). El orden de salida es el de
    entrada; si un lote falla, falla toda la llamada.
    """

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str = DEFAULT_MODEL,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        max_input_chars: int = MAX_INPUT_CHARS,
        dimensions: int | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._client = client
        self._model = model
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._max_input_chars = max_input_chars
        self._dimensions = dimensions

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def _prepare(self, text: str) -> str:
        return (text or "")[: self._max_input_chars]

    async def embed_one(self, text: str) -> list[float]:
        vectors = await self._request([self._prepare(text)])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        prepared = [self._prepare(t) for t in texts]
        out: list[list[float]] = []
        for start in range(0, len(prepared), self._batch_size):
            batch = prepared[start : start + self._batch_size]
            out.extend(await self._request(batch))
            logger.debug(
                "embedding_batch_done",
                model=self._model,
                batch_start=start,
                batch_size=len(batch),
            )
            if start + self._batch_size < len(prepared):
                await asyncio.sleep(self._batch_delay)

        if len(out) != len(texts):
            raise EmbeddingProviderError(
                f"Expected {len(texts)} embeddings, got {len(out)}", malformed=True
            )
        return out

    async def _request(self, batch: list[str]) -> list[list[float]]:
        try:
            params: dict[str, Any] = {"model": self._model, "input": batch}
            if self._dimensions:
                # modelos text-embedding-3 recortan al ancho pedido
                params["dimensions"] = self._dimensions
            response = await self._client.embeddings.create(**params)
        except openai.APIStatusError as exc:
            logger.warning("embedding_request_failed", model=self._model, status=exc.status_code)
            raise EmbeddingProviderError(
                f"Failed to create embeddings: {exc.message}", status_code=exc.status_code
            ) from exc
        except openai.APIError as exc:
            # conexión / timeout: sin status HTTP
            logger.warning("embedding_request_failed", model=self._model, error=str(exc))
            raise EmbeddingProviderError(f"Failed to create embeddings: {exc}") from exc

        return self._parse(response, expected=len(batch))

    def _parse(self, response: Any, expected: int) -> list[list[float]]:
        data = getattr(response, "data", None)
        if not data or len(data) != expected:
            got = len(data) if data else 0
            raise EmbeddingProviderError(
                f"Embedding response has {got} vectors for {expected} inputs", malformed=True
            )

        # el proveedor informa 'index'; si viene, se respeta para reordenar
        items = list(data)
        if all(isinstance(getattr(item, "index", None), int) for item in items):
            items.sort(key=lambda item: item.index)

        vectors: list[list[float]] = []
        for item in items:
            vec = getattr(item, "embedding", None)
            if not vec:
                raise EmbeddingProviderError("Embedding response item has no vector", malformed=True)
            if self._dimensions and len(vec) != self._dimensions:
                raise EmbeddingProviderError(
                    f"Embedding has {len(vec)} dimensions, expected {self._dimensions}",
                    malformed=True,
                )
            vectors.append(list(vec))
        return vectors
