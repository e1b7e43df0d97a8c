"""Jerarquia de excepciones del pipeline de conocimiento.

    KnowledgeError
    +-- ContentError            (la fuente no tiene texto usable; terminal)
    +-- EmbeddingProviderError  (fallo o respuesta malformada del proveedor)
    +-- StorageError            (fallo al borrar/insertar chunks)
    +-- FetchError              (fallo al descargar una URL)
    |   +-- SSRFRejection       (esquema o direccion destino no permitidos)
    +-- ProcessingTimeout       (fuente trabada en 'processing')
    +-- SourceNotFound          (id desconocido; tambien es LookupError)

El pipeline de ingesta convierte todas en status 'failed' guardando
``str(exc)`` como error, salvo ``SourceNotFound``, que se lanza antes de
tocar cualquier estado.
"""

from __future__ import annotations


class KnowledgeError(Exception):
    def __init__(self, message: str = "Knowledge processing failed", source_id: str | None = None) -> None:
        self._message = message
        self._source_id = source_id
        super().__init__(message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def source_id(self) -> str | None:
        return self._source_id

    def __str__(self) -> str:
        return self._message


class ContentError(KnowledgeError):
    """Fuente sin texto usable (upload vacio, scrape vacio, formato ilegible)."""


class EmbeddingProviderError(KnowledgeError):
    """El proveedor de embeddings fallo o devolvio datos malformados.

    ``status_code`` es el HTTP status cuando el proveedor respondio; ``None``
    para errores de conexion y payloads malformados.
    """

    _RETRYABLE_STATUSES = frozenset({408, 409, 429})

    def __init__(
        self,
        message: str = "Embedding provider error",
        status_code: int | None = None,
        malformed: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.malformed = malformed

    @property
    def retryable(self) -> bool:
        if self.malformed:
            return False
        if self.status_code is None:
            return True
        return self.status_code in self._RETRYABLE_STATUSES or self.status_code >= 500

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self._message} (status {self.status_code})"
        return self._message


class StorageError(KnowledgeError):
    pass


class FetchError(KnowledgeError):
    pass


class SSRFRejection(FetchError):
    """La URL apunta a un esquema no http(s) o a una red privada/loopback/link-local."""


class ProcessingTimeout(KnowledgeError):
    def __init__(self, message: str = "Processing timed out", source_id: str | None = None) -> None:
        super().__init__(message, source_id)


class SourceNotFound(KnowledgeError, LookupError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source {source_id} not found", source_id)
