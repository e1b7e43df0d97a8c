# chatkb/core/config.py
from pathlib import Path
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    env: str = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    database_url: str = "sqlite+aiosqlite:///./chatkb.db"

    # Proveedor de embeddings (OpenAI o gateway compatible, p.ej. OpenRouter)
    openai_api_key: str = ""
    openai_base_url: str = ""
    embed_model: str = "text-embedding-3-small"
    embed_dimensions: int = 1536
    embed_batch_size: int = 20
    embed_batch_delay: float = 0.1
    embed_max_input_chars: int = 8000
    embed_timeout: float = 30.0

    # Chunking / ingesta
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_content_chars: int = 100_000
    stale_processing_minutes: int = 10

    # Recuperación en el turno de chat
    retrieval_top_k: int = 5
    retrieval_timeout: float = 8.0

    # Worker (cron externo)
    worker_batch_limit: int = 2
    cron_secret: str = ""

    # Fuentes externas
    fetch_timeout: float = 15.0
    fetch_max_bytes: int = 5 * 1024 * 1024
    max_upload_bytes: int = 10 * 1024 * 1024

    # Busca primero en variables de entorno y luego en .env
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_size <= 0 or self.chunk_overlap < 0:
            raise ValueError("chunk_size must be positive and chunk_overlap non-negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

settings = Settings()
