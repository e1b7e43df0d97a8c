# chatkb/schemas/source.py
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

class SourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chatbot_id: str
    type: Literal["file", "url"]
    name: str
    url: Optional[str] = None
    status: str
    error: Optional[str] = None
    chunk_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class UploadOut(BaseModel):
    sources: List[SourceOut]
    # archivos que no se pudieron leer o superan el tamaño máximo
    skipped: List[str] = Field(default_factory=list)

class UrlSourceIn(BaseModel):
    url: str = Field(min_length=1, max_length=2048)

class DeleteOut(BaseModel):
    ok: bool = True

# worker
class WorkerRunOut(BaseModel):
    processed: int
    duration_ms: int
    stats: Dict[str, int]

class WorkerStatusOut(BaseModel):
    status: Literal["ok"] = "ok"
    stats: Dict[str, int]

# rag
class ContextQuery(BaseModel):
    query: str
    top_k: Optional[int] = Field(default=None, ge=1, le=50)

class ContextOut(BaseModel):
    context: str
