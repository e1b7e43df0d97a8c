from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, func
from pgvector.sqlalchemy import VECTOR
from chatkb.db.base import Base
from chatkb.db.models.knowledge_source import utcnow

def chunk_id(source_id: str, index: int) -> str:
    # determinístico: reinsertar la misma fuente produce los mismos ids
    return f"chunk_{source_id}_{index}"

class KnowledgeChunk(Base):
    __tablename__ = "knowledge_chunks"
    id = Column(String, primary_key=True)
    # denormalizado desde la fuente para filtrar por tenant sin join
    chatbot_id = Column(String, nullable=False, index=True)
    source_id = Column(String(36), ForeignKey("knowledge_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(String, nullable=False)
    # sin ancho fijo: lo valida VectorStore con la dimensión configurada
    embedding = Column(VECTOR())
    chunk_index = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
