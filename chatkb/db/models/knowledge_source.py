from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship
from chatkb.db.base import Base

PENDING = "pending"
PROCESSING = "processing"
READY = "ready"
FAILED = "failed"
STATUSES = (PENDING, PROCESSING, READY, FAILED)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class KnowledgeSource(Base):
    __tablename__ = "knowledge_sources"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    chatbot_id = Column(String, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String, nullable=False)        # 'file' | 'url'
    name = Column(String, nullable=False)
    url = Column(String)                         # solo cuando type='url'

    content = Column(String)                     # texto crudo extraído
    status = Column(String, nullable=False, default=PENDING)  # 'pending' | 'processing' | 'ready' | 'failed'
    error = Column(String)
    chunk_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    chatbot = relationship("Chatbot", back_populates="sources")

    # el worker busca pendientes por antigüedad
    __table_args__ = (Index("ix_knowledge_sources_status_created", "status", "created_at"),)

    def __repr__(self) -> str:
        return f"<KnowledgeSource {self.id} {self.type} {self.status}>"
