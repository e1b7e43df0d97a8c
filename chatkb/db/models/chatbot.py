from sqlalchemy import Column, String, DateTime, func
from sqlalchemy.orm import relationship
from chatkb.db.base import Base

class Chatbot(Base):
    """Tenant: todo el conocimiento cuelga de un chatbot."""
    __tablename__ = "chatbots"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    name = Column(String, nullable=False, default="Chatbot")
    system_prompt = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sources = relationship(
        "KnowledgeSource",
        back_populates="chatbot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
