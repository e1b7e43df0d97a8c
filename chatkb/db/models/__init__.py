from chatkb.db.models.chatbot import Chatbot
from chatkb.db.models.knowledge_source import KnowledgeSource
from chatkb.db.models.knowledge_chunk import KnowledgeChunk

__all__ = ["Chatbot", "KnowledgeSource", "KnowledgeChunk"]
