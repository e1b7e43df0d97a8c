from fastapi import APIRouter, Depends
from chatkb.core.config import Settings
from chatkb.routers.deps import get_retriever, get_settings
from chatkb.schemas.source import ContextOut, ContextQuery
from chatkb.services.rag import Retriever

router = APIRouter(prefix="/rag", tags=["rag"])

@router.post("/chatbots/{chatbot_id}/context", response_model=ContextOut)
async def retrieve_context(
    chatbot_id: str,
    body: ContextQuery,
    retriever: Retriever = Depends(get_retriever),
    settings: Settings = Depends(get_settings),
):
    """
    Contexto de grounding para un turno de chat (o el playground).
    Si la búsqueda falla o tarda demasiado devuelve contexto vacío, no un error.
    """
    k = body.top_k if body.top_k is not None else settings.retrieval_top_k
    context = await retriever.retrieve_context(chatbot_id, body.query, k)
    return ContextOut(context=context)
