from fastapi import APIRouter

from lorekeeper.models.types import CanonizeRequest, CanonizeResponse, ChatRequest, ChatResponse
from lorekeeper.services.assistant import canonize, chat_turn

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest):
    out = await chat_turn(
        req.campaign_id,
        req.message,
        document_id=req.document_id,
        document_content=req.document_content,
        k=req.k,
    )
    return ChatResponse(**out)


@router.post("/canonize", response_model=CanonizeResponse)
async def canonize_selection(req: CanonizeRequest):
    updated = await canonize(req.selection, req.full_response, req.document_content)
    return CanonizeResponse(updated_content=updated)
