"""Chat endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from typing import List
import logging
from ...models.response import ChatRequest, StoredChatMessage
from ...db import ChatRepository
from ...services import ChatService
from ...services.chat_service import GENERIC_ERROR_MESSAGE
from ...api.dependencies import get_chat_repository, get_chat_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
async def chat(
    request: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Stream a cited answer

    Response body is the line-oriented stream (``0:`` text fragments, a
    closing ``d:`` record, or an ``e:`` record after a mid-stream failure).
    ``X-Chat-API-Status`` tells the client whether fragments are pieces of a
    JSON object or plain text.
    """
    logger.info(f"Chat request: session={request.sessionId}, messages={len(request.messages)}")

    stream = chat_service.stream_chat(request)
    try:
        # Generation problems before any output become a proper error status
        first_record = await stream.__anext__()
    except Exception:
        logger.exception("Chat generation failed before streaming started")
        return JSONResponse(status_code=500, content={"error": {"message": GENERIC_ERROR_MESSAGE}})

    async def body():
        yield first_record
        async for record in stream:
            yield record

    return StreamingResponse(
        body(),
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Chat-API-Status": chat_service.stream_status,
            "Cache-Control": "no-cache",
        },
    )


@router.get("/sessions/{session_id}/messages", response_model=List[StoredChatMessage])
async def get_session_messages(
    session_id: str,
    chat_repository: ChatRepository = Depends(get_chat_repository),
):
    """Stored turns of a session in creation order"""
    session = await chat_repository.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return await chat_repository.list_messages(session_id)
