"""
Chat Routes

Conversational access to indexed emails. Sessions live in memory and are
pruned periodically by the application container.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from api.dependencies import get_onebox
from api.models.requests import ChatRequest
from api.models.responses import success_response
from onebox.application import OneboxApplication
from onebox.exceptions import ConfigurationError, LLMRequestError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


@router.post("", summary="Send a chat message")
async def chat(body: ChatRequest, onebox: OneboxApplication = Depends(get_onebox)):
    try:
        response = await onebox.chat.chat(
            body.message,
            session_id=body.session_id,
            email_ids=body.email_ids,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LLMRequestError as e:
        logger.error(f"Chat completion failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Chat model request failed")
    return success_response(response)


@router.get("", summary="List recent chat sessions")
async def list_sessions(
    limit: int = Query(10, ge=1, le=100),
    onebox: OneboxApplication = Depends(get_onebox)
):
    return success_response(onebox.chat.get_sessions(limit=limit))


@router.get("/stats", summary="Chat statistics")
async def chat_stats(onebox: OneboxApplication = Depends(get_onebox)):
    return success_response(onebox.chat.stats())


@router.get("/{session_id}", summary="Get a chat session")
async def get_session(
    session_id: str = Path(...),
    onebox: OneboxApplication = Depends(get_onebox)
):
    session = onebox.chat.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chat session {session_id} not found"
        )
    return success_response(session)


@router.delete("/{session_id}", summary="Delete a chat session")
async def delete_session(
    session_id: str = Path(...),
    onebox: OneboxApplication = Depends(get_onebox)
):
    if not onebox.chat.delete_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chat session {session_id} not found"
        )
    return success_response(message=f"Chat session {session_id} deleted")
