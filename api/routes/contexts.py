"""
Context Routes

Manual additions to the long-term context store, plus read access for
inspecting what reply suggestions will draw on.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from api.dependencies import get_onebox
from api.models.requests import AddContextRequest, UpdateContextRequest
from api.models.responses import success_response
from onebox.application import OneboxApplication
from onebox.interfaces import ContextStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contexts", tags=["Contexts"])


def _require_store(onebox: OneboxApplication) -> ContextStore:
    if onebox.context_store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Context store is disabled"
        )
    return onebox.context_store


@router.post("", status_code=status.HTTP_201_CREATED, summary="Add a manual context")
async def add_context(body: AddContextRequest, onebox: OneboxApplication = Depends(get_onebox)):
    store = _require_store(onebox)
    record = await store.add_context(
        content=body.content,
        context_type=body.type,
        priority=body.priority.value,
        tags=body.tags,
    )
    return success_response(record.to_dict(), message="Context added")


@router.get("", summary="List contexts")
async def list_contexts(
    limit: int = Query(100, ge=1, le=1000),
    onebox: OneboxApplication = Depends(get_onebox)
):
    store = _require_store(onebox)
    records = await store.list_contexts(limit=limit)
    return success_response([record.to_dict() for record in records])


@router.get("/{context_id}", summary="Get a context")
async def get_context(
    context_id: str = Path(...),
    onebox: OneboxApplication = Depends(get_onebox)
):
    store = _require_store(onebox)
    record = await store.get_context(context_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Context {context_id} not found"
        )
    return success_response(record.to_dict())


@router.delete("/{context_id}", summary="Delete a context")
async def delete_context(
    context_id: str = Path(...),
    onebox: OneboxApplication = Depends(get_onebox)
):
    store = _require_store(onebox)
    if not await store.delete_context(context_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Context {context_id} not found"
        )
    return success_response(message=f"Context {context_id} deleted")


@router.patch("/{context_id}", summary="Update a context")
async def update_context(
    body: UpdateContextRequest,
    context_id: str = Path(...),
    onebox: OneboxApplication = Depends(get_onebox)
):
    store = _require_store(onebox)
    record = await store.update_context(
        context_id,
        content=body.content,
        priority=body.priority.value if body.priority else None,
        tags=body.tags,
    )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Context {context_id} not found"
        )
    return success_response(record.to_dict(), message=f"Context {context_id} updated")
