"""
Email Query Routes

Paged listing, filtered search, single-email lookup and reply suggestions
over the email index.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from api.dependencies import get_onebox
from api.models.responses import success_response
from onebox.application import OneboxApplication
from onebox.exceptions import CategorizationError
from onebox.indexing.email_index import SORT_COLUMNS
from onebox.models import EmailCategory, EmailSearchQuery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emails", tags=["Emails"])


def _parse_category(value: Optional[str]) -> Optional[EmailCategory]:
    if value is None:
        return None
    category = EmailCategory.parse(value)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown category: {value}"
        )
    return category


def _check_sort(sort_by: str, sort_order: str) -> None:
    if sort_by not in SORT_COLUMNS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot sort by {sort_by}; use one of {', '.join(sorted(SORT_COLUMNS))}"
        )
    if sort_order not in ("asc", "desc"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="sort_order must be 'asc' or 'desc'"
        )


@router.get("", summary="List indexed emails")
async def list_emails(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Emails per page"),
    sort_by: str = Query("date", description="Sort field"),
    sort_order: str = Query("desc", description="asc or desc"),
    category: Optional[str] = Query(None, description="Filter by category"),
    onebox: OneboxApplication = Depends(get_onebox)
):
    _check_sort(sort_by, sort_order)
    query = EmailSearchQuery(
        category=_parse_category(category),
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await onebox.indexer.search(query)
    return success_response(result.to_dict())


@router.get("/search", summary="Search indexed emails")
async def search_emails(
    q: Optional[str] = Query(None, description="Free text matched against subject, body and sender"),
    account: Optional[str] = Query(None),
    folder: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    sender: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    has_attachments: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("date"),
    sort_order: str = Query("desc"),
    onebox: OneboxApplication = Depends(get_onebox)
):
    _check_sort(sort_by, sort_order)
    query = EmailSearchQuery(
        query=q,
        account=account,
        folder=folder,
        category=_parse_category(category),
        sender=sender,
        date_from=date_from,
        date_to=date_to,
        has_attachments=has_attachments,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await onebox.indexer.search(query)
    return success_response(result.to_dict())


@router.get("/{email_id}", summary="Get a single email")
async def get_email(
    email_id: str = Path(..., description="Email id"),
    onebox: OneboxApplication = Depends(get_onebox)
):
    email = await onebox.indexer.get_by_id(email_id)
    if email is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Email {email_id} not found"
        )
    return success_response(email.to_dict())


@router.post("/{email_id}/reply", summary="Suggest a reply")
async def suggest_reply(
    email_id: str = Path(..., description="Email id"),
    onebox: OneboxApplication = Depends(get_onebox)
):
    """
    Draft a reply for an indexed email.

    Relevant contexts are retrieved from the context store (when enabled)
    using the email subject and body, then handed to the categorizer's
    reply generator.
    """
    email = await onebox.indexer.get_by_id(email_id)
    if email is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Email {email_id} not found"
        )

    contexts = []
    if onebox.context_store is not None:
        contexts = await onebox.context_store.get_relevant_contexts(f"{email.subject} {email.body}", limit=5)

    try:
        suggestion = await onebox.categorizer.generate_reply_suggestion(email, contexts)
    except CategorizationError as e:
        logger.warning(f"Reply suggestion unavailable for {email_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Reply suggestion unavailable: {e}"
        )

    return success_response({
        "email_id": email_id,
        "relevant_contexts": [record.to_dict() for record in contexts],
        "suggestion": suggestion,
    })
