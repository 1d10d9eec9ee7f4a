"""
SQL-backed email search index.

Stores one row per email id. Filtering is plain column comparison and LIKE
matching; there is no relevance ranking. All database work runs in worker
threads so the event loop is never blocked.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import asc, desc, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from onebox.exceptions import IndexingError
from onebox.interfaces import EmailIndexer
from onebox.models import Email, EmailCategory, EmailSearchQuery, PagedResult, utcnow
from onebox.storage.database import Database
from onebox.storage.models import EmailRecord, to_db_time

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
RECENT_WINDOW_DAYS = 7

SORT_COLUMNS = {
    "date": EmailRecord.date,
    "subject": EmailRecord.subject,
    "account": EmailRecord.account,
    "category": EmailRecord.category,
    "indexed_at": EmailRecord.indexed_at,
}


class SqlEmailIndex(EmailIndexer):
    """Email index over the ``emails`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def index_email(self, email: Email) -> bool:
        """
        Index an email if it is not already present.

        Args:
            email: Email to index

        Returns:
            bool: True when a new row was written, False if the id already existed

        Raises:
            IndexingError: On storage failure
        """
        try:
            created = await asyncio.to_thread(self._insert, email)
        except SQLAlchemyError as e:
            raise IndexingError(f"Failed to index email {email.id}: {e}") from e
        if created:
            logger.debug(f"Indexed email {email.id}")
        else:
            logger.debug(f"Email {email.id} already indexed")
        return created

    def _insert(self, email: Email) -> bool:
        with self.database.get_session() as session:
            if session.get(EmailRecord, email.id) is not None:
                return False
            session.add(EmailRecord.from_email(email))
            try:
                session.flush()
            except IntegrityError:
                # Concurrent insert of the same id won the race
                session.rollback()
                return False
        return True

    async def update_category(self, email_id: str, category: EmailCategory) -> None:
        try:
            updated = await asyncio.to_thread(self._update_category, email_id, category)
        except SQLAlchemyError as e:
            raise IndexingError(f"Failed to update category for {email_id}: {e}") from e
        if not updated:
            raise IndexingError(f"Email {email_id} is not indexed")
        logger.debug(f"Updated category of {email_id} to {category.value}")

    def _update_category(self, email_id: str, category: EmailCategory) -> bool:
        with self.database.get_session() as session:
            record = session.get(EmailRecord, email_id)
            if record is None:
                return False
            record.category = category.value
        return True

    async def get_by_id(self, email_id: str) -> Optional[Email]:
        try:
            return await asyncio.to_thread(self._get, email_id)
        except SQLAlchemyError as e:
            raise IndexingError(f"Failed to load email {email_id}: {e}") from e

    def _get(self, email_id: str) -> Optional[Email]:
        with self.database.get_session() as session:
            record = session.get(EmailRecord, email_id)
            return record.to_email() if record else None

    async def search(self, query: EmailSearchQuery) -> PagedResult:
        """
        Filter indexed emails and return one page of results.

        Args:
            query: Filters, paging and sorting

        Returns:
            PagedResult: Page of emails with pagination metadata
        """
        try:
            return await asyncio.to_thread(self._search, query)
        except SQLAlchemyError as e:
            raise IndexingError(f"Email search failed: {e}") from e

    def _search(self, query: EmailSearchQuery) -> PagedResult:
        page = max(query.page, 1)
        limit = min(max(query.limit, 1), MAX_PAGE_SIZE)

        with self.database.get_session() as session:
            statement = session.query(EmailRecord)

            if query.query:
                pattern = f"%{query.query}%"
                statement = statement.filter(or_(
                    EmailRecord.subject.ilike(pattern),
                    EmailRecord.body.ilike(pattern),
                    EmailRecord.sender_address.ilike(pattern),
                ))
            if query.account:
                statement = statement.filter(EmailRecord.account == query.account)
            if query.folder:
                statement = statement.filter(EmailRecord.folder == query.folder)
            if query.category:
                statement = statement.filter(EmailRecord.category == query.category.value)
            if query.sender:
                statement = statement.filter(
                    EmailRecord.sender_address.ilike(f"%{query.sender.lower()}%")
                )
            if query.date_from:
                statement = statement.filter(EmailRecord.date >= to_db_time(query.date_from))
            if query.date_to:
                statement = statement.filter(EmailRecord.date <= to_db_time(query.date_to))
            if query.has_attachments is not None:
                statement = statement.filter(EmailRecord.has_attachments == query.has_attachments)

            total = statement.count()

            column = SORT_COLUMNS.get(query.sort_by, EmailRecord.date)
            order = asc(column) if query.sort_order == "asc" else desc(column)
            records = (
                statement.order_by(order, EmailRecord.id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            emails = [record.to_email() for record in records]

        return PagedResult(data=emails, page=page, limit=limit, total=total)

    async def stats(self) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self._stats)
        except SQLAlchemyError as e:
            raise IndexingError(f"Failed to compute email stats: {e}") from e

    def _stats(self) -> Dict[str, Any]:
        since = to_db_time(utcnow() - timedelta(days=RECENT_WINDOW_DAYS))
        with self.database.get_session() as session:
            total = session.query(func.count(EmailRecord.id)).scalar() or 0
            category_counts = {
                (category or "Uncategorized"): count
                for category, count in session.query(
                    EmailRecord.category, func.count(EmailRecord.id)
                ).group_by(EmailRecord.category)
            }
            account_counts = {
                account: count
                for account, count in session.query(
                    EmailRecord.account, func.count(EmailRecord.id)
                ).group_by(EmailRecord.account)
            }
            recent = (
                session.query(func.count(EmailRecord.id))
                .filter(EmailRecord.date >= since)
                .scalar()
            ) or 0

        return {
            "total": total,
            "category_counts": category_counts,
            "account_counts": account_counts,
            "recent_emails": recent,
        }

    async def health_check(self) -> bool:
        try:
            return await asyncio.to_thread(self.database.ping)
        except SQLAlchemyError as e:
            logger.warning(f"Email index health check failed: {e}")
            return False
