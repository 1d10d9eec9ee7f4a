"""
SQL-backed context store.

Context records are upserted by id, so storing the context of the same email
twice leaves exactly one record. Relevance is plain term overlap between the
query text and each record's content; term sets are cached per record id and
invalidated on every write.
"""

import asyncio
import logging
import re
import uuid
from collections import Counter
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from onebox.exceptions import ContextStoreError
from onebox.interfaces import ContextStore
from onebox.models import ContextMetadata, ContextPriority, ContextRecord, utcnow
from onebox.storage.database import Database
from onebox.storage.models import ContextRow, to_db_time

logger = logging.getLogger(__name__)

TERM_PATTERN = re.compile(r"[a-z0-9]{3,}")

PRIORITY_RANK = {
    ContextPriority.HIGH: 0,
    ContextPriority.MEDIUM: 1,
    ContextPriority.LOW: 2,
}


DEFAULT_CONTEXTS = [
    {
        "type": "job_search",
        "priority": ContextPriority.HIGH,
        "tags": ["job", "application", "meeting", "interview"],
        "content": "I am applying for a job position. If the lead is interested, share the meeting booking link: https://cal.com/example",
    },
    {
        "type": "sales",
        "priority": ContextPriority.MEDIUM,
        "tags": ["software", "demo", "product", "sales"],
        "content": "We offer software solutions. For interested leads, schedule a demo at https://calendly.com/demo",
    },
    {
        "type": "partnership",
        "priority": ContextPriority.MEDIUM,
        "tags": ["partnership", "collaboration", "project"],
        "content": "For project collaborations and partnerships, please use our project inquiry form at https://forms.company.com/partnership",
    },
    {
        "type": "consulting",
        "priority": ContextPriority.HIGH,
        "tags": ["consulting", "services", "strategy", "training"],
        "content": "Our consulting services include strategy, implementation, and training. Book a consultation at https://calendly.com/consulting",
    },
    {
        "type": "support",
        "priority": ContextPriority.LOW,
        "tags": ["support", "technical", "troubleshooting", "ticket"],
        "content": "For technical support and troubleshooting, please visit our support portal at https://support.company.com or create a ticket",
    },
    {
        "type": "training",
        "priority": ContextPriority.MEDIUM,
        "tags": ["training", "education", "workshop", "learning"],
        "content": "We provide training workshops and educational sessions. Available slots can be viewed at https://training.company.com",
    },
]


def extract_terms(text: str) -> FrozenSet[str]:
    return frozenset(TERM_PATTERN.findall(text.lower()))


class SqlContextStore(ContextStore):
    """
    Context store over the ``contexts`` table.

    Args:
        database: Shared database handle
        min_score: Minimum overlap ratio for a record to count as relevant
    """

    def __init__(self, database: Database, min_score: float = 0.1):
        self.database = database
        self.min_score = min_score
        self._terms: Dict[str, FrozenSet[str]] = {}

    async def store_context(self, record: ContextRecord) -> None:
        try:
            await asyncio.to_thread(self._upsert, record)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to store context {record.id}: {e}") from e
        self._terms.pop(record.id, None)
        logger.debug(f"Stored context {record.id}")

    def _upsert(self, record: ContextRecord) -> None:
        with self.database.get_session() as session:
            row = session.get(ContextRow, record.id)
            if row is None:
                row = ContextRow(
                    id=record.id,
                    created_at=to_db_time(record.metadata.created_at),
                )
                session.add(row)
            row.content = record.content
            row.type = record.metadata.type
            row.priority = record.metadata.priority.value
            row.tags = list(record.metadata.tags)
            row.updated_at = to_db_time(record.metadata.updated_at)

    async def get_relevant_contexts(self, text: str, limit: int = 5) -> List[ContextRecord]:
        """
        Find contexts sharing terms with the given text.

        Results are ordered by priority first (high before medium before low),
        then by overlap score.

        Args:
            text: Text to match, typically an email subject and body
            limit: Maximum number of records to return

        Returns:
            List of matching context records
        """
        query_terms = extract_terms(text)
        if not query_terms:
            return []

        try:
            rows = await asyncio.to_thread(self._load_all)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to load contexts: {e}") from e

        scored: List[Tuple[float, ContextRecord]] = []
        for record in rows:
            terms = self._terms.get(record.id)
            if terms is None:
                terms = extract_terms(record.content)
                self._terms[record.id] = terms
            score = len(query_terms & terms) / len(query_terms)
            if score >= self.min_score:
                scored.append((score, record))

        scored.sort(key=lambda item: (PRIORITY_RANK[item[1].metadata.priority], -item[0]))
        return [record for _, record in scored[:limit]]

    def _load_all(self) -> List[ContextRecord]:
        with self.database.get_session() as session:
            return [row.to_record() for row in session.query(ContextRow).all()]

    async def add_context(
        self,
        content: str,
        context_type: str,
        priority: str = "medium",
        tags: Optional[List[str]] = None
    ) -> ContextRecord:
        """Create a manual context record with a generated id."""
        try:
            parsed_priority = ContextPriority(priority)
        except ValueError as e:
            raise ContextStoreError(f"Invalid priority: {priority}") from e

        now = utcnow()
        record = ContextRecord(
            id=f"{context_type}-{uuid.uuid4()}",
            content=content,
            metadata=ContextMetadata(
                type=context_type,
                priority=parsed_priority,
                tags=list(tags or []),
                created_at=now,
                updated_at=now,
            ),
        )
        await self.store_context(record)
        logger.info(f"Added {context_type} context {record.id}")
        return record

    async def get_context(self, context_id: str) -> Optional[ContextRecord]:
        try:
            return await asyncio.to_thread(self._get, context_id)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to load context {context_id}: {e}") from e

    def _get(self, context_id: str) -> Optional[ContextRecord]:
        with self.database.get_session() as session:
            row = session.get(ContextRow, context_id)
            return row.to_record() if row else None

    async def update_context(
        self,
        context_id: str,
        content: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> Optional[ContextRecord]:
        """
        Merge changes into an existing context record.

        Fields left as None keep their stored value; ``updated_at`` is always
        refreshed.

        Returns:
            The updated record, or None when no record has this id

        Raises:
            ContextStoreError: On an invalid priority or a storage failure
        """
        existing = await self.get_context(context_id)
        if existing is None:
            return None

        metadata = existing.metadata
        if priority is not None:
            try:
                metadata.priority = ContextPriority(priority)
            except ValueError as e:
                raise ContextStoreError(f"Invalid priority: {priority}") from e
        if tags is not None:
            metadata.tags = list(tags)
        metadata.updated_at = utcnow()

        record = ContextRecord(
            id=context_id,
            content=content if content is not None else existing.content,
            metadata=metadata,
        )
        await self.store_context(record)
        logger.info(f"Updated context {context_id}")
        return record

    async def seed_default_contexts(self) -> int:
        """
        Store the starter contexts on first run.

        Seeding is skipped when any context already exists, so restarts and
        user edits are never overwritten.
        """
        try:
            count = await asyncio.to_thread(self._count)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to count contexts: {e}") from e
        if count:
            logger.debug(f"Context store holds {count} records; skipping default seed")
            return 0

        for entry in DEFAULT_CONTEXTS:
            now = utcnow()
            await self.store_context(ContextRecord(
                id=f"default-{entry['type']}",
                content=entry["content"],
                metadata=ContextMetadata(
                    type=entry["type"],
                    priority=entry["priority"],
                    tags=list(entry["tags"]),
                    created_at=now,
                    updated_at=now,
                ),
            ))
        logger.info(f"Seeded {len(DEFAULT_CONTEXTS)} default contexts")
        return len(DEFAULT_CONTEXTS)

    def _count(self) -> int:
        with self.database.get_session() as session:
            return session.query(ContextRow).count()

    async def delete_context(self, context_id: str) -> bool:
        try:
            deleted = await asyncio.to_thread(self._delete, context_id)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to delete context {context_id}: {e}") from e
        self._terms.pop(context_id, None)
        return deleted

    def _delete(self, context_id: str) -> bool:
        with self.database.get_session() as session:
            row = session.get(ContextRow, context_id)
            if row is None:
                return False
            session.delete(row)
        return True

    async def list_contexts(self, limit: int = 100) -> List[ContextRecord]:
        try:
            return await asyncio.to_thread(self._list, limit)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to list contexts: {e}") from e

    def _list(self, limit: int) -> List[ContextRecord]:
        with self.database.get_session() as session:
            rows = (
                session.query(ContextRow)
                .order_by(ContextRow.updated_at.desc())
                .limit(limit)
                .all()
            )
            return [row.to_record() for row in rows]

    async def stats(self) -> Dict[str, Any]:
        try:
            records = await asyncio.to_thread(self._load_all)
        except SQLAlchemyError as e:
            raise ContextStoreError(f"Failed to compute context stats: {e}") from e
        return {
            "total_contexts": len(records),
            "by_type": dict(Counter(record.metadata.type for record in records)),
            "by_priority": dict(Counter(record.metadata.priority.value for record in records)),
            "cached_terms": len(self._terms),
        }

    async def health_check(self) -> bool:
        try:
            return await asyncio.to_thread(self.database.ping)
        except SQLAlchemyError as e:
            logger.warning(f"Context store health check failed: {e}")
            return False

    def clear_cache(self) -> None:
        self._terms.clear()
        logger.info("Context term cache cleared")
