"""
Database Models for the Email Index and Context Store

Design Considerations:
- Email rows keyed by the email id so indexing is naturally idempotent
- First sender address denormalised into its own column for filtering
- Timestamps stored as naive UTC; conversion happens at the model boundary
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.orm import declarative_base

from onebox.models import (
    ContextMetadata,
    ContextPriority,
    ContextRecord,
    Email,
    EmailAddress,
    EmailCategory,
    utcnow,
)

Base = declarative_base()


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class EmailRecord(Base):
    """
    Indexed email row.

    Holds everything needed to rebuild the ``Email`` value plus the
    timestamp of first indexing.
    """
    __tablename__ = "emails"

    id = Column(String(255), primary_key=True)
    message_id = Column(String(998), nullable=True)
    subject = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    sender_address = Column(String(320), nullable=False, default="", index=True)
    senders = Column(JSON, nullable=False, default=list)
    recipients = Column(JSON, nullable=False, default=list)
    account = Column(String(255), nullable=False, index=True)
    folder = Column(String(255), nullable=False, default="INBOX")
    date = Column(DateTime, nullable=False, index=True)
    has_attachments = Column(Boolean, nullable=False, default=False)
    category = Column(String(50), nullable=True, index=True)
    indexed_at = Column(DateTime, nullable=False, default=lambda: to_db_time(utcnow()))

    @classmethod
    def from_email(cls, email: Email) -> "EmailRecord":
        return cls(
            id=email.id,
            message_id=email.message_id,
            subject=email.subject,
            body=email.body,
            sender_address=email.primary_sender.lower(),
            senders=[sender.to_dict() for sender in email.senders],
            recipients=[recipient.to_dict() for recipient in email.recipients],
            account=email.account,
            folder=email.folder,
            date=to_db_time(email.date),
            has_attachments=email.has_attachments,
            category=email.category.value if email.category else None,
        )

    def to_email(self) -> Email:
        return Email(
            id=self.id,
            message_id=self.message_id,
            subject=self.subject or "",
            body=self.body or "",
            senders=[EmailAddress(**sender) for sender in (self.senders or [])],
            recipients=[EmailAddress(**recipient) for recipient in (self.recipients or [])],
            account=self.account,
            folder=self.folder,
            date=from_db_time(self.date),
            has_attachments=bool(self.has_attachments),
            category=EmailCategory.parse(self.category),
        )


class ContextRow(Base):
    """Stored context record."""
    __tablename__ = "contexts"

    id = Column(String(300), primary_key=True)
    content = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, index=True)
    priority = Column(String(10), nullable=False, default=ContextPriority.MEDIUM.value)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_contexts_priority_updated", "priority", "updated_at"),
    )

    def to_record(self) -> ContextRecord:
        return ContextRecord(
            id=self.id,
            content=self.content,
            metadata=ContextMetadata(
                type=self.type,
                priority=ContextPriority(self.priority),
                tags=list(self.tags or []),
                created_at=from_db_time(self.created_at),
                updated_at=from_db_time(self.updated_at),
            ),
        )
