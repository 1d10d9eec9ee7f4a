"""
Shared data models for the email onebox pipeline.

Design Considerations:
- Email values are immutable; the pipeline carries the category forward by
  producing a new value instead of mutating a shared object
- Context records derive their identifier from the email identifier so
  re-processing the same email overwrites rather than duplicates
- Plain dataclasses at the core, pydantic only at the API boundary
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EmailCategory(str, Enum):
    """Labels the categorizer may assign to an email."""
    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EmailCategory"]:
        """Return the matching category, or None for unknown labels."""
        if value is None:
            return None
        if isinstance(value, EmailCategory):
            return value
        cleaned = str(value).strip().strip('."\'').lower()
        for category in cls:
            if category.value.lower() == cleaned:
                return category
        return None


# Applied whenever categorization fails or yields an unknown label
FALLBACK_CATEGORY = EmailCategory.SPAM

# The only category that triggers notifications and high context priority
PRIORITY_CATEGORY = EmailCategory.INTERESTED


class ContextPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EmailAddress:
    address: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"address": self.address, "name": self.name}

    def __str__(self) -> str:
        return f"{self.name} <{self.address}>" if self.name else self.address


@dataclass(frozen=True)
class Email:
    """
    A single inbound email, the unit of work for the pipeline.

    Created by the ingestion source on arrival. ``category`` starts unset and
    is carried forward through ``with_category`` as the pipeline progresses.
    """
    id: str
    subject: str
    body: str
    senders: List[EmailAddress]
    account: str
    folder: str = "INBOX"
    date: datetime = field(default_factory=utcnow)
    has_attachments: bool = False
    recipients: List[EmailAddress] = field(default_factory=list)
    message_id: Optional[str] = None
    category: Optional[EmailCategory] = None

    @property
    def primary_sender(self) -> str:
        """Address of the first sender, or an empty string."""
        return self.senders[0].address if self.senders else ""

    def with_category(self, category: EmailCategory) -> "Email":
        return replace(self, category=category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "subject": self.subject,
            "body": self.body,
            "from": [sender.to_dict() for sender in self.senders],
            "to": [recipient.to_dict() for recipient in self.recipients],
            "account": self.account,
            "folder": self.folder,
            "date": self.date.isoformat(),
            "has_attachments": self.has_attachments,
            "category": self.category.value if self.category else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Email":
        date = data.get("date")
        if isinstance(date, str):
            date = datetime.fromisoformat(date)
        return cls(
            id=data["id"],
            message_id=data.get("message_id"),
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            senders=[EmailAddress(**sender) for sender in data.get("from", [])],
            recipients=[EmailAddress(**recipient) for recipient in data.get("to", [])],
            account=data.get("account", ""),
            folder=data.get("folder", "INBOX"),
            date=date or utcnow(),
            has_attachments=bool(data.get("has_attachments", False)),
            category=EmailCategory.parse(data.get("category")),
        )


@dataclass(frozen=True)
class AccountDescriptor:
    """An account as configured, before provisioning normalises it."""
    user: str
    host: str
    port: Optional[int] = None
    label: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class Account:
    """
    A registered mail account.

    The password never lives on this object; the ingestion source keeps it
    separately, keyed by ``id``.
    """
    id: str
    label: str
    user: str
    host: str
    port: int = 993
    tls: bool = True
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "user": self.user,
            "host": self.host,
            "port": self.port,
            "tls": self.tls,
            "is_active": self.is_active,
        }


@dataclass
class ContextMetadata:
    type: str
    priority: ContextPriority = ContextPriority.MEDIUM
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ContextRecord:
    """A retrieval-oriented artifact kept in the context store."""
    id: str
    content: str
    metadata: ContextMetadata

    @classmethod
    def for_email(cls, email: Email, category: EmailCategory) -> "ContextRecord":
        """
        Build the context record for a processed email.

        The identifier is derived from the email identifier so storing the
        same email twice is an overwrite at the storage layer.
        """
        priority = (
            ContextPriority.HIGH if category == PRIORITY_CATEGORY else ContextPriority.MEDIUM
        )
        now = utcnow()
        return cls(
            id=f"email-{email.id}",
            content=f"Subject: {email.subject}\nFrom: {email.primary_sender}\nBody: {email.body}",
            metadata=ContextMetadata(
                type="email",
                priority=priority,
                tags=[category.value, email.account, "processed"],
                created_at=now,
                updated_at=now,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": {
                "type": self.metadata.type,
                "priority": self.metadata.priority.value,
                "tags": list(self.metadata.tags),
                "created_at": self.metadata.created_at.isoformat(),
                "updated_at": self.metadata.updated_at.isoformat(),
            },
        }


@dataclass(frozen=True)
class NotificationResult:
    slack: bool = False
    webhook: bool = False

    @property
    def sent(self) -> bool:
        return self.slack or self.webhook

    def to_dict(self) -> Dict[str, bool]:
        return {"slack": self.slack, "webhook": self.webhook}


@dataclass
class PipelineOutcome:
    """Per-email result bundle used for telemetry; not authoritative state."""
    email_id: str
    category: EmailCategory
    indexed: bool = False
    context_stored: bool = False
    notified: bool = False
    duration_ms: float = 0.0
    fallback_used: bool = False
    dropped: bool = False


@dataclass
class EmailSearchQuery:
    query: Optional[str] = None
    account: Optional[str] = None
    folder: Optional[str] = None
    category: Optional[EmailCategory] = None
    sender: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    has_attachments: Optional[bool] = None
    page: int = 1
    limit: int = 20
    sort_by: str = "date"
    sort_order: str = "desc"


@dataclass
class PagedResult:
    data: List[Email]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [email.to_dict() for email in self.data],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "total_pages": self.total_pages,
            },
        }


@dataclass
class HealthReport:
    services: Dict[str, bool]
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        return all(self.services.values())

    @property
    def status(self) -> str:
        return "ok" if self.healthy else "degraded"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "healthy": self.healthy,
            "services": dict(self.services),
            "timestamp": self.timestamp.isoformat(),
        }
