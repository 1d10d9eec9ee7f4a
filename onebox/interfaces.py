"""
Collaborator contracts for the pipeline.

Each base class defines the methods the orchestrator, provisioner and
aggregators rely on. Concrete adapters live in their own packages and can be
replaced independently (tests substitute ``AsyncMock(spec=...)`` stubs).
"""

from typing import Any, Dict, List, Optional

from onebox.models import (
    Account,
    ContextRecord,
    Email,
    EmailCategory,
    EmailSearchQuery,
    NotificationResult,
    PagedResult,
)


class Categorizer:
    """Assigns one of the known categories to an email."""

    async def categorize(self, email: Email) -> EmailCategory:
        """
        Determine the category of an email.

        Args:
            email: Email to classify

        Returns:
            EmailCategory: The assigned label

        Raises:
            CategorizationError: When no label could be determined
        """
        raise NotImplementedError("Must implement categorize")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")

    def stats(self) -> Dict[str, Any]:
        return {}


class EmailIndexer:
    """Search index over processed emails."""

    async def index_email(self, email: Email) -> bool:
        """
        Index an email.

        Returns:
            bool: True only when the email was not previously indexed
        """
        raise NotImplementedError("Must implement index_email")

    async def update_category(self, email_id: str, category: EmailCategory) -> None:
        raise NotImplementedError("Must implement update_category")

    async def get_by_id(self, email_id: str) -> Optional[Email]:
        raise NotImplementedError("Must implement get_by_id")

    async def search(self, query: EmailSearchQuery) -> PagedResult:
        raise NotImplementedError("Must implement search")

    async def stats(self) -> Dict[str, Any]:
        raise NotImplementedError("Must implement stats")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")


class ContextStore:
    """Long-term store of retrieval context records."""

    async def store_context(self, record: ContextRecord) -> None:
        """Insert or overwrite a record keyed by its id."""
        raise NotImplementedError("Must implement store_context")

    async def get_relevant_contexts(self, text: str, limit: int = 5) -> List[ContextRecord]:
        raise NotImplementedError("Must implement get_relevant_contexts")

    async def add_context(
        self,
        content: str,
        context_type: str,
        priority: str = "medium",
        tags: Optional[List[str]] = None
    ) -> ContextRecord:
        raise NotImplementedError("Must implement add_context")

    async def get_context(self, context_id: str) -> Optional[ContextRecord]:
        raise NotImplementedError("Must implement get_context")

    async def update_context(
        self,
        context_id: str,
        content: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> Optional[ContextRecord]:
        """Merge changes into an existing record; None when it does not exist."""
        raise NotImplementedError("Must implement update_context")

    async def seed_default_contexts(self) -> int:
        """Store the starter contexts when the store is empty; returns how many were added."""
        raise NotImplementedError("Must implement seed_default_contexts")

    async def delete_context(self, context_id: str) -> bool:
        raise NotImplementedError("Must implement delete_context")

    async def list_contexts(self, limit: int = 100) -> List[ContextRecord]:
        raise NotImplementedError("Must implement list_contexts")

    async def stats(self) -> Dict[str, Any]:
        raise NotImplementedError("Must implement stats")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")

    def clear_cache(self) -> None:
        raise NotImplementedError("Must implement clear_cache")


class Notifier:
    """Delivers alerts for high-priority emails."""

    async def notify(self, email: Email, category: EmailCategory) -> NotificationResult:
        raise NotImplementedError("Must implement notify")

    async def send_test(self) -> NotificationResult:
        raise NotImplementedError("Must implement send_test")

    def stats(self) -> Dict[str, Any]:
        raise NotImplementedError("Must implement stats")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")

    def reset_circuit_breakers(self) -> None:
        raise NotImplementedError("Must implement reset_circuit_breakers")


class IngestionSource:
    """
    Owns the account registry and emits mail and connection events.

    Implementations publish ``EmailReceived``, ``ConnectionLost`` and
    ``ConnectionRestored`` on the event bus they were constructed with.
    """

    async def register_account(self, account: Account, secret: str) -> None:
        """
        Add an account and begin watching it.

        Raises:
            AccountRegistrationError: If the account cannot be registered
        """
        raise NotImplementedError("Must implement register_account")

    async def remove_account(self, account_id: str) -> bool:
        raise NotImplementedError("Must implement remove_account")

    def list_accounts(self) -> List[Account]:
        raise NotImplementedError("Must implement list_accounts")

    def connection_status(self) -> Dict[str, bool]:
        raise NotImplementedError("Must implement connection_status")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")

    async def shutdown(self) -> None:
        raise NotImplementedError("Must implement shutdown")


class ChatBackend:
    """Conversational assistant over the indexed mail."""

    async def chat(
        self,
        message: str,
        session_id: Optional[str] = None,
        email_ids: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        raise NotImplementedError("Must implement chat")

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError("Must implement get_session")

    def get_sessions(self, limit: int = 10) -> List[Dict[str, Any]]:
        raise NotImplementedError("Must implement get_sessions")

    def delete_session(self, session_id: str) -> bool:
        raise NotImplementedError("Must implement delete_session")

    def cleanup_old_sessions(self, max_age_hours: Optional[float] = None) -> int:
        raise NotImplementedError("Must implement cleanup_old_sessions")

    def stats(self) -> Dict[str, Any]:
        raise NotImplementedError("Must implement stats")

    async def health_check(self) -> bool:
        raise NotImplementedError("Must implement health_check")
