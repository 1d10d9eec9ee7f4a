"""
Chat Service

Conversational assistant over the indexed mail. Sessions are kept in memory
and expire after a configurable idle period.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from onebox.exceptions import ConfigurationError, IndexingError
from onebox.integrations.groq.client import EnhancedGroqClient
from onebox.interfaces import ChatBackend, EmailIndexer
from onebox.models import Email, utcnow

logger = logging.getLogger(__name__)

MAX_SUGGESTED_ACTIONS = 4
CONTEXT_BODY_CHARS = 500

BASE_INSTRUCTION = """
You are an intelligent email assistant helping users understand and manage their emails. You have access to the user's email data and can help them:
1. Analyze email content and sentiment
2. Summarize email conversations
3. Suggest appropriate responses
4. Categorize and organize emails
5. Extract important information from emails
6. Answer questions about email content

Be helpful, concise, and professional. If you're unsure about something, say so rather than guessing.
""".strip()


@dataclass
class ChatMessage:
    role: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    email_context: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "email_context": list(self.email_context),
        }


@dataclass
class ChatSession:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[ChatMessage] = field(default_factory=list)
    email_context: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messages": [message.to_dict() for message in self.messages],
            "email_context": list(self.email_context),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ChatService(ChatBackend):
    """
    In-memory chat sessions backed by a Groq completion model.

    Args:
        client: Retrying Groq client, or None when chat is not configured
        indexer: Email index used to resolve referenced emails
        max_age_hours: Idle sessions older than this are removed by cleanup
    """

    def __init__(
        self,
        client: Optional[EnhancedGroqClient],
        indexer: EmailIndexer,
        max_age_hours: float = 24.0
    ):
        self.client = client
        self.indexer = indexer
        self.max_age_hours = max_age_hours
        self.sessions: Dict[str, ChatSession] = {}
        logger.info(f"Chat service initialized (llm={'on' if client else 'off'})")

    async def chat(
        self,
        message: str,
        session_id: Optional[str] = None,
        email_ids: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Answer a user message, creating a session when needed.

        Args:
            message: User message
            session_id: Existing session to continue; unknown ids start a new one
            email_ids: Indexed emails to include as context

        Returns:
            Dict with ``session_id``, the assistant ``message`` and ``suggested_actions``

        Raises:
            ConfigurationError: When no model is configured
            LLMRequestError: When the model call fails
        """
        if self.client is None:
            raise ConfigurationError("Chat requires GROQ_API_KEY")

        email_ids = list(email_ids or [])
        session = self.sessions.get(session_id) if session_id else None
        if session is None:
            session = ChatSession(email_context=email_ids)
            self.sessions[session.id] = session
            logger.info(f"Created new chat session: {session.id}")

        session.messages.append(ChatMessage(role="user", content=message, email_context=email_ids))

        email_context = await self._email_context(email_ids) if email_ids else ""
        instruction = BASE_INSTRUCTION
        if email_context:
            instruction = f"{BASE_INSTRUCTION}\n\nEmail Context:\n{email_context}"

        history = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in session.messages
        ]
        reply = await self.client.complete(
            [{"role": "system", "content": instruction}, *history],
            max_retries=2,
            temperature=0.7,
        )

        assistant_message = ChatMessage(
            role="assistant",
            content=reply or "I apologize, but I couldn't generate a response.",
            email_context=email_ids,
        )
        session.messages.append(assistant_message)
        session.updated_at = utcnow()

        return {
            "session_id": session.id,
            "message": assistant_message.to_dict(),
            "suggested_actions": self.suggested_actions(assistant_message.content, email_ids),
        }

    async def _email_context(self, email_ids: List[str]) -> str:
        emails: List[Email] = []
        for email_id in email_ids:
            try:
                email = await self.indexer.get_by_id(email_id)
            except IndexingError as e:
                logger.error(f"Failed to load email {email_id} for chat context: {e}")
                continue
            if email is not None:
                emails.append(email)

        if not emails:
            return "No email context provided."

        blocks = []
        for email in emails:
            body = email.body[:CONTEXT_BODY_CHARS]
            if len(email.body) > CONTEXT_BODY_CHARS:
                body += "..."
            blocks.append(
                f"Email ID: {email.id}\n"
                f"From: {', '.join(str(sender) for sender in email.senders)}\n"
                f"To: {', '.join(str(recipient) for recipient in email.recipients)}\n"
                f"Subject: {email.subject}\n"
                f"Date: {email.date.isoformat()}\n"
                f"Category: {email.category.value if email.category else 'Uncategorized'}\n"
                f"Body: {body}"
            )
        return "\n\n---\n\n".join(blocks)

    @staticmethod
    def suggested_actions(reply: str, email_ids: List[str]) -> List[str]:
        content = reply.lower()
        actions: List[str] = []
        if "reply" in content or "respond" in content:
            actions.append("Generate reply")
        if "meeting" in content or "schedule" in content:
            actions.append("Schedule meeting")
        if "important" in content or "urgent" in content:
            actions.append("Mark as important")
        if "spam" in content or "delete" in content:
            actions.append("Move to spam")
        if email_ids:
            actions.extend(["View email details", "Search similar emails"])
        if not actions:
            actions = ["Ask another question", "View email list"]
        return actions[:MAX_SUGGESTED_ACTIONS]

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        return session.to_dict() if session else None

    def get_sessions(self, limit: int = 10) -> List[Dict[str, Any]]:
        ordered = sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)
        return [session.to_dict() for session in ordered[:limit]]

    def delete_session(self, session_id: str) -> bool:
        deleted = self.sessions.pop(session_id, None) is not None
        if deleted:
            logger.info(f"Deleted chat session: {session_id}")
        return deleted

    def cleanup_old_sessions(self, max_age_hours: Optional[float] = None) -> int:
        hours = self.max_age_hours if max_age_hours is None else max_age_hours
        cutoff = utcnow() - timedelta(hours=hours)
        expired = [sid for sid, session in self.sessions.items() if session.updated_at < cutoff]
        for session_id in expired:
            del self.sessions[session_id]
        if expired:
            logger.info(f"Cleaned up {len(expired)} old chat sessions")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        total_sessions = len(self.sessions)
        total_messages = sum(len(session.messages) for session in self.sessions.values())
        return {
            "total_sessions": total_sessions,
            "total_messages": total_messages,
            "average_messages_per_session": (
                round(total_messages / total_sessions, 2) if total_sessions else 0
            ),
        }

    async def health_check(self) -> bool:
        """Chat without a configured model is disabled rather than unhealthy."""
        if self.client is None:
            return True
        try:
            await asyncio.to_thread(self.client.client.models.list)
            return True
        except Exception as e:
            logger.error(f"Chat service health check failed: {e}")
            return False
