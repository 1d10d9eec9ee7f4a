"""
GroqCategorizer: Email Category Assignment

Assigns one of the five known categories to each email. Obvious cases are
decided by keyword rules; the rest go to the Groq-hosted model.

Design Considerations:
- Keyword rules and a content-hash cache avoid most model calls
- A daily quota bounds model usage; once spent, emails get the fallback label
- Categorization can be switched off at runtime (e.g. when rate limited)
- Unknown labels from the model map to the fallback label
- Model failures raise CategorizationError so the pipeline applies its fallback
"""

import asyncio
import hashlib
import logging
import re
import time
from collections import OrderedDict
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from onebox.categorization import prompts
from onebox.exceptions import CategorizationError, LLMRequestError
from onebox.integrations.groq.client import EnhancedGroqClient
from onebox.interfaces import Categorizer
from onebox.models import FALLBACK_CATEGORY, ContextRecord, Email, EmailCategory

logger = logging.getLogger(__name__)

CACHE_SIZE = 500
HEALTH_CHECK_INTERVAL_SECONDS = 600
MAX_BODY_CHARS = 1000


class GroqCategorizer(Categorizer):
    """
    Categorizer combining keyword rules with an LLM.

    Args:
        client: Retrying Groq client, or None for keyword-only operation
        enabled: Initial state of the categorization switch
        daily_quota: Maximum model calls per UTC day
        retry_attempts: Attempts per model call
    """

    def __init__(
        self,
        client: Optional[EnhancedGroqClient] = None,
        enabled: bool = True,
        daily_quota: int = 40,
        retry_attempts: int = 2
    ):
        self.client = client
        self.enabled = enabled
        self.daily_quota = daily_quota
        self.retry_attempts = retry_attempts

        self._cache: "OrderedDict[str, EmailCategory]" = OrderedDict()
        self._quota_date: date = self._today()
        self._quota_calls = 0
        self._last_health_check = 0.0
        self._health_cached = False

        logger.info(
            f"Categorizer initialized (llm={'on' if client else 'off'}, "
            f"enabled={enabled}, daily_quota={daily_quota})"
        )

    async def categorize(self, email: Email) -> EmailCategory:
        """
        Determine the category of an email.

        Args:
            email: Email to classify

        Returns:
            EmailCategory: Assigned label

        Raises:
            CategorizationError: When the model call fails after all retries
        """
        if not self.enabled:
            logger.debug("Categorization disabled, returning fallback category")
            return FALLBACK_CATEGORY

        cache_key = self._cache_key(email)
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._cache.move_to_end(cache_key)
            logger.debug(f"Using cached category for {email.id}: {cached.value}")
            return cached

        keyword_category = self.keyword_category(email)
        if keyword_category is not None:
            logger.debug(f"Keyword rule categorized {email.id} as {keyword_category.value}")
            self._remember(cache_key, keyword_category)
            return keyword_category

        if self.client is None:
            logger.debug(f"No LLM configured, using fallback category for {email.id}")
            return FALLBACK_CATEGORY

        if self.quota_exceeded():
            logger.warning("Daily quota exceeded, using fallback category")
            return FALLBACK_CATEGORY

        prompt = prompts.CATEGORIZATION_PROMPT.format(
            subject=email.subject or "(no subject)",
            body=self.sanitize_body(email.body),
        )
        messages = [
            {"role": "system", "content": prompts.CATEGORIZATION_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        start_time = datetime.now()
        try:
            self._use_quota()
            raw_label = await self.client.complete(
                messages,
                max_retries=self.retry_attempts,
                temperature=0.1,
                max_completion_tokens=10,
            )
        except LLMRequestError as e:
            logger.error(f"Failed to categorize email {email.id}: {e}")
            raise CategorizationError(f"Failed to categorize email {email.id}: {e}") from e

        processing_time = (datetime.now() - start_time).total_seconds()
        category = EmailCategory.parse(raw_label)
        if category is None:
            logger.warning(f"Model returned unknown label {raw_label!r} for {email.id}")
            category = FALLBACK_CATEGORY

        self._remember(cache_key, category)
        logger.info(
            f"Categorized email {email.id} as {category.value} "
            f"(processing time: {processing_time:.3f}s)"
        )
        return category

    def keyword_category(self, email: Email) -> Optional[EmailCategory]:
        """Apply the keyword rules; None means the model has to decide."""
        subject = (email.subject or "").lower()
        body = (email.body or "").lower()
        sender = email.primary_sender.lower()

        if any(k in subject or body.startswith(k) for k in prompts.OUT_OF_OFFICE_KEYWORDS):
            return EmailCategory.OUT_OF_OFFICE
        if any(k in subject or k in body for k in prompts.MEETING_KEYWORDS):
            return EmailCategory.MEETING_BOOKED
        if any(k in subject or k in body for k in prompts.NOT_INTERESTED_KEYWORDS):
            return EmailCategory.NOT_INTERESTED
        if any(k in subject or k in body or k in sender for k in prompts.SPAM_KEYWORDS):
            return EmailCategory.SPAM
        return None

    async def generate_reply_suggestion(
        self,
        email: Email,
        contexts: List[ContextRecord]
    ) -> Dict[str, Any]:
        """
        Draft a reply to an email using retrieved context.

        Args:
            email: Email being answered
            contexts: Relevant context records

        Returns:
            Dict with the suggested reply, a confidence score and the context ids used

        Raises:
            CategorizationError: When no model is configured, the quota is spent
                or the model call fails
        """
        if self.client is None:
            raise CategorizationError("Reply suggestions require a configured LLM")
        if self.quota_exceeded():
            raise CategorizationError("Daily quota exceeded")

        context_text = "\n".join(f"- {record.content}" for record in contexts)
        prompt = prompts.REPLY_PROMPT.format(
            subject=email.subject or "(no subject)",
            sender=", ".join(sender.address for sender in email.senders) or "Unknown Sender",
            body=self.sanitize_body(email.body),
            context=context_text or "No specific context available",
        )
        messages = [
            {"role": "system", "content": prompts.REPLY_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        try:
            self._use_quota()
            reply = await self.client.complete(messages, max_retries=self.retry_attempts, temperature=0.7)
        except LLMRequestError as e:
            raise CategorizationError(f"Failed to generate reply for {email.id}: {e}") from e

        return {
            "email_id": email.id,
            "suggested_reply": reply,
            "confidence": self.reply_confidence(reply, contexts),
            "context_used": [record.id for record in contexts],
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    @staticmethod
    def reply_confidence(reply: str, contexts: List[ContextRecord]) -> int:
        confidence = 50 + len(contexts) * 10
        if len(reply) > 100:
            confidence += 10
        if any(indicator in reply.lower() for indicator in prompts.REPLY_CONFIDENCE_INDICATORS):
            confidence += 15
        return min(confidence, 95)

    async def health_check(self) -> bool:
        """
        Report whether categorization can run as configured.

        Without a model the keyword rules are always available. With one,
        the model endpoint is checked at most every ten minutes.
        """
        if self.client is None:
            return True

        now = time.monotonic()
        if self._last_health_check and now - self._last_health_check < HEALTH_CHECK_INTERVAL_SECONDS:
            return self._health_cached

        try:
            await asyncio.to_thread(self.client.client.models.list)
            self._health_cached = True
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            self._health_cached = False
        self._last_health_check = now
        return self._health_cached

    def enable(self) -> None:
        self.enabled = True
        logger.info("AI categorization enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.warning("AI categorization disabled")

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Categorization cache cleared")

    def quota_status(self) -> Dict[str, Any]:
        self._reset_quota_if_needed()
        return {
            "calls": self._quota_calls,
            "limit": self.daily_quota,
            "date": self._quota_date.isoformat(),
        }

    def quota_exceeded(self) -> bool:
        self._reset_quota_if_needed()
        return self._quota_calls >= self.daily_quota

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "llm_configured": self.client is not None,
            "daily_quota": self.quota_status(),
            "cache_size": len(self._cache),
            "llm_metrics": self.client.get_performance_metrics() if self.client else {},
        }

    @staticmethod
    def sanitize_body(body: str) -> str:
        return re.sub(r"\s+", " ", body or "").strip()[:MAX_BODY_CHARS]

    @staticmethod
    def _cache_key(email: Email) -> str:
        content = f"{(email.subject or '').lower()} {(email.body or '').lower()}"
        return hashlib.md5(content.encode("utf-8")).hexdigest()

    def _remember(self, key: str, category: EmailCategory) -> None:
        self._cache[key] = category
        self._cache.move_to_end(key)
        while len(self._cache) > CACHE_SIZE:
            self._cache.popitem(last=False)

    @staticmethod
    def _today() -> date:
        return datetime.now(timezone.utc).date()

    def _reset_quota_if_needed(self) -> None:
        today = self._today()
        if today != self._quota_date:
            self._quota_date = today
            self._quota_calls = 0
            logger.info("Daily quota reset")

    def _use_quota(self) -> None:
        self._reset_quota_if_needed()
        self._quota_calls += 1
        logger.debug(f"Daily quota: {self._quota_calls}/{self.daily_quota}")
