"""
Notification Service

Sends alerts for high-priority emails to Slack (``chat.postMessage``) and to
a generic webhook. Each channel has its own circuit breaker so a failing
endpoint is skipped for a while instead of being hammered.

Design Considerations:
- Channels are delivered concurrently and independently
- Webhook delivery retries with exponential backoff before counting a failure
- Channel failures are logged and reported in the result, never raised
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from onebox.exceptions import NotificationError
from onebox.interfaces import Notifier
from onebox.models import (
    PRIORITY_CATEGORY,
    Email,
    EmailAddress,
    EmailCategory,
    NotificationResult,
)
from onebox.notifications.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"
USER_AGENT = "EmailOnebox-NotificationService/1.0"
WEBHOOK_BODY_LIMIT = 1000
SLACK_PREVIEW_LIMIT = 500


class NotificationService(Notifier):
    """
    Slack and webhook notifier.

    Args:
        slack_token: Slack bot token; Slack is disabled without one
        slack_channel: Channel receiving the messages
        slack_enabled: Slack switch
        webhook_url: Webhook endpoint; webhooks are disabled without one
        webhook_enabled: Webhook switch
        webhook_retry_attempts: Delivery attempts per webhook notification
        webhook_timeout: Per-request timeout in seconds
        backoff_base: Base of the exponential wait between webhook attempts
        breaker_threshold: Failures before a channel's breaker opens
        breaker_timeout: Seconds a breaker stays open
    """

    def __init__(
        self,
        slack_token: str = "",
        slack_channel: str = "#general",
        slack_enabled: bool = True,
        webhook_url: str = "",
        webhook_enabled: bool = True,
        webhook_retry_attempts: int = 3,
        webhook_timeout: float = 5.0,
        backoff_base: float = 2.0,
        breaker_threshold: int = 5,
        breaker_timeout: float = 60.0
    ):
        self.slack_token = slack_token
        self.slack_channel = slack_channel
        self.slack_enabled = slack_enabled and bool(slack_token)
        self.webhook_url = webhook_url
        self.webhook_enabled = webhook_enabled and bool(webhook_url)
        self.webhook_retry_attempts = webhook_retry_attempts
        self.webhook_timeout = webhook_timeout
        self.backoff_base = backoff_base

        self.breakers = {
            "slack": CircuitBreaker("slack", breaker_threshold, breaker_timeout),
            "webhook": CircuitBreaker("webhook", breaker_threshold, breaker_timeout),
        }
        self.counters = {
            "slack": {"sent": 0, "failed": 0, "skipped": 0},
            "webhook": {"sent": 0, "failed": 0, "skipped": 0},
        }

        logger.info(
            f"Notification service initialized "
            f"(slack={self.slack_enabled}, webhook={self.webhook_enabled})"
        )

    async def notify(self, email: Email, category: EmailCategory) -> NotificationResult:
        """
        Notify every enabled channel about an email.

        Only the priority category produces notifications; any other category
        returns an empty result.

        Args:
            email: Email to announce
            category: Category assigned by the pipeline

        Returns:
            NotificationResult: Per-channel delivery flags
        """
        if category != PRIORITY_CATEGORY:
            logger.debug(f"Skipping notification for category: {category.value}")
            return NotificationResult()

        logger.info(f"Sending notifications for email {email.id}")
        slack_sent, webhook_sent = await asyncio.gather(
            self.send_slack(email, category),
            self.send_webhook(email, category),
        )
        return NotificationResult(slack=slack_sent, webhook=webhook_sent)

    async def send_slack(self, email: Email, category: EmailCategory) -> bool:
        if not self.slack_enabled:
            return False
        breaker = self.breakers["slack"]
        if not breaker.allow_request():
            logger.warning("Slack circuit breaker is open, skipping notification")
            self.counters["slack"]["skipped"] += 1
            return False

        payload = {
            "channel": self.slack_channel,
            "blocks": self.build_slack_blocks(email, category),
            "text": f"New {category.value} email from {email.primary_sender}",
            "unfurl_links": False,
            "unfurl_media": False,
        }
        try:
            await self._post_slack("chat.postMessage", payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, NotificationError) as e:
            logger.error(f"Failed to send Slack notification for {email.id}: {e}")
            breaker.record_failure()
            self.counters["slack"]["failed"] += 1
            return False

        breaker.record_success()
        self.counters["slack"]["sent"] += 1
        logger.info(f"Slack notification sent for {email.id}")
        return True

    async def send_webhook(self, email: Email, category: EmailCategory) -> bool:
        if not self.webhook_enabled:
            return False
        breaker = self.breakers["webhook"]
        if not breaker.allow_request():
            logger.warning("Webhook circuit breaker is open, skipping notification")
            self.counters["webhook"]["skipped"] += 1
            return False

        payload = self.build_webhook_payload(email, category)
        for attempt in range(1, self.webhook_retry_attempts + 1):
            try:
                await self._post_webhook(payload)
                breaker.record_success()
                self.counters["webhook"]["sent"] += 1
                logger.info(f"Webhook notification sent for {email.id}")
                return True
            except (aiohttp.ClientError, asyncio.TimeoutError, NotificationError) as e:
                logger.error(
                    f"Webhook attempt {attempt}/{self.webhook_retry_attempts} failed for {email.id}: {e}"
                )
                if attempt < self.webhook_retry_attempts:
                    await asyncio.sleep(self.backoff_base ** attempt)

        breaker.record_failure()
        self.counters["webhook"]["failed"] += 1
        return False

    async def send_test(self) -> NotificationResult:
        """Send a synthetic Interested email through every enabled channel."""
        logger.info("Sending test notifications")
        test_email = Email(
            id="test-email-id",
            message_id="test-message-id",
            subject="Test Notification - Email Onebox System",
            body="This is a test notification to verify the email onebox notification system is working correctly.",
            senders=[EmailAddress("test@example.com", "Test Sender")],
            recipients=[EmailAddress("recipient@example.com", "Test Recipient")],
            account="Test Account",
        )
        result = await self.notify(test_email, PRIORITY_CATEGORY)
        logger.info(f"Test notifications completed: slack={result.slack}, webhook={result.webhook}")
        return result

    def stats(self) -> Dict[str, Any]:
        return {
            "slack": {
                "enabled": self.slack_enabled,
                "circuit_breaker": self.breakers["slack"].to_dict(),
                **self.counters["slack"],
            },
            "webhook": {
                "enabled": self.webhook_enabled,
                "circuit_breaker": self.breakers["webhook"].to_dict(),
                **self.counters["webhook"],
            },
        }

    async def health_check(self) -> bool:
        """
        True when every enabled channel is reachable.

        With no channel enabled there is nothing to be unhealthy about.
        """
        checks = []
        if self.slack_enabled:
            checks.append(self._check_slack())
        if self.webhook_enabled:
            checks.append(self._check_webhook())
        if not checks:
            return True
        results = await asyncio.gather(*checks)
        return all(results)

    def reset_circuit_breakers(self) -> None:
        for breaker in self.breakers.values():
            breaker.reset()
        logger.info("All circuit breakers reset")

    def build_slack_blocks(self, email: Email, category: EmailCategory) -> List[Dict[str, Any]]:
        sender = email.senders[0] if email.senders else EmailAddress("Unknown")
        preview = email.body[:SLACK_PREVIEW_LIMIT]
        if len(email.body) > SLACK_PREVIEW_LIMIT:
            preview += "..."

        blocks: List[Dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{category.value} Email Received"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*From:* {sender.name or sender.address} <{sender.address}>"},
                    {"type": "mrkdwn", "text": f"*Account:* {email.account}"},
                    {"type": "mrkdwn", "text": f"*Subject:* {email.subject}"},
                    {"type": "mrkdwn", "text": f"*Date:* {email.date.isoformat()}"},
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Email Preview:*\n{preview}"},
            },
        ]
        if email.has_attachments:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*Attachments:* yes"},
            })
        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": f"Email ID: {email.id} | Message ID: {email.message_id or '-'}",
            }],
        })
        return blocks

    @staticmethod
    def build_webhook_payload(email: Email, category: EmailCategory) -> Dict[str, Any]:
        email_data = email.to_dict()
        email_data["body"] = email.body[:WEBHOOK_BODY_LIMIT]
        return {
            "email": email_data,
            "category": category.value,
            "account": email.account,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "new_interested_email",
        }

    async def _post_slack(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.slack_token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        timeout = aiohttp.ClientTimeout(total=self.webhook_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(f"{SLACK_API_URL}/{method}", json=payload, headers=headers) as response:
                if response.status != 200:
                    raise NotificationError(f"Slack HTTP {response.status}")
                data = await response.json()
        if not data.get("ok"):
            raise NotificationError(f"Slack API error: {data.get('error')}")
        return data

    async def _post_webhook(self, payload: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        timeout = aiohttp.ClientTimeout(total=self.webhook_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.webhook_url, json=payload, headers=headers) as response:
                if not 200 <= response.status < 300:
                    raise NotificationError(f"Webhook HTTP {response.status}")

    async def _check_slack(self) -> bool:
        try:
            await self._post_slack("auth.test", {})
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError, NotificationError) as e:
            logger.debug(f"Slack health check failed: {e}")
            return False

    async def _check_webhook(self) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.webhook_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.head(self.webhook_url) as response:
                    return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Webhook health check failed: {e}")
            return False
