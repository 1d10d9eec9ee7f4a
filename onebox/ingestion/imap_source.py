"""
IMAP Ingestion Source

Watches registered mail accounts by polling each INBOX for messages that
arrived since the last poll and publishes them on the event bus.

Design Considerations:
- imaplib is blocking, so every mailbox operation runs in a worker thread
  with a socket timeout
- Mailboxes are opened read-only and fetched with BODY.PEEK[], so the user's
  read state is never changed; new mail is tracked by UID
- One polling task per account; a failing account never affects another
- Registry inserts and removals are serialised by an asyncio.Lock that is
  never held across network I/O; status reads work on a snapshot copy
- Connection loss is reported as an event and retried after a delay
"""

import asyncio
import imaplib
import logging
import re
import ssl
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable, Dict, List, Optional, Set, Tuple

from onebox.events import ConnectionLost, ConnectionRestored, EmailReceived, EventBus
from onebox.exceptions import AccountRegistrationError
from onebox.ingestion.parser import parse_message
from onebox.interfaces import IngestionSource
from onebox.models import Account

logger = logging.getLogger(__name__)

FETCH_BATCH_LIMIT = 50
HISTORY_LIMIT = 50
DEFAULT_HISTORY_DAYS = 30
DEFAULT_TIMEOUT_SECONDS = 30.0

UIDNEXT_PATTERN = re.compile(rb"UIDNEXT (\d+)")
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def imap_date(value: datetime) -> str:
    """Format a date for SEARCH SINCE without depending on the process locale."""
    return f"{value.day}-{MONTHS[value.month - 1]}-{value.year}"


class ImapMailbox:
    """
    Blocking IMAP session for one account. Used from a single thread at a time.

    ``last_uid`` survives reconnects, so a dropped connection never causes
    already published messages to be published again.
    """

    def __init__(
        self,
        account: Account,
        password: str,
        folder: str = "INBOX",
        timeout: float = DEFAULT_TIMEOUT_SECONDS
    ):
        self.account = account
        self.password = password
        self.folder = folder
        self.timeout = timeout
        self.conn: Optional[imaplib.IMAP4] = None
        self.last_uid: Optional[int] = None

    def connect(self) -> None:
        if self.account.tls:
            conn = imaplib.IMAP4_SSL(
                self.account.host,
                self.account.port,
                ssl_context=ssl.create_default_context(),
                timeout=self.timeout
            )
        else:
            conn = imaplib.IMAP4(self.account.host, self.account.port, timeout=self.timeout)
        try:
            status, _ = conn.login(self.account.user, self.password)
            if status != "OK":
                raise imaplib.IMAP4.error(f"login failed: {status}")
            status, _ = conn.select(self.folder, readonly=True)
            if status != "OK":
                raise imaplib.IMAP4.error(f"select {self.folder} failed: {status}")
            if self.last_uid is None:
                self.last_uid = self._highest_uid(conn)
        except Exception:
            self._safe_logout(conn)
            raise
        self.conn = conn

    def fetch_history(self, days: int) -> List[Tuple[str, bytes]]:
        """
        Fetch recent messages that were already in the mailbox at connect time.

        Searches SINCE ``days`` ago and falls back to ALL when the server
        rejects the date search. At most the newest HISTORY_LIMIT are fetched.
        """
        since = imap_date(datetime.now(timezone.utc) - timedelta(days=days))
        try:
            uids = self._search("SINCE", since)
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error as e:
            logger.warning(f"SINCE search failed for {self.account.label}, falling back to ALL: {e}")
            uids = self._search("ALL")

        baseline = self.last_uid or 0
        recent = sorted(uid for uid in uids if uid <= baseline)[-HISTORY_LIMIT:]
        logger.info(f"History sync for {self.account.label}: {len(uids)} found, fetching {len(recent)}")
        return self._fetch(recent)

    def fetch_new(self) -> List[Tuple[str, bytes]]:
        """Fetch messages with a UID above the last one seen, oldest first."""
        if self.last_uid is None:
            self.last_uid = self._highest_uid(self._require_conn())
            return []

        uids = self._search("UID", f"{self.last_uid + 1}:*")
        # "N:*" always matches the newest message, even when its UID is below N
        new = sorted(uid for uid in uids if uid > self.last_uid)[:FETCH_BATCH_LIMIT]
        messages = self._fetch(new)
        if new:
            self.last_uid = new[-1]
        return messages

    def close(self) -> None:
        if self.conn is not None:
            self._safe_logout(self.conn)
            self.conn = None

    def _require_conn(self) -> imaplib.IMAP4:
        if self.conn is None:
            raise imaplib.IMAP4.abort("not connected")
        return self.conn

    def _search(self, *criteria: str) -> List[int]:
        status, data = self._require_conn().uid("SEARCH", None, *criteria)
        if status != "OK":
            raise imaplib.IMAP4.error(f"search {' '.join(criteria)} failed: {status}")
        return self._parse_uids(data)

    def _fetch(self, uids: List[int]) -> List[Tuple[str, bytes]]:
        conn = self._require_conn()
        messages: List[Tuple[str, bytes]] = []
        for uid in uids:
            status, msg_data = conn.uid("FETCH", str(uid), "(BODY.PEEK[])")
            if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
                logger.warning(f"Fetch of UID {uid} failed for {self.account.label}")
                continue
            messages.append((str(uid), msg_data[0][1]))
        return messages

    def _highest_uid(self, conn: imaplib.IMAP4) -> int:
        status, data = conn.status(self.folder, "(UIDNEXT)")
        if status == "OK" and data and data[0]:
            match = UIDNEXT_PATTERN.search(data[0])
            if match:
                return int(match.group(1)) - 1
        status, data = conn.uid("SEARCH", None, "ALL")
        if status != "OK":
            raise imaplib.IMAP4.error(f"search ALL failed: {status}")
        return max(self._parse_uids(data), default=0)

    @staticmethod
    def _parse_uids(data) -> List[int]:
        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    @staticmethod
    def _safe_logout(conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"Error during IMAP logout: {e}")


@dataclass
class _Watch:
    account: Account
    mailbox: ImapMailbox
    connected: bool = False
    task: Optional[asyncio.Task] = None


MailboxFactory = Callable[[Account, str], ImapMailbox]


class ImapIngestionSource(IngestionSource):
    """
    Polling IMAP ingestion source.

    Args:
        bus: Event bus receiving mail and connection events
        poll_interval: Seconds between polls of one account
        reconnect_delay: Seconds to wait before reconnecting a lost account
        timeout: Socket timeout for IMAP connect and commands
        history_days: Days of existing mail published when an account starts; 0 disables
        mailbox_factory: Builds the blocking mailbox for an account
    """

    def __init__(
        self,
        bus: EventBus,
        poll_interval: float = 30.0,
        reconnect_delay: float = 5.0,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        history_days: int = DEFAULT_HISTORY_DAYS,
        mailbox_factory: Optional[MailboxFactory] = None
    ):
        self.bus = bus
        self.poll_interval = poll_interval
        self.reconnect_delay = reconnect_delay
        self.history_days = history_days
        self.mailbox_factory = mailbox_factory or partial(ImapMailbox, timeout=timeout)
        self._watches: Dict[str, _Watch] = {}
        self._pending: Set[str] = set()
        self._closing = False
        self._lock = asyncio.Lock()

    async def register_account(self, account: Account, secret: str) -> None:
        """
        Connect to an account and start polling it.

        The account id is reserved under the registry lock, then the
        connection is made without holding it, so a slow host never delays
        other registrations.

        Raises:
            AccountRegistrationError: Duplicate id or failed initial connection
        """
        async with self._lock:
            if account.id in self._watches or account.id in self._pending:
                raise AccountRegistrationError(account.label, f"account id {account.id} already registered")
            self._pending.add(account.id)

        mailbox = self.mailbox_factory(account, secret)
        try:
            await asyncio.to_thread(mailbox.connect)
        except Exception as e:
            async with self._lock:
                self._pending.discard(account.id)
            raise AccountRegistrationError(account.label, str(e)) from e

        watch = _Watch(account=account, mailbox=mailbox, connected=True)
        async with self._lock:
            self._pending.discard(account.id)
            closing = self._closing
            if not closing:
                self._watches[account.id] = watch
                if account.is_active:
                    watch.task = asyncio.create_task(
                        self._poll(watch),
                        name=f"imap-poll:{account.id}"
                    )
                    watch.task.add_done_callback(partial(self._poll_finished, watch))

        if closing:
            await self._close_mailbox(watch)
            raise AccountRegistrationError(account.label, "ingestion source is shutting down")

        logger.info(f"Registered account {account.label} ({account.host}:{account.port})")

    async def remove_account(self, account_id: str) -> bool:
        async with self._lock:
            watch = self._watches.pop(account_id, None)
        if watch is None:
            return False
        await self._stop_watch(watch)
        logger.info(f"Removed account {watch.account.label}")
        return True

    def list_accounts(self) -> List[Account]:
        return [watch.account for watch in list(self._watches.values())]

    def connection_status(self) -> Dict[str, bool]:
        return {account_id: watch.connected for account_id, watch in list(self._watches.items())}

    async def health_check(self) -> bool:
        """True when every active account is connected, or none is registered."""
        watches = list(self._watches.values())
        return all(watch.connected for watch in watches if watch.account.is_active)

    async def shutdown(self) -> None:
        async with self._lock:
            self._closing = True
            watches = list(self._watches.values())
            self._watches.clear()
        await asyncio.gather(*(self._stop_watch(watch) for watch in watches))
        logger.info(f"Ingestion source shut down ({len(watches)} accounts)")

    async def _stop_watch(self, watch: _Watch) -> None:
        if watch.task is not None:
            watch.task.cancel()
            await asyncio.gather(watch.task, return_exceptions=True)
        await self._close_mailbox(watch)
        watch.connected = False

    async def _close_mailbox(self, watch: _Watch) -> None:
        try:
            await asyncio.to_thread(watch.mailbox.close)
        except Exception as e:
            logger.debug(f"Error closing mailbox for {watch.account.label}: {e}")

    async def _connection_lost(self, watch: _Watch, error: Exception) -> None:
        watch.connected = False
        await self._close_mailbox(watch)
        logger.warning(f"⚠ Connection lost for {watch.account.label}: {error}")
        self.bus.publish(ConnectionLost(account_id=watch.account.id, reason=str(error)))

    def _poll_finished(self, watch: _Watch, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        watch.connected = False
        logger.error(f"❌ Polling stopped for {watch.account.label}: {error}", exc_info=error)
        self.bus.publish(ConnectionLost(account_id=watch.account.id, reason=str(error)))

    def _publish(self, account: Account, messages: List[Tuple[str, bytes]]) -> None:
        for uid, raw in messages:
            try:
                email = parse_message(raw, account_id=account.id, uid=uid)
            except Exception as e:
                logger.warning(f"Failed to parse message {uid} for {account.label}: {e}")
                continue
            logger.debug(f"New email {email.id} on {account.label}: {email.subject}")
            self.bus.publish(EmailReceived(email=email))

    async def _sync_history(self, watch: _Watch) -> None:
        account = watch.account
        try:
            messages = await asyncio.to_thread(watch.mailbox.fetch_history, self.history_days)
        except Exception as e:
            logger.warning(f"History sync failed for {account.label}: {e}")
            return
        self._publish(account, messages)
        logger.info(f"History sync complete for {account.label}: {len(messages)} emails")

    async def _poll(self, watch: _Watch) -> None:
        account = watch.account
        if self.history_days > 0:
            await self._sync_history(watch)

        while True:
            if not watch.connected:
                try:
                    await asyncio.to_thread(watch.mailbox.connect)
                except Exception as e:
                    logger.warning(f"Reconnect failed for {account.label}: {e}")
                    await asyncio.sleep(self.reconnect_delay)
                    continue
                watch.connected = True
                logger.info(f"✓ Connection restored for {account.label}")
                self.bus.publish(ConnectionRestored(account_id=account.id))

            try:
                messages = await asyncio.to_thread(watch.mailbox.fetch_new)
            except Exception as e:
                await self._connection_lost(watch, e)
                await asyncio.sleep(self.reconnect_delay)
                continue

            self._publish(account, messages)
            await asyncio.sleep(self.poll_interval)
