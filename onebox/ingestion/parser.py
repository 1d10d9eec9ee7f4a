"""Conversion of raw RFC 822 messages into ``Email`` values."""

import hashlib
import logging
from datetime import timezone
from email import message_from_bytes
from email.header import decode_header, make_header
from email.message import Message
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from onebox.models import Email, EmailAddress, utcnow

logger = logging.getLogger(__name__)


def email_id_for(account_id: str, message_id: Optional[str], uid: str) -> str:
    """Stable id: the same message in the same account always maps to one id."""
    key = f"{account_id}|{message_id or uid}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:24]


def decode_header_value(raw_value: Optional[str]) -> str:
    if not raw_value:
        return ""
    try:
        return str(make_header(decode_header(raw_value))).strip()
    except (UnicodeDecodeError, LookupError, ValueError):
        decoded: List[str] = []
        for text, _ in decode_header(raw_value):
            if isinstance(text, bytes):
                decoded.append(text.decode("utf-8", errors="ignore"))
            else:
                decoded.append(text)
        return "".join(decoded).strip()


def parse_addresses(raw_value: Optional[str]) -> List[EmailAddress]:
    return [
        EmailAddress(address=address.lower(), name=decode_header_value(name) or None)
        for name, address in getaddresses([raw_value or ""])
        if address
    ]


def clean_html(content: str) -> str:
    """Reduce an HTML body to readable text, dropping script and style blocks."""
    soup = BeautifulSoup(content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()

    lines = (line.strip() for line in soup.get_text().splitlines())
    chunks = (phrase.strip() for line in lines for phrase in line.split("  "))
    return " ".join(chunk for chunk in chunks if chunk)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="ignore")
    except LookupError:
        return payload.decode("utf-8", errors="ignore")


def extract_body(msg: Message) -> Tuple[str, bool]:
    """Return (text body, has attachments). HTML is used only when no plain text exists."""
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    has_attachments = False

    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        if part.is_multipart():
            continue
        content_type = part.get_content_type()
        disposition = (part.get("Content-Disposition") or "").lower()
        if "attachment" in disposition or part.get_filename():
            has_attachments = True
        elif content_type == "text/plain" and text_body is None:
            text_body = _decode_part(part)
        elif content_type == "text/html" and html_body is None:
            html_body = _decode_part(part)

    if text_body is None and html_body is not None:
        text_body = clean_html(html_body)
    return (text_body or "").strip(), has_attachments


def parse_message(raw: bytes, account_id: str, uid: str, folder: str = "INBOX") -> Email:
    """
    Build an Email from raw message bytes.

    Args:
        raw: Full RFC 822 message
        account_id: Owning account id
        uid: Server-side message identifier, used when Message-ID is missing
        folder: Mailbox the message was read from

    Returns:
        Email with no category assigned
    """
    msg = message_from_bytes(raw)
    message_id = (msg.get("Message-ID") or "").strip() or None

    date = utcnow()
    raw_date = msg.get("Date")
    if raw_date:
        try:
            parsed = parsedate_to_datetime(raw_date)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            date = parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header {raw_date!r} on message {uid}")

    body, has_attachments = extract_body(msg)
    return Email(
        id=email_id_for(account_id, message_id, uid),
        message_id=message_id,
        subject=decode_header_value(msg.get("Subject")),
        body=body,
        senders=parse_addresses(msg.get("From")),
        recipients=parse_addresses(msg.get("To")),
        account=account_id,
        folder=folder,
        date=date,
        has_attachments=has_attachments,
    )
