"""
Email thread grouping

Thread key precedence, first match wins:
1. provider thread id
2. In-Reply-To
3. provider message id
4. base64(normalized subject : sender : message id), truncated to 32 chars
"""
import base64
import re
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel

from app.services.sources.email import EmailMessage

_REPLY_PREFIX_RE = re.compile(r"^(re|fwd|fw)\s*:?\s+|^(re|fwd|fw):\s*", re.IGNORECASE)

THREAD_KEY_LENGTH = 32


class EmailThread(BaseModel):
    thread_id: str
    subject: str
    emails: List[EmailMessage]
    last_received_at: datetime
    unread_count: int


def display_subject(subject: str) -> str:
    """Strip leading Re:/Fwd: markers until none remain, keeping the original casing."""
    current = (subject or "").strip()
    while True:
        stripped = _REPLY_PREFIX_RE.sub("", current, count=1).strip()
        if stripped == current:
            return current
        current = stripped


def normalize_subject(subject: str) -> str:
    """Grouping form of a subject: prefixes stripped, lower-cased."""
    return display_subject(subject).lower()


def thread_key(message: EmailMessage) -> str:
    if message.thread_id:
        return message.thread_id
    if message.in_reply_to:
        return message.in_reply_to
    if message.message_id:
        return message.message_id

    composite = f"{normalize_subject(message.subject)}:{message.sender_email or 'unknown'}:{message.id}"
    return base64.b64encode(composite.encode("utf-8")).decode("ascii")[:THREAD_KEY_LENGTH]


def group_threads(messages: List[EmailMessage]) -> List[EmailThread]:
    """Group messages into threads, newest thread first, newest message first."""
    grouped: Dict[str, List[EmailMessage]] = OrderedDict()
    for message in messages:
        grouped.setdefault(thread_key(message), []).append(message)

    threads = []
    for key, emails in grouped.items():
        emails = sorted(emails, key=lambda m: m.received_at, reverse=True)
        threads.append(EmailThread(
            thread_id=key,
            subject=display_subject(emails[0].subject),
            emails=emails,
            last_received_at=emails[0].received_at,
            unread_count=sum(1 for m in emails if not m.read),
        ))

    threads.sort(key=lambda t: t.last_received_at, reverse=True)
    return threads
