"""
Email inbox source (AgentMail)

Messages are fetched once and used two ways: mapped to RawItem for
ingestion, and kept as EmailMessage for thread grouping.
"""
import logging
from datetime import datetime
from email.utils import parseaddr
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from app.models.review import Marketplace
from app.services.sources.base import (
    FetchOptions,
    FetchResult,
    RawItem,
    SourceAdapter,
    first_value,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

AGENTMAIL_BASE_URL = "https://api.agentmail.to/v0"
PAGE_SIZE = 50


class EmailMessage(BaseModel):
    """One inbox message."""
    id: str
    message_id: Optional[str] = None
    thread_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
    subject: str = ""
    body: str = ""
    received_at: datetime
    read: bool = False

    def to_raw_item(self) -> RawItem:
        return RawItem(
            external_id=self.id,
            text=self.body,
            title=self.subject or None,
            author_name=self.sender_name or self.sender_email or "Customer",
            author_email=self.sender_email,
            timestamp=self.received_at,
        )


def _parse_sender(value: Any) -> tuple:
    if isinstance(value, dict):
        return value.get("name"), value.get("email")
    if isinstance(value, list) and value:
        return _parse_sender(value[0])
    if isinstance(value, str):
        name, address = parseaddr(value)
        return name or None, address or None
    return None, None


class AgentMailAdapter(SourceAdapter):
    name = "AgentMail"
    marketplace = Marketplace.MAILBOX.value
    required_settings = ("AGENTMAIL_API_KEY",)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.AGENTMAIL_API_KEY}"}

    async def list_messages(self, inbox_id: str, options: FetchOptions) -> List[EmailMessage]:
        """Page through an inbox, newest first, stopping at `since` or max_items."""
        self.require_configured()
        messages: List[EmailMessage] = []
        page_token = None

        while len(messages) < options.max_items:
            params: Dict[str, Any] = {"limit": min(PAGE_SIZE, options.max_items - len(messages))}
            if options.since:
                params["after"] = options.since.isoformat()
            if page_token:
                params["page_token"] = page_token

            data = await self.request_json(
                "GET",
                f"{AGENTMAIL_BASE_URL}/inboxes/{inbox_id}/messages",
                params=params,
                headers=self._headers(),
            )
            if data is None:
                logger.info(f"[Email] Inbox {inbox_id} not found")
                break

            for payload in data.get("messages") or []:
                message = self.parse_message(payload)
                if message is None:
                    continue
                if options.since and message.received_at < options.since:
                    continue
                messages.append(message)

            page_token = data.get("next_page_token")
            if not page_token:
                break

        logger.info(f"[Email] Fetched {len(messages)} messages from inbox {inbox_id}")
        return messages[: options.max_items]

    def parse_message(self, payload: Dict[str, Any]) -> Optional[EmailMessage]:
        if not isinstance(payload, dict):
            return None
        message_id = first_value(payload, "message_id", "id")
        if not message_id:
            logger.warning("[Email] Skipping message without id")
            return None

        sender_name, sender_email = _parse_sender(first_value(payload, "from", "from_"))
        labels = payload.get("labels") or []
        read = payload.get("read")
        if read is None:
            read = "unread" not in labels

        return EmailMessage(
            id=str(message_id),
            message_id=first_value(payload, "smtp_id", "message_id"),
            thread_id=first_value(payload, "thread_id", "threadId"),
            in_reply_to=first_value(payload, "in_reply_to", "inReplyTo"),
            sender_name=sender_name,
            sender_email=sender_email,
            subject=payload.get("subject") or "",
            body=(first_value(payload, "text", "body", "extracted_text", "preview", default="") or "").strip(),
            received_at=parse_timestamp(first_value(payload, "timestamp", "receivedAt", "created_at")),
            read=bool(read),
        )

    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        messages = await self.list_messages(identifier, options)
        items = [m.to_raw_item() for m in messages if m.body]
        return FetchResult(items=items)

    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        message = self.parse_message(payload)
        if message is None or not message.body:
            return None
        return message.to_raw_item()
