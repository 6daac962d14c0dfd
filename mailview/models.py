"""
Core domain models for the mail session layer.

This module contains pure domain models (dataclasses and enums) without any
backend or UI dependencies. These models represent the entities the session
keeps in memory for the lifetime of a session.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from mailview.utils.helpers import format_short_date


UNKNOWN_SENDER = "Unknown Sender"


class AccountStatus(Enum):
    """Login status of an account handle."""
    ACTIVE = "active"
    LOGGED_OUT = "loggedOut"


class MailboxKind(Enum):
    """Classification used for icon choice and sort priority."""
    INBOX = "inbox"
    SENT = "sent"
    TRASH = "trash"
    DRAFTS = "drafts"
    OTHER = "other"


class Page(Enum):
    """Top-level view; persisted across process restarts."""
    LOGIN = "login"
    MAIL = "mail"


@dataclass(slots=True)
class Account:
    """An account handle issued by the backend at login."""
    id: int
    email_address: str = ""
    endpoint: str = ""
    status: AccountStatus = AccountStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class MailboxRef:
    """Reference to a mailbox of a specific account."""
    account_id: int
    name: str


@dataclass(slots=True)
class Mailbox:
    """A selectable catalog entry."""
    account_id: int
    name: str  # Backend name, e.g. "[Gmail]/All Mail"
    display_name: str = ""
    kind: MailboxKind = MailboxKind.OTHER

    @property
    def ref(self) -> MailboxRef:
        return MailboxRef(self.account_id, self.name)


@dataclass(frozen=True, slots=True)
class Address:
    """An envelope address."""
    personal_name: str = ""
    mailbox_name: str = ""
    host_name: str = ""

    @property
    def email_address(self) -> str:
        if self.mailbox_name and self.host_name:
            return f"{self.mailbox_name}@{self.host_name}"
        return self.mailbox_name

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "Address":
        payload = payload or {}
        return cls(
            personal_name=payload.get("PersonalName") or "",
            mailbox_name=payload.get("MailboxName") or "",
            host_name=payload.get("HostName") or "",
        )


@dataclass(slots=True)
class Envelope:
    """Message metadata independent of body content."""
    subject: str = ""
    date: Optional[datetime] = None
    sender: List[Address] = field(default_factory=list)
    from_: List[Address] = field(default_factory=list)
    message_id: str = ""

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "Envelope":
        payload = payload or {}
        return cls(
            subject=payload.get("Subject") or "",
            date=_parse_datetime(payload.get("Date")),
            sender=[Address.from_payload(a) for a in payload.get("Sender") or []],
            from_=[Address.from_payload(a) for a in payload.get("From") or []],
            message_id=payload.get("MessageId") or "",
        )


@dataclass(frozen=True, slots=True)
class MessageKey:
    """Unique message identity; uids are only comparable within one mailbox."""
    account_id: int
    mailbox_name: str
    uid: int

    @property
    def mailbox(self) -> MailboxRef:
        return MailboxRef(self.account_id, self.mailbox_name)


@dataclass(slots=True)
class MessageSummary:
    """A message as listed in a mailbox: envelope only, no body."""
    account_id: int
    mailbox_name: str
    uid: int
    envelope: Envelope = field(default_factory=Envelope)

    @property
    def key(self) -> MessageKey:
        return MessageKey(self.account_id, self.mailbox_name, self.uid)

    @property
    def sender_name(self) -> str:
        """First sender's personal name, falling back to the From list."""
        for address in (*self.envelope.sender, *self.envelope.from_):
            if address.personal_name:
                return address.personal_name
        return UNKNOWN_SENDER

    @property
    def date_label(self) -> str:
        return format_short_date(self.envelope.date)

    @classmethod
    def from_payload(cls, account_id: int, payload: Dict[str, Any]) -> "MessageSummary":
        """
        Build a summary from the backend's JSON message shape.

        Args:
            account_id: Account the message belongs to.
            payload: Mapping with ``uid``, ``mailbox_name`` and ``envelope``.

        Returns:
            A MessageSummary without body.

        Raises:
            ValueError: If the payload carries no usable uid.
        """
        try:
            uid = int(payload["uid"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Message payload has no valid uid: {payload!r}") from e
        return cls(
            account_id=account_id,
            mailbox_name=payload.get("mailbox_name") or "",
            uid=uid,
            envelope=Envelope.from_payload(payload.get("envelope")),
        )


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
