from datetime import datetime, timezone

import pytest

from mailview.auth.providers import EMAIL_PROVIDERS, get_provider
from mailview.models import (
    UNKNOWN_SENDER,
    MailboxRef,
    MessageKey,
    MessageSummary,
)

from conftest import make_message


def test_summary_from_backend_payload():
    summary = MessageSummary.from_payload(3, make_message(42, "Work", subject="Hi"))

    assert summary.key == MessageKey(3, "Work", 42)
    assert summary.key.mailbox == MailboxRef(3, "Work")
    assert summary.envelope.subject == "Hi"
    assert summary.envelope.date == datetime(2024, 3, 5, 10, 15, tzinfo=timezone.utc)
    assert summary.envelope.sender[0].email_address == "alice@example.com"
    assert summary.sender_name == "Alice"
    assert summary.date_label == "3/5/24"


def test_sender_falls_back_to_from_then_unknown():
    payload = make_message(1)
    payload["envelope"]["Sender"] = [{"MailboxName": "bob", "HostName": "example.com"}]
    payload["envelope"]["From"] = [{"PersonalName": "Bob"}]
    assert MessageSummary.from_payload(1, payload).sender_name == "Bob"

    payload["envelope"]["From"] = []
    assert MessageSummary.from_payload(1, payload).sender_name == UNKNOWN_SENDER


def test_missing_envelope_fields_are_tolerated():
    summary = MessageSummary.from_payload(1, {"uid": "7", "envelope": {"Date": "yesterday"}})

    assert summary.uid == 7
    assert summary.envelope.date is None
    assert summary.date_label == ""


@pytest.mark.parametrize("payload", [{}, {"uid": None}, {"uid": "abc"}])
def test_payload_without_uid_is_rejected(payload):
    with pytest.raises(ValueError):
        MessageSummary.from_payload(1, payload)


def test_uids_are_scoped_to_their_mailbox():
    assert MessageKey(1, "INBOX", 5) != MessageKey(1, "Sent", 5)
    assert MessageKey(1, "INBOX", 5) != MessageKey(2, "INBOX", 5)


def test_provider_table():
    assert [p.name for p in EMAIL_PROVIDERS] == [
        "Gmail", "Outlook.com", "Yahoo", "iCloud", "AOL", "Custom",
    ]
    assert get_provider("AOL").endpoint == "imap.aol.com:993"
    assert get_provider("Gmail").requires_oauth
    assert get_provider("Custom").endpoint == ""
    assert get_provider("Custom").is_custom
    assert get_provider("Nope") is None
