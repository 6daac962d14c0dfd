import asyncio
from collections import defaultdict

import pytest

from mailview.core.settings import MemorySettingsStore
from mailview.network.backend import LOGIN_FAILED, LocalPushChannel, MailBackend


def make_message(uid, mailbox_name="INBOX", subject=None, sender="Alice"):
    """A message summary in the backend's JSON shape."""
    return {
        "uid": uid,
        "mailbox_name": mailbox_name,
        "envelope": {
            "Subject": subject if subject is not None else f"Message {uid}",
            "Date": "2024-03-05T10:15:00Z",
            "Sender": [{"PersonalName": sender, "MailboxName": "alice", "HostName": "example.com"}],
            "From": [],
            "MessageId": f"<{uid}@example.com>",
        },
    }


async def settle(rounds=25):
    """Let scheduled callbacks and follow-up tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeBackend(MailBackend):
    """In-memory backend with call recording, injectable failures and gates."""

    def __init__(self):
        self.logged_in = {}  # account_id -> bool
        self.credentials = {}  # (endpoint, email, password) -> account_id
        self.oauth_starts = True
        self.mailboxes = {}  # account_id -> [name]
        self.messages = defaultdict(list)  # (account_id, mailbox) -> [payload], newest first
        self.bodies = {}  # (account_id, mailbox, uid) -> html
        self.calls = defaultdict(list)
        self.failures = {}  # operation -> exception
        self.fail_once = {}  # operation -> exception raised by the next call only
        self.gates = {}  # operation -> asyncio.Event
        self.body_gates = {}  # uid -> asyncio.Event

    async def _enter(self, operation, *args):
        self.calls[operation].append(args)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.fail_once:
            raise self.fail_once.pop(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def add_account(self, account_id, mailboxes=("INBOX",)):
        self.logged_in[account_id] = True
        self.mailboxes[account_id] = list(mailboxes)

    def fill(self, account_id, mailbox_name, uids):
        self.messages[(account_id, mailbox_name)] = [
            make_message(uid, mailbox_name) for uid in uids
        ]

    async def get_account_ids(self):
        await self._enter("get_account_ids")
        return list(self.logged_in)

    async def is_logged_in(self, account_id):
        await self._enter("is_logged_in", account_id)
        return self.logged_in.get(account_id, False)

    async def login_user(self, endpoint, email, password):
        await self._enter("login_user", endpoint, email, password)
        account_id = self.credentials.get((endpoint, email, password))
        if account_id is None:
            return LOGIN_FAILED
        self.add_account(account_id, self.mailboxes.get(account_id, ("INBOX",)))
        return account_id

    async def login_user_with_oauth(self, provider_name):
        await self._enter("login_user_with_oauth", provider_name)
        return self.oauth_starts

    async def logout_user(self, account_id):
        await self._enter("logout_user", account_id)
        self.logged_in[account_id] = False

    async def get_mailboxes(self, account_id):
        # The listing reflects the server at request time
        names = list(self.mailboxes.get(account_id, []))
        await self._enter("get_mailboxes", account_id)
        return names

    async def get_emails_for_mailbox(self, account_id, mailbox_name, offset, limit):
        await self._enter("get_emails_for_mailbox", account_id, mailbox_name, offset, limit)
        return list(self.messages[(account_id, mailbox_name)][offset:offset + limit])

    async def get_email_body(self, account_id, mailbox_name, uid):
        gate = self.body_gates.get(uid)
        await self._enter("get_email_body", account_id, mailbox_name, uid)
        if gate is not None:
            await gate.wait()
        return self.bodies.get((account_id, mailbox_name, uid), f"<p>body {uid}</p>")

    async def update_mailboxes(self, account_id):
        await self._enter("update_mailboxes", account_id)

    async def update_messages(self, account_id, mailbox_name):
        await self._enter("update_messages", account_id, mailbox_name)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def push():
    return LocalPushChannel()


@pytest.fixture
def store():
    return MemorySettingsStore()
