import pytest

from mailview.auth.accounts import AccountRegistry
from mailview.auth.login_flow import LoginFlow, LoginStep
from mailview.core.events import EventDispatcher
from mailview.core.mailbox_catalog import MailboxCatalog
from mailview.core.message_cache import MessagePageCache
from mailview.models import MailboxRef
from mailview.network.backend import (
    MAILBOXES_UPDATED,
    MESSAGES_UPDATED,
    OAUTH_FAILURE,
    OAUTH_SUCCESS,
    PUSH_EVENTS,
    USER_LOGGED_OUT,
)


INBOX = MailboxRef(7, "INBOX")


class Components:
    def __init__(self, backend, push):
        self.registry = AccountRegistry(backend)
        self.catalog = MailboxCatalog(backend, self.registry)
        self.cache = MessagePageCache(backend, page_size=20)
        self.login_flow = LoginFlow(self.registry)
        self.dispatcher = EventDispatcher(
            push, self.registry, self.catalog, self.cache, self.login_flow
        )
        self.registry.account_removed.connect(self.cache.purge_account)
        self.registry.account_removed.connect(self.catalog.drop_account)


@pytest.fixture
def parts(backend, push):
    backend.add_account(7, ["INBOX", "Work"])
    backend.fill(7, "INBOX", range(20, 0, -1))
    parts = Components(backend, push)
    parts.registry.add(7)
    return parts


def test_start_subscribes_once_and_dispose_unsubscribes_all(push, parts):
    parts.dispatcher.start()
    parts.dispatcher.start()

    assert all(push.subscriber_count(name) == 1 for name in PUSH_EVENTS)

    parts.dispatcher.dispose()
    assert all(push.subscriber_count(name) == 0 for name in PUSH_EVENTS)

    parts.dispatcher.start()
    assert all(push.subscriber_count(name) == 1 for name in PUSH_EVENTS)
    parts.dispatcher.dispose()


@pytest.mark.asyncio
async def test_messages_updated_invalidates_cached_mailbox(backend, push, parts):
    parts.dispatcher.start()
    await parts.cache.fetch_next_page(INBOX)
    backend.fill(7, "INBOX", [23, 22, 21] + list(range(20, 0, -1)))

    push.publish(MESSAGES_UPDATED, 7, "INBOX")
    await parts.dispatcher.drain()

    assert parts.cache.cursor(INBOX) == 23
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_messages_updated_with_mailbox_name_only(backend, push, parts):
    parts.dispatcher.start()
    await parts.cache.fetch_next_page(INBOX)
    backend.fill(7, "INBOX", [21] + list(range(20, 0, -1)))

    push.publish(MESSAGES_UPDATED, "INBOX")
    await parts.dispatcher.drain()

    assert parts.cache.cursor(INBOX) == 21
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_events_after_logout_are_noops(backend, push, parts):
    parts.dispatcher.start()
    await parts.cache.fetch_next_page(INBOX)
    await parts.registry.logout(7)
    assert parts.cache.refs() == []
    calls_before = len(backend.calls["get_emails_for_mailbox"])

    push.publish(USER_LOGGED_OUT, 7)
    push.publish(MESSAGES_UPDATED, 7, "INBOX")
    push.publish(MAILBOXES_UPDATED, 7)
    await parts.dispatcher.drain()

    assert len(backend.calls["get_emails_for_mailbox"]) == calls_before
    assert not backend.calls["get_mailboxes"]
    assert parts.cache.refs() == []
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_user_logged_out_removes_account(push, parts):
    parts.dispatcher.start()

    push.publish(USER_LOGGED_OUT, 7)

    assert not parts.registry.is_active(7)
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_mailboxes_updated_refreshes_catalog(backend, push, parts):
    parts.registry.add(8)
    backend.add_account(8, ["INBOX"])
    parts.dispatcher.start()

    push.publish(MAILBOXES_UPDATED, 7)
    await parts.dispatcher.drain()
    assert [m.display_name for m in parts.catalog.for_account(7)] == ["Inbox", "Work"]
    assert backend.calls["get_mailboxes"] == [(7,)]

    push.publish(MAILBOXES_UPDATED)
    await parts.dispatcher.drain()
    assert sorted(backend.calls["get_mailboxes"]) == [(7,), (7,), (8,)]
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_oauth_events_drive_login_flow(push, parts):
    parts.dispatcher.start()
    await parts.login_flow.choose_provider("Gmail")

    push.publish(OAUTH_SUCCESS, 11)

    assert parts.registry.is_active(11)
    assert parts.login_flow.step is LoginStep.SUCCESS

    parts.login_flow.reset()
    await parts.login_flow.choose_provider("Gmail")
    push.publish(OAUTH_FAILURE)
    assert parts.login_flow.step is LoginStep.PROVIDER_SELECT
    await parts.dispatcher.aclose()


@pytest.mark.asyncio
async def test_events_are_ignored_after_dispose(backend, push, parts):
    parts.dispatcher.start()
    parts.dispatcher.dispose()

    push.publish(USER_LOGGED_OUT, 7)
    push.publish(MAILBOXES_UPDATED, 7)

    assert parts.registry.is_active(7)
    assert not backend.calls["get_mailboxes"]
