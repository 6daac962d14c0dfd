"""
Push event dispatcher.

Routes backend push events into the session components:

- ``OAuthSuccess(account_id)`` / ``OAuthFailure`` -> registry and login flow
- ``UserLoggedOut(account_id)`` -> registry (purges catalog, cache, selection)
- ``MailboxesUpdated(account_id)`` -> catalog refresh
- ``MessagesUpdated(account_id, mailbox_name)`` -> cache invalidation

Subscriptions are made once in :meth:`EventDispatcher.start` and all removed
in :meth:`EventDispatcher.dispose`, newest first. Events naming accounts or
mailboxes that are gone are ignored; events for mailboxes that are merely not
selected still update the cache.
"""
import logging
from typing import Callable, List, Optional

from mailview.auth.accounts import AccountRegistry
from mailview.auth.login_flow import LoginFlow
from mailview.core.mailbox_catalog import MailboxCatalog
from mailview.core.message_cache import MessagePageCache
from mailview.models import MailboxRef
from mailview.network.backend import (
    MAILBOXES_UPDATED,
    MESSAGES_UPDATED,
    OAUTH_FAILURE,
    OAUTH_SUCCESS,
    USER_LOGGED_OUT,
    PushChannel,
)
from mailview.utils.tasks import BackgroundTasks


logger = logging.getLogger(__name__)


class EventDispatcher:
    """Subscribes to the push channel for the duration of a session."""

    def __init__(
        self,
        push: PushChannel,
        registry: AccountRegistry,
        catalog: MailboxCatalog,
        cache: MessagePageCache,
        login_flow: LoginFlow,
    ):
        self._push = push
        self._registry = registry
        self._catalog = catalog
        self._cache = cache
        self._login_flow = login_flow
        self._unsubscribers: List[Callable[[], None]] = []
        self._tasks = BackgroundTasks("event dispatcher")
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Subscribe to every push event; a second call is a no-op."""
        if self._started:
            logger.warning("Event dispatcher already started; not subscribing twice")
            return
        self._started = True
        for event_name, handler in (
            (USER_LOGGED_OUT, self._on_user_logged_out),
            (MAILBOXES_UPDATED, self._on_mailboxes_updated),
            (MESSAGES_UPDATED, self._on_messages_updated),
            (OAUTH_SUCCESS, self._on_oauth_success),
            (OAUTH_FAILURE, self._on_oauth_failure),
        ):
            self._unsubscribers.append(self._push.subscribe(event_name, handler))
        logger.info(f"Subscribed to {len(self._unsubscribers)} push events")

    def dispose(self) -> None:
        """Unsubscribe everything in reverse order and cancel running handlers."""
        while self._unsubscribers:
            unsubscribe = self._unsubscribers.pop()
            unsubscribe()
        self._tasks.cancel()
        if self._started:
            logger.info("Unsubscribed from push events")
        self._started = False

    async def aclose(self) -> None:
        """Dispose and wait for cancelled handlers to finish."""
        self.dispose()
        await self._tasks.aclose()

    async def drain(self) -> None:
        """Wait until every handler scheduled so far has finished."""
        await self._tasks.drain()

    def _on_user_logged_out(self, account_id: Optional[int] = None) -> None:
        if account_id is None or not self._registry.remove(account_id):
            logger.debug(f"UserLoggedOut for inactive account {account_id}; nothing to do")

    def _on_mailboxes_updated(self, account_id: Optional[int] = None) -> None:
        if account_id is None:
            targets = self._registry.account_ids
        elif self._registry.is_active(account_id):
            targets = [account_id]
        else:
            logger.debug(f"MailboxesUpdated for inactive account {account_id}; ignoring")
            return
        for target in targets:
            self._tasks.spawn(self._catalog.refresh_quietly(target))

    def _on_messages_updated(self, *payload) -> None:
        if len(payload) >= 2:
            account_id, mailbox_name = payload[0], payload[1]
            if not self._registry.is_active(account_id):
                logger.debug(f"MessagesUpdated for inactive account {account_id}; ignoring")
                return
            refs = [MailboxRef(account_id, mailbox_name)]
        elif len(payload) == 1:
            # Older backends only name the mailbox
            refs = [ref for ref in self._cache.refs() if ref.name == payload[0]]
        else:
            logger.warning("MessagesUpdated without a mailbox; ignoring")
            return
        for ref in refs:
            self._tasks.spawn(self._cache.invalidate(ref))

    def _on_oauth_success(self, account_id: Optional[int] = None) -> None:
        if account_id is None:
            # No handle in the event: pick the new account up by reconciling
            logger.warning("OAuthSuccess without an account id; reconciling accounts")
            self._tasks.spawn(self._registry.initialize())
        else:
            self._registry.add(account_id)
        self._login_flow.handle_oauth_success(account_id)

    def _on_oauth_failure(self, *_payload) -> None:
        self._login_flow.handle_oauth_failure()
