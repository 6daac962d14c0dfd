"""
Mail session composition root.

:class:`MailSession` owns one instance of every session component, wires
their signals together and exposes the operations a UI calls. Core
components raise :class:`MailViewError`; the session catches those at its
UI-facing operations, logs them and emits ``error`` with a message fit for
inline display.

Lifecycle::

    session = MailSession(backend, push)
    await session.start()     # subscribe, reconcile accounts, load catalogs
    ...
    await session.dispose()   # unsubscribe and cancel background work
"""
import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from PyQt5.QtCore import QObject, pyqtBoundSignal, pyqtSignal

from mailview import config
from mailview.auth.accounts import AccountRegistry
from mailview.auth.login_flow import LoginFlow, LoginStep
from mailview.core.events import EventDispatcher
from mailview.core.mailbox_catalog import MailboxCatalog
from mailview.core.message_cache import MessagePageCache
from mailview.core.selection import SelectionController
from mailview.core.settings import SettingsStore, SqliteSettingsStore, ViewState
from mailview.models import (
    Account,
    Mailbox,
    MailboxKind,
    MailboxRef,
    MessageKey,
    MessageSummary,
    Page,
)
from mailview.network.backend import MailBackend, PushChannel, call_backend
from mailview.utils.errors import (
    BackendUnavailable,
    MailViewError,
    SessionError,
    human_friendly_message,
)
from mailview.utils.tasks import BackgroundTasks


logger = logging.getLogger(__name__)


class MailSession(QObject):
    """
    One user session against a mail backend.

    Signals:
        page_changed(Page): the top-level page switched.
        mailboxes_changed(): the flattened mailbox list changed.
        messages_changed(MailboxRef): the selected mailbox got new summaries.
        selection_changed(): selected mailbox, message or body state changed.
        login_changed(LoginStep): the login flow moved or its error changed.
        error(str): a UI-facing operation failed.
    """

    page_changed = pyqtSignal(object)
    mailboxes_changed = pyqtSignal()
    messages_changed = pyqtSignal(object)
    selection_changed = pyqtSignal()
    login_changed = pyqtSignal(object)
    error = pyqtSignal(str)

    def __init__(
        self,
        backend: MailBackend,
        push: PushChannel,
        store: Optional[SettingsStore] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        sync_interval: Optional[float] = None,
        supersede_pending: bool = True,
        parent: Optional[QObject] = None,
    ):
        """
        Build the session components.

        Args:
            backend: The mail backend.
            push: Channel delivering the backend's push events.
            store: Persisted settings (defaults to the SQLite settings file).
            page_size: Summaries per page request (defaults to config).
            timeout: Per-call backend timeout in seconds (defaults to config).
            sync_interval: Seconds between background update triggers
                (defaults to config; 0 disables the loop).
            supersede_pending: See :class:`SelectionController`.
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._backend = backend
        self._timeout = timeout
        self._owns_store = store is None
        self._store = store if store is not None else SqliteSettingsStore()
        self.sync_interval = (
            config.SYNC_INTERVAL_SECONDS if sync_interval is None else sync_interval
        )

        self.registry = AccountRegistry(backend, timeout)
        self.catalog = MailboxCatalog(backend, self.registry, timeout)
        self.cache = MessagePageCache(backend, page_size, timeout)
        self.selection = SelectionController(backend, self.cache, supersede_pending, timeout)
        self.login_flow = LoginFlow(self.registry)
        self.dispatcher = EventDispatcher(
            push, self.registry, self.catalog, self.cache, self.login_flow
        )
        self.view_state = ViewState(self._store)

        self.view_state.page_changed.connect(self.page_changed)
        self.selection.changed.connect(self.selection_changed)
        self.login_flow.step_changed.connect(self.login_changed)

        self.last_error = ""
        self._connections: List[Tuple[pyqtBoundSignal, object]] = []
        self._tasks = BackgroundTasks("mail session")
        self._sync_task: Optional[asyncio.Task] = None
        self._started = False
        self._disposed = False

    # Read-only views for the UI

    @property
    def started(self) -> bool:
        return self._started

    @property
    def page(self) -> Page:
        return self.view_state.page

    @property
    def accounts(self) -> List[Account]:
        return self.registry.accounts

    @property
    def mailboxes(self) -> List[Mailbox]:
        return self.catalog.mailboxes

    @property
    def selected_mailbox(self) -> Optional[MailboxRef]:
        return self.selection.selected_mailbox

    @property
    def selected_message(self) -> Optional[MessageKey]:
        return self.selection.selected_message

    @property
    def messages(self) -> List[MessageSummary]:
        """Summaries of the selected mailbox, in display order."""
        ref = self.selection.selected_mailbox
        return self.cache.messages(ref) if ref is not None else []

    @property
    def body(self) -> str:
        return self.selection.body

    # Lifecycle

    async def start(self) -> None:
        """
        Subscribe to push events and reconcile with the backend.

        Accounts the backend still considers logged in get their catalog
        loaded and, for the first one, the Inbox selected. With no surviving
        account the page is forced to the login page.

        Raises:
            SessionError: If the session was already started or disposed.
        """
        if self._disposed:
            raise SessionError("Session has been disposed")
        if self._started:
            raise SessionError("Session already started")
        self._started = True

        self._connect(self.registry.account_added, self._on_account_added)
        self._connect(self.registry.account_removed, self._on_account_removed)
        self._connect(self.catalog.changed, self._on_catalog_changed)
        self._connect(self.cache.messages_changed, self._on_messages_changed)
        self._connect(self.login_flow.step_changed, self._on_login_step)
        self.dispatcher.start()

        try:
            accounts = await self.registry.initialize()
        except BackendUnavailable as e:
            logger.error(f"Could not read the account list: {e}")
            self._report(e)
            accounts = []

        # Wait for the per-account bootstrap started by account_added
        await self._tasks.drain()

        if not accounts:
            self.view_state.page = Page.LOGIN

        if self.sync_interval > 0:
            self._sync_task = asyncio.ensure_future(self._sync_loop())
        logger.info(
            f"Session started with {len(accounts)} account(s), page {self.page.value}"
        )

    async def dispose(self) -> None:
        """Tear everything down in reverse order of setup; safe to call twice."""
        if self._disposed:
            return
        self._disposed = True

        if self._sync_task is not None:
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None

        await self.dispatcher.aclose()
        while self._connections:
            signal, connection = self._connections.pop()
            signal.disconnect(connection)
        await self._tasks.aclose()
        await self.cache.aclose()

        if self._owns_store:
            self._store.close()
        self._started = False
        logger.info("Session disposed")

    async def drain(self) -> None:
        """Wait for push handlers and account bootstraps scheduled so far."""
        await self.dispatcher.drain()
        await self._tasks.drain()

    def _connect(self, signal: pyqtBoundSignal, slot: Callable) -> None:
        self._connections.append((signal, signal.connect(slot)))

    # UI-facing operations

    async def select_mailbox(self, ref: MailboxRef) -> bool:
        """Select a mailbox, loading its first page if nothing is cached yet."""
        try:
            return await self.selection.select_mailbox(ref)
        except MailViewError as e:
            self._report(e)
            return False

    async def select_message(self, key: MessageKey) -> bool:
        try:
            return await self.selection.select_message(key)
        except MailViewError as e:
            self._report(e)
            return False

    async def load_more(self) -> int:
        """
        Fetch the next page of the selected mailbox (scroll to bottom).

        Returns:
            Number of newly added summaries.
        """
        ref = self.selection.selected_mailbox
        if ref is None:
            return 0
        try:
            return await self.cache.fetch_next_page(ref)
        except MailViewError as e:
            self._report(e)
            return 0

    async def refresh(self) -> None:
        """
        Manual refresh.

        Re-reads every account's mailbox list, re-fetches the first page of
        the selected mailbox and asks the backend to check the server for
        changes, which it reports back through push events.
        """
        for account_id in self.registry.account_ids:
            try:
                await self.catalog.refresh(account_id)
            except MailViewError as e:
                self._report(e)
        ref = self.selection.selected_mailbox
        if ref is not None:
            await self.cache.invalidate(ref)
        await self._request_updates()

    async def logout(self, account_id: int) -> None:
        try:
            await self.registry.logout(account_id)
        except MailViewError as e:
            self._report(e)

    async def choose_provider(self, name: str) -> None:
        try:
            await self.login_flow.choose_provider(name)
        except MailViewError as e:
            self._report(e)

    async def submit_login(self) -> Optional[int]:
        """Submit the login form; rejections show up as the flow's inline error."""
        try:
            return await self.login_flow.submit()
        except MailViewError as e:
            self._report(e)
            return None

    def add_account(self) -> None:
        """Open the login page for another account."""
        self.login_flow.reset()
        self.view_state.page = Page.LOGIN

    def cancel_login(self) -> None:
        """Go back to the mail page, if there is an account to show."""
        if len(self.registry) == 0:
            logger.debug("No account to go back to; staying on the login page")
            return
        self.login_flow.reset()
        self.view_state.page = Page.MAIL

    # Wiring

    def _on_account_added(self, account: Account) -> None:
        self._tasks.spawn(self._bootstrap(account.id))

    async def _bootstrap(self, account_id: int) -> None:
        try:
            mailboxes = await self.catalog.refresh(account_id)
        except BackendUnavailable as e:
            logger.warning(f"Loading mailboxes of account {account_id} failed: {e}")
            self._report(e)
            return

        await self._trigger(self._backend.update_mailboxes(account_id), "UpdateMailboxes")

        if self.selection.selected_mailbox is not None or not mailboxes:
            return
        inbox = self.catalog.find_kind(account_id, MailboxKind.INBOX) or mailboxes[0]
        await self.select_mailbox(inbox.ref)

    def _on_account_removed(self, account_id: int) -> None:
        self.catalog.drop_account(account_id)
        self.cache.purge_account(account_id)
        self.selection.clear_account(account_id)
        if len(self.registry) == 0:
            self.view_state.page = Page.LOGIN

    def _on_catalog_changed(self, account_id: int) -> None:
        if self.registry.is_active(account_id):
            names = [mailbox.name for mailbox in self.catalog.for_account(account_id)]
            self.cache.retain_mailboxes(account_id, names)
        self.mailboxes_changed.emit()

    def _on_messages_changed(self, ref: MailboxRef, _added: int) -> None:
        if ref == self.selection.selected_mailbox:
            self.messages_changed.emit(ref)

    def _on_login_step(self, step: LoginStep) -> None:
        if step is LoginStep.SUCCESS:
            self.view_state.page = Page.MAIL

    # Background updates

    async def _trigger(self, awaitable, operation: str) -> None:
        try:
            await call_backend(awaitable, operation, self._timeout)
        except BackendUnavailable as e:
            logger.warning(f"{operation} trigger failed: {e}")

    async def _request_updates(self) -> None:
        for account_id in self.registry.account_ids:
            await self._trigger(self._backend.update_mailboxes(account_id), "UpdateMailboxes")
            for mailbox in self.catalog.for_account(account_id):
                if not self.registry.is_active(account_id):
                    break
                await self._trigger(
                    self._backend.update_messages(account_id, mailbox.name),
                    "UpdateMessages",
                )

    async def _sync_loop(self) -> None:
        logger.info(f"Background sync every {self.sync_interval}s")
        while True:
            await asyncio.sleep(self.sync_interval)
            logger.debug("Background sync tick")
            await self._request_updates()

    def _report(self, exc: Exception) -> None:
        message = human_friendly_message(exc)
        logger.warning(f"Session operation failed: {exc}")
        self.last_error = message
        self.error.emit(message)
