"""
Mailbox catalog.

This module keeps one flattened, selectable list of mailboxes spanning all
active accounts. Raw backend names are normalized for display:

- a recognized namespace prefix (``[Gmail]/``) is stripped from the label;
- a mailbox named exactly after a namespace marker (``[Gmail]``) is a
  grouping, not a real mailbox, and is left out of the list;
- Inbox, Sent, Trash and Drafts sort first in that order, everything else
  follows alphabetically by label.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from PyQt5.QtCore import QObject, pyqtSignal

from mailview.auth.accounts import AccountRegistry
from mailview.models import Mailbox, MailboxKind, MailboxRef
from mailview.network.backend import MailBackend, call_backend
from mailview.utils.errors import BackendUnavailable


logger = logging.getLogger(__name__)

NAMESPACE_MARKERS: Tuple[str, ...] = ("[Gmail]", "[Google Mail]")
HIERARCHY_SEPARATORS: Tuple[str, ...] = ("/", ".")

KIND_ORDER: Tuple[MailboxKind, ...] = (
    MailboxKind.INBOX,
    MailboxKind.SENT,
    MailboxKind.TRASH,
    MailboxKind.DRAFTS,
)

_KIND_ALIASES: Dict[str, MailboxKind] = {
    "inbox": MailboxKind.INBOX,
    "sent": MailboxKind.SENT,
    "sent mail": MailboxKind.SENT,
    "sent items": MailboxKind.SENT,
    "sent messages": MailboxKind.SENT,
    "trash": MailboxKind.TRASH,
    "bin": MailboxKind.TRASH,
    "deleted items": MailboxKind.TRASH,
    "deleted messages": MailboxKind.TRASH,
    "drafts": MailboxKind.DRAFTS,
}


def is_namespace_marker(name: str) -> bool:
    """True for a bare namespace grouping such as ``[Gmail]``."""
    return name in NAMESPACE_MARKERS


def display_name_for(name: str) -> str:
    """
    Derive the display label of a raw mailbox name.

    Args:
        name: Backend mailbox name, e.g. ``[Gmail]/All Mail``.

    Returns:
        The label, e.g. ``All Mail``; ``INBOX`` becomes ``Inbox``.
    """
    if name.upper() == "INBOX":
        return "Inbox"
    for marker in NAMESPACE_MARKERS:
        for separator in HIERARCHY_SEPARATORS:
            prefix = marker + separator
            if name.startswith(prefix) and len(name) > len(prefix):
                return name[len(prefix):]
    return name


def classify(display_name: str) -> MailboxKind:
    """Map a display label to its mailbox kind."""
    return _KIND_ALIASES.get(display_name.strip().lower(), MailboxKind.OTHER)


def _sort_key(mailbox: Mailbox):
    if mailbox.kind in KIND_ORDER:
        return (0, KIND_ORDER.index(mailbox.kind), "", mailbox.name)
    return (1, 0, mailbox.display_name.casefold(), mailbox.name)


def build_slice(account_id: int, names: Iterable[str]) -> List[Mailbox]:
    """
    Build one account's sorted, normalized catalog slice.

    Duplicate and namespace-marker names are skipped.
    """
    seen = set()
    mailboxes = []
    for name in names:
        if not name or name in seen or is_namespace_marker(name):
            continue
        seen.add(name)
        display_name = display_name_for(name)
        mailboxes.append(
            Mailbox(
                account_id=account_id,
                name=name,
                display_name=display_name,
                kind=classify(display_name),
            )
        )
    mailboxes.sort(key=_sort_key)
    return mailboxes


class MailboxCatalog(QObject):
    """
    Per-account mailbox lists, exposed as one flattened list.

    Signals:
        changed(int): an account's slice was replaced or dropped.
    """

    changed = pyqtSignal(int)

    def __init__(
        self,
        backend: MailBackend,
        registry: AccountRegistry,
        timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._backend = backend
        self._registry = registry
        self._timeout = timeout
        self._slices: Dict[int, List[Mailbox]] = {}
        self._inflight: Dict[int, asyncio.Task] = {}
        # Accounts whose list may have changed after the in-flight call was sent
        self._dirty: Set[int] = set()

    @property
    def mailboxes(self) -> List[Mailbox]:
        """All selectable mailboxes, grouped by account in registry order."""
        entries = []
        for account_id in self._registry.account_ids:
            entries.extend(self._slices.get(account_id, []))
        return entries

    def for_account(self, account_id: int) -> List[Mailbox]:
        return list(self._slices.get(account_id, []))

    def get(self, ref: MailboxRef) -> Optional[Mailbox]:
        for mailbox in self._slices.get(ref.account_id, []):
            if mailbox.name == ref.name:
                return mailbox
        return None

    def contains(self, ref: MailboxRef) -> bool:
        return self.get(ref) is not None

    def find_kind(self, account_id: int, kind: MailboxKind) -> Optional[Mailbox]:
        for mailbox in self._slices.get(account_id, []):
            if mailbox.kind is kind:
                return mailbox
        return None

    async def refresh(self, account_id: int) -> List[Mailbox]:
        """
        Re-read one account's mailbox names and replace its slice.

        Concurrent refreshes of the same account share one running read. A
        refresh requested while a read is in flight marks the account dirty,
        and the running read is repeated once it answers, so every caller
        gets a list at least as new as its own request. A result arriving
        after the account left the registry is discarded.

        Args:
            account_id: The account to refresh.

        Returns:
            The account's slice after the refresh.

        Raises:
            BackendUnavailable: If the mailbox list could not be read; the
                previous slice is kept.
        """
        task = self._inflight.get(account_id)
        if task is not None:
            logger.debug(f"Catalog refresh for account {account_id} already running; rereading after it")
            self._dirty.add(account_id)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._refresh(account_id))
        self._inflight[account_id] = task
        task.add_done_callback(lambda t: self._forget(account_id, t))
        return await asyncio.shield(task)

    def _forget(self, account_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(account_id) is task:
            del self._inflight[account_id]

    async def _refresh(self, account_id: int) -> List[Mailbox]:
        while True:
            self._dirty.discard(account_id)
            try:
                names = await call_backend(
                    self._backend.get_mailboxes(account_id), "GetMailboxes", self._timeout
                )
            except BackendUnavailable:
                if account_id in self._dirty:
                    logger.debug(f"Mailbox list of account {account_id} failed; retrying for a newer request")
                    continue
                raise
            if account_id not in self._dirty:
                break

        if not self._registry.is_active(account_id):
            logger.debug(f"Discarding mailbox list for inactive account {account_id}")
            return []

        new_slice = build_slice(account_id, names or [])
        self._slices[account_id] = new_slice
        logger.info(f"Catalog for account {account_id}: {len(new_slice)} mailbox(es)")
        self.changed.emit(account_id)
        return list(new_slice)

    async def refresh_quietly(self, account_id: int) -> List[Mailbox]:
        """Refresh for background callers; failures keep the last known slice."""
        try:
            return await self.refresh(account_id)
        except BackendUnavailable as e:
            logger.warning(f"Background catalog refresh for account {account_id} failed: {e}")
            return self.for_account(account_id)

    def drop_account(self, account_id: int) -> None:
        """Forget an account's slice and any pending refresh bookkeeping."""
        self._inflight.pop(account_id, None)
        self._dirty.discard(account_id)
        if self._slices.pop(account_id, None) is not None:
            self.changed.emit(account_id)
