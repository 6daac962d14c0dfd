"""
Paginated per-mailbox message cache.

Each mailbox the user has opened gets a :class:`MailboxPages` store holding
its message summaries in backend order, keyed by :class:`MessageKey`. The
store is retained for the whole session so switching back to a mailbox
reuses what was already loaded.

Invariants kept here:

- a key is stored at most once per mailbox; every fetch merges by key;
- the page cursor (next fetch offset) equals the number of cached summaries;
- at most one backend page request per mailbox is in flight;
- results arriving after the mailbox's store was purged are discarded.

A page shorter than the page size does not mark the mailbox exhausted: the
next scroll simply asks again at the new cursor, so messages arriving later
on a small mailbox still show up.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from PyQt5.QtCore import QObject, pyqtSignal

from mailview import config
from mailview.models import MailboxRef, MessageKey, MessageSummary
from mailview.network.backend import MailBackend, call_backend
from mailview.utils.errors import BackendUnavailable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No request in flight."""


@dataclass(frozen=True)
class Fetching:
    """A page request is in flight."""
    task: asyncio.Task
    offset: int


@dataclass(frozen=True)
class Stale:
    """A request is in flight and its mailbox changed server-side meanwhile."""
    task: asyncio.Task
    offset: int


FetchState = Union[Idle, Fetching, Stale]

IDLE = Idle()


class MailboxPages:
    """Ordered summaries of one mailbox plus its fetch state."""

    def __init__(self, ref: MailboxRef):
        self.ref = ref
        self.state: FetchState = IDLE
        self._order: List[MessageKey] = []
        self._entries: Dict[MessageKey, MessageSummary] = {}

    @property
    def cursor(self) -> int:
        return len(self._order)

    @property
    def busy(self) -> bool:
        return not isinstance(self.state, Idle)

    @property
    def messages(self) -> List[MessageSummary]:
        return [self._entries[key] for key in self._order]

    def get(self, key: MessageKey) -> Optional[MessageSummary]:
        return self._entries.get(key)

    def __contains__(self, key: MessageKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._order)

    def merge(self, summaries: Iterable[MessageSummary], offset: int) -> int:
        """
        Merge a backend page, skipping keys already present.

        New entries are placed right after the closest preceding known entry
        of the same page. New entries before any known one go to the front
        when the page starts at offset 0 and to the end otherwise.

        Args:
            summaries: The page, in backend order.
            offset: Offset the page was requested at.

        Returns:
            Number of newly added summaries.
        """
        added = 0
        position = {key: i for i, key in enumerate(self._order)}
        # Anchor -1 is the front; new keys go right after order[anchor]
        anchor = -1 if offset == 0 else len(self._order) - 1
        inserts: Dict[int, List[MessageKey]] = {}
        for summary in summaries:
            key = summary.key
            if key in self._entries:
                # Refresh the envelope in place; position is unchanged
                self._entries[key] = summary
                if key in position:
                    anchor = position[key]
                continue

            self._entries[key] = summary
            inserts.setdefault(anchor, []).append(key)
            added += 1

        if inserts:
            order = list(inserts.get(-1, ()))
            for i, key in enumerate(self._order):
                order.append(key)
                order.extend(inserts.get(i, ()))
            self._order = order
        return added


def _coerce(ref: MailboxRef, item: Union[MessageSummary, Mapping[str, Any]]) -> MessageSummary:
    if isinstance(item, MessageSummary):
        summary = item
    else:
        summary = MessageSummary.from_payload(ref.account_id, dict(item))
    if summary.account_id != ref.account_id or (
        summary.mailbox_name and summary.mailbox_name != ref.name
    ):
        raise ValueError(f"Summary {summary.key} does not belong to {ref}")
    if not summary.mailbox_name:
        summary = replace(summary, mailbox_name=ref.name)
    return summary


class MessagePageCache(QObject):
    """
    Message summaries of every opened mailbox, for the session's lifetime.

    Signals:
        messages_changed(MailboxRef, int): summaries were added to a mailbox.
    """

    messages_changed = pyqtSignal(object, int)

    def __init__(
        self,
        backend: MailBackend,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        """
        Initialize the cache.

        Args:
            backend: The mail backend.
            page_size: Summaries per request (defaults to config.PAGE_SIZE).
            timeout: Per-call timeout in seconds (defaults to config).
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._backend = backend
        self.page_size = page_size or config.PAGE_SIZE
        self._timeout = timeout
        self._pages: Dict[MailboxRef, MailboxPages] = {}
        self._followups: Dict[MailboxRef, asyncio.Task] = {}

    def messages(self, ref: MailboxRef) -> List[MessageSummary]:
        pages = self._pages.get(ref)
        return pages.messages if pages is not None else []

    def cursor(self, ref: MailboxRef) -> int:
        pages = self._pages.get(ref)
        return pages.cursor if pages is not None else 0

    def count(self, ref: MailboxRef) -> int:
        return self.cursor(ref)

    def is_fetching(self, ref: MailboxRef) -> bool:
        pages = self._pages.get(ref)
        return pages is not None and pages.busy

    def state(self, ref: MailboxRef) -> FetchState:
        pages = self._pages.get(ref)
        return pages.state if pages is not None else IDLE

    def has_cache(self, ref: MailboxRef) -> bool:
        return ref in self._pages

    def refs(self) -> List[MailboxRef]:
        """Mailboxes that have a cache."""
        return list(self._pages)

    def get(self, key: MessageKey) -> Optional[MessageSummary]:
        pages = self._pages.get(key.mailbox)
        return pages.get(key) if pages is not None else None

    async def fetch_next_page(self, ref: MailboxRef) -> int:
        """
        Load the next page of a mailbox at its current cursor.

        A call made while a request for the mailbox is in flight does not
        issue another request; it waits for the running one instead. The
        request belongs to the cache, so cancelling any caller (the one that
        started it included) leaves it running for the others.

        Args:
            ref: The mailbox.

        Returns:
            Number of newly added summaries (0 for a coalesced call that
            joined a request already accounted for by its initiator).

        Raises:
            BackendUnavailable: If the page could not be fetched.
        """
        pages = self._pages.get(ref)
        if pages is None:
            pages = self._pages[ref] = MailboxPages(ref)

        if pages.busy:
            logger.debug(f"Page fetch for {ref} already in flight; waiting for it")
            await asyncio.shield(pages.state.task)
            return 0

        return await self._start_fetch(pages, pages.cursor)

    async def invalidate(self, ref: MailboxRef) -> int:
        """
        Reconcile a mailbox after a server-side change.

        Re-fetches the first page and merges it by key. Mailboxes never opened
        (or purged on logout) are left alone. If a request is in flight the
        mailbox is marked stale and refetched once that request settles,
        whether it succeeded or not. Failures are logged and the cache keeps
        its last known state.

        Args:
            ref: The mailbox.

        Returns:
            Number of newly added summaries.
        """
        pages = self._pages.get(ref)
        if pages is None:
            logger.debug(f"Ignoring invalidation of uncached mailbox {ref}")
            return 0

        state = pages.state
        if isinstance(state, Fetching):
            pages.state = Stale(state.task, state.offset)
            logger.debug(f"Mailbox {ref} marked stale while fetching")
            return 0
        if isinstance(state, Stale):
            return 0

        try:
            return await self._start_fetch(pages, 0)
        except BackendUnavailable as e:
            logger.warning(f"Refreshing {ref} failed; keeping cached messages: {e}")
            return 0

    async def _start_fetch(self, pages: MailboxPages, offset: int) -> int:
        task = asyncio.ensure_future(self._fetch(pages, offset))
        pages.state = Fetching(task, offset)
        return await asyncio.shield(task)

    def _settle(self, pages: MailboxPages) -> bool:
        """Return a mailbox to Idle; True if it went stale and is still cached."""
        stale = isinstance(pages.state, Stale)
        pages.state = IDLE
        return stale and self._pages.get(pages.ref) is pages

    async def _fetch(self, pages: MailboxPages, offset: int) -> int:
        ref = pages.ref
        try:
            items = await call_backend(
                self._backend.get_emails_for_mailbox(
                    ref.account_id, ref.name, offset, self.page_size
                ),
                "GetEmailsForMailbox",
                self._timeout,
            )
        except asyncio.CancelledError:
            pages.state = IDLE
            raise
        except Exception:
            if self._settle(pages):
                logger.debug(f"Fetch for stale mailbox {ref} failed; refetching anyway")
                self._schedule_followup(ref)
            raise
        rerun = self._settle(pages)

        if self._pages.get(ref) is not pages:
            logger.debug(f"Discarding page for purged mailbox {ref}")
            return 0

        summaries = []
        for item in items or []:
            try:
                summaries.append(_coerce(ref, item))
            except ValueError as e:
                logger.warning(f"Skipping malformed message in {ref}: {e}")

        added = pages.merge(summaries, offset)
        logger.debug(
            f"Fetched {len(summaries)} message(s) for {ref} at offset {offset}; "
            f"{added} new, cursor {pages.cursor}"
        )
        if added:
            self.messages_changed.emit(ref, added)
        if rerun:
            self._schedule_followup(ref)
        return added

    def _schedule_followup(self, ref: MailboxRef) -> None:
        if ref in self._followups:
            return
        task = asyncio.ensure_future(self.invalidate(ref))
        self._followups[ref] = task
        task.add_done_callback(lambda t: self._forget_followup(ref, t))

    def _forget_followup(self, ref: MailboxRef, task: asyncio.Task) -> None:
        if self._followups.get(ref) is task:
            del self._followups[ref]

    def purge_account(self, account_id: int) -> None:
        """Drop every cached mailbox of an account, including fetch bookkeeping."""
        for ref in [r for r in self._pages if r.account_id == account_id]:
            del self._pages[ref]
        for ref in [r for r in self._followups if r.account_id == account_id]:
            self._followups.pop(ref).cancel()

    def retain_mailboxes(self, account_id: int, names: Iterable[str]) -> None:
        """Drop cached mailboxes of an account that are no longer listed."""
        keep = set(names)
        for ref in [r for r in self._pages if r.account_id == account_id and r.name not in keep]:
            logger.debug(f"Dropping cache of vanished mailbox {ref}")
            del self._pages[ref]

    async def aclose(self) -> None:
        """Cancel scheduled follow-up refetches and page requests in flight."""
        tasks = list(self._followups.values())
        self._followups.clear()
        tasks.extend(p.state.task for p in self._pages.values() if p.busy)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
