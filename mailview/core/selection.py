"""
Selection and body-loading state.

The controller tracks the active mailbox, the active message and the state
of its body fetch. Every body request captures a token; a completion whose
token is no longer current (the selection moved on, the mailbox changed, the
account logged out) is discarded.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PyQt5.QtCore import QObject, pyqtSignal

from mailview.core.message_cache import MessagePageCache
from mailview.models import MailboxRef, MessageKey
from mailview.network.backend import MailBackend, call_backend
from mailview.utils.errors import BackendUnavailable, human_friendly_message


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BodyEmpty:
    """Nothing selected, or the selection was cleared."""


@dataclass(frozen=True)
class BodyLoading:
    key: MessageKey
    token: int


@dataclass(frozen=True)
class BodyLoaded:
    key: MessageKey
    html: str


@dataclass(frozen=True)
class BodyFailed:
    key: MessageKey
    message: str


BodyState = Union[BodyEmpty, BodyLoading, BodyLoaded, BodyFailed]

BODY_EMPTY = BodyEmpty()


class SelectionController(QObject):
    """
    Active mailbox/message plus body state.

    Signals:
        changed(): selection or body state changed.
    """

    changed = pyqtSignal()

    def __init__(
        self,
        backend: MailBackend,
        cache: MessagePageCache,
        supersede_pending: bool = True,
        timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        """
        Initialize the controller.

        Args:
            backend: The mail backend.
            cache: The message page cache.
            supersede_pending: If True, selecting a different message while a
                body is loading replaces the pending request; if False such a
                click is ignored.
            timeout: Per-call timeout in seconds (defaults to config).
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._backend = backend
        self._cache = cache
        self.supersede_pending = supersede_pending
        self._timeout = timeout
        self._tokens = itertools.count(1)
        self._current_token = 0
        self.selected_mailbox: Optional[MailboxRef] = None
        self.selected_message: Optional[MessageKey] = None
        self.body_state: BodyState = BODY_EMPTY

    @property
    def loading(self) -> bool:
        return isinstance(self.body_state, BodyLoading)

    @property
    def body(self) -> str:
        """Body to display; empty while loading, after failure or with no selection."""
        if isinstance(self.body_state, BodyLoaded):
            return self.body_state.html
        return ""

    async def select_mailbox(self, ref: MailboxRef) -> bool:
        """
        Make a mailbox the active one.

        Reselecting the active mailbox does nothing. Otherwise the message
        selection is cleared and, if the mailbox has nothing cached yet, its
        first page is fetched.

        Args:
            ref: The mailbox to select.

        Returns:
            True if the selection changed.

        Raises:
            BackendUnavailable: If the initial page fetch failed; the
                selection still moves to ``ref``.
        """
        if ref == self.selected_mailbox:
            return False

        self.selected_mailbox = ref
        self._reset_message()
        self.changed.emit()

        if self._cache.count(ref) == 0:
            await self._cache.fetch_next_page(ref)
        return True

    async def select_message(self, key: MessageKey) -> bool:
        """
        Make a message the active one and load its body.

        Selecting the message that is already selected (or loading) does
        nothing. Body fetch errors leave an empty placeholder with an error
        message rather than a previous message's content.

        Args:
            key: The message to select.

        Returns:
            True if the fetched body was stored for display.
        """
        if key == self.selected_message:
            return False
        if self.loading and not self.supersede_pending:
            logger.debug(f"Ignoring selection of {key}; a body is still loading")
            return False

        token = next(self._tokens)
        self._current_token = token
        self.selected_message = key
        self.body_state = BodyLoading(key, token)
        self.changed.emit()

        try:
            html = await call_backend(
                self._backend.get_email_body(key.account_id, key.mailbox_name, key.uid),
                "GetEmailBody",
                self._timeout,
            )
        except BackendUnavailable as e:
            if token != self._current_token:
                return False
            logger.warning(f"Loading body of {key} failed: {e}")
            self.body_state = BodyFailed(key, human_friendly_message(e))
            self.changed.emit()
            return False

        if token != self._current_token:
            logger.debug(f"Discarding stale body for {key}")
            return False

        self.body_state = BodyLoaded(key, html or "")
        self.changed.emit()
        return True

    def clear_message(self) -> None:
        """Deselect the message; any pending body result will be discarded."""
        if self.selected_message is None and isinstance(self.body_state, BodyEmpty):
            return
        self._reset_message()
        self.changed.emit()

    def clear_account(self, account_id: int) -> None:
        """Drop any selection that belongs to an account."""
        if self.selected_mailbox is not None and self.selected_mailbox.account_id == account_id:
            self.selected_mailbox = None
            self._reset_message()
            self.changed.emit()
        elif self.selected_message is not None and self.selected_message.account_id == account_id:
            self.clear_message()

    def _reset_message(self) -> None:
        self._current_token = next(self._tokens)
        self.selected_message = None
        self.body_state = BODY_EMPTY
