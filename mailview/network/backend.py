"""
Backend boundary for the mail session layer.

The mail backend (IMAP access, OAuth token exchange, server-side caching)
lives outside this package. It is reached through asynchronous
request/response calls, described by :class:`MailBackend`, and through
unsolicited push events delivered by a :class:`PushChannel`.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from PyQt5.QtCore import QObject, pyqtSignal

from mailview import config
from mailview.models import MessageSummary
from mailview.utils.errors import BackendUnavailable, MailViewError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returned by ``login_user`` when the credentials are rejected
LOGIN_FAILED = -1

# Push event names
OAUTH_SUCCESS = "OAuthSuccess"
OAUTH_FAILURE = "OAuthFailure"
USER_LOGGED_OUT = "UserLoggedOut"
MAILBOXES_UPDATED = "MailboxesUpdated"
MESSAGES_UPDATED = "MessagesUpdated"

PUSH_EVENTS = (
    OAUTH_SUCCESS,
    OAUTH_FAILURE,
    USER_LOGGED_OUT,
    MAILBOXES_UPDATED,
    MESSAGES_UPDATED,
)


class MailBackend(ABC):
    """Request/response calls offered by the mail backend."""

    @abstractmethod
    async def get_account_ids(self) -> List[int]:
        """List the account handles the backend knows about."""
        pass

    @abstractmethod
    async def is_logged_in(self, account_id: int) -> bool:
        """Check whether an account handle is still active."""
        pass

    @abstractmethod
    async def login_user(self, endpoint: str, email: str, password: str) -> Optional[int]:
        """Log in with credentials; returns an account id or LOGIN_FAILED."""
        pass

    @abstractmethod
    async def login_user_with_oauth(self, provider_name: str) -> bool:
        """Start an external OAuth flow; True only means the flow started."""
        pass

    @abstractmethod
    async def logout_user(self, account_id: int) -> None:
        """Log an account out on the backend."""
        pass

    @abstractmethod
    async def get_mailboxes(self, account_id: int) -> List[str]:
        """List raw mailbox names of an account."""
        pass

    @abstractmethod
    async def get_emails_for_mailbox(
        self, account_id: int, mailbox_name: str, offset: int, limit: int
    ) -> List[MessageSummary]:
        """Fetch one page of message summaries, newest first."""
        pass

    @abstractmethod
    async def get_email_body(self, account_id: int, mailbox_name: str, uid: int) -> str:
        """Fetch the renderable HTML body of one message."""
        pass

    @abstractmethod
    async def update_mailboxes(self, account_id: int) -> None:
        """Ask the backend to resync mailboxes; the result arrives as a push event."""
        pass

    @abstractmethod
    async def update_messages(self, account_id: int, mailbox_name: str) -> None:
        """Ask the backend to resync a mailbox; the result arrives as a push event."""
        pass


class PushChannel(ABC):
    """Source of backend-initiated events."""

    @abstractmethod
    def subscribe(self, event_name: str, handler: Callable[..., Any]) -> Callable[[], None]:
        """
        Register a handler for an event.

        Args:
            event_name: One of the PUSH_EVENTS names.
            handler: Callable invoked with the event payload.

        Returns:
            A callable that removes the subscription.
        """
        pass


class _PushSignals(QObject):
    """One Qt signal per push event, named after it; payloads travel as a tuple."""

    OAuthSuccess = pyqtSignal(tuple)
    OAuthFailure = pyqtSignal(tuple)
    UserLoggedOut = pyqtSignal(tuple)
    MailboxesUpdated = pyqtSignal(tuple)
    MessagesUpdated = pyqtSignal(tuple)


class LocalPushChannel(PushChannel):
    """
    In-process push channel.

    Backends running in the same process publish events here; it is also what
    the tests drive. A handler that raises is logged and does not stop
    delivery to the others.
    """

    def __init__(self):
        self._signals = _PushSignals()

    def _signal(self, event_name: str):
        if event_name not in PUSH_EVENTS:
            raise ValueError(f"Unknown push event: {event_name}")
        return getattr(self._signals, event_name)

    def subscribe(self, event_name: str, handler: Callable[..., Any]) -> Callable[[], None]:
        signal = self._signal(event_name)

        def deliver(payload: tuple) -> None:
            try:
                handler(*payload)
            except Exception:
                logger.exception(f"Handler for push event {event_name} failed")

        connection = signal.connect(deliver)

        def unsubscribe() -> None:
            nonlocal connection
            if connection is not None:
                signal.disconnect(connection)
                connection = None

        return unsubscribe

    def publish(self, event_name: str, *payload: Any) -> None:
        logger.debug(f"Push event {event_name}{payload}")
        self._signal(event_name).emit(tuple(payload))

    def subscriber_count(self, event_name: str) -> int:
        return self._signals.receivers(self._signal(event_name))


async def call_backend(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = None,
) -> T:
    """
    Await a backend call, mapping failures to BackendUnavailable.

    Args:
        awaitable: The pending backend call.
        operation: Name used in log and error messages.
        timeout: Seconds before giving up (defaults to config); 0 waits forever.

    Returns:
        The call's result.

    Raises:
        BackendUnavailable: If the call raised or timed out.
        MailViewError: Re-raised unchanged if the backend raised one.
    """
    if timeout is None:
        timeout = config.BACKEND_TIMEOUT_SECONDS
    try:
        if timeout:
            return await asyncio.wait_for(awaitable, timeout)
        return await awaitable
    except MailViewError:
        raise
    except asyncio.TimeoutError as e:
        raise BackendUnavailable(f"{operation} timed out after {timeout}s") from e
    except Exception as e:
        raise BackendUnavailable(f"{operation} failed: {e}") from e
