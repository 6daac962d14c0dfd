"""
Centralized error hierarchy for the mail session layer.

This module provides a base exception class and the error types surfaced by
the session components, along with a helper converting them to user-friendly
messages for inline display.

An empty result (no mailboxes, no messages) is not an error and has no
exception type: components return empty lists and the UI renders an empty
state.
"""
import asyncio
from typing import Union


class MailViewError(Exception):
    """
    Base exception class for all session-layer errors.

    All application-specific exceptions inherit from this class to enable
    centralized error handling and user-friendly message mapping.
    """
    pass


class CredentialError(MailViewError):
    """Raised when the backend rejects an email/password/endpoint triple."""
    pass


class OAuthError(MailViewError):
    """Raised when an external OAuth flow failed or never started."""
    pass


class BackendUnavailable(MailViewError):
    """Raised when a backend call is rejected or times out."""
    pass


class SessionError(MailViewError):
    """Raised when the session lifecycle is misused."""
    pass


INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
OAUTH_FAILED_MESSAGE = "OAuth login failed."
BACKEND_FAILED_MESSAGE = (
    "Could not reach the mail server. Please check your connection and "
    "try refreshing."
)


def human_friendly_message(exc: Union[MailViewError, Exception]) -> str:
    """
    Convert an exception to a message suitable for inline display.

    Args:
        exc: The exception to convert.

    Returns:
        A user-friendly error message string.
    """
    if isinstance(exc, CredentialError):
        return INVALID_CREDENTIALS_MESSAGE
    if isinstance(exc, OAuthError):
        return OAUTH_FAILED_MESSAGE
    if isinstance(exc, BackendUnavailable):
        return BACKEND_FAILED_MESSAGE
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return BACKEND_FAILED_MESSAGE
    if isinstance(exc, MailViewError) and str(exc):
        return f"An error occurred: {exc}"

    error_msg = str(exc) if str(exc) else "Unknown error"
    return f"An error occurred: {error_msg}"
