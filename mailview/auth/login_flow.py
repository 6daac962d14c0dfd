"""
Login flow state machine.

Credential branch::

    PROVIDER_SELECT -> CREDENTIAL_ENTRY -> SUBMITTING -> SUCCESS
                                                     \\-> FAILURE -> CREDENTIAL_ENTRY

OAuth branch::

    PROVIDER_SELECT -> EXTERNAL_AUTH_PENDING -> SUCCESS
                                            \\-> FAILURE -> PROVIDER_SELECT

Leaving EXTERNAL_AUTH_PENDING happens only through the OAuthSuccess and
OAuthFailure push events, never through a timer or a return value.
"""
import logging
from enum import Enum
from typing import Optional

from PyQt5.QtCore import QObject, pyqtSignal

from mailview.auth.accounts import AccountRegistry
from mailview.auth.providers import EmailProvider, get_provider
from mailview.utils.errors import MailViewError, OAuthError, human_friendly_message
from mailview.utils.helpers import validate_email


logger = logging.getLogger(__name__)

MISSING_ENDPOINT_MESSAGE = "Please enter the IMAP URL."
INVALID_EMAIL_MESSAGE = "Please enter a valid email address."
MISSING_PASSWORD_MESSAGE = "Please enter your password."


class LoginStep(Enum):
    PROVIDER_SELECT = "providerSelect"
    CREDENTIAL_ENTRY = "credentialEntry"
    SUBMITTING = "submitting"
    EXTERNAL_AUTH_PENDING = "externalAuthPending"
    SUCCESS = "success"
    FAILURE = "failure"


class LoginFlowError(MailViewError):
    """Raised when an action is not valid in the current step."""
    pass


class LoginFlow(QObject):
    """
    Drives one login to completion and registers the resulting account.

    Signals:
        step_changed(LoginStep): emitted on every transition.
    """

    step_changed = pyqtSignal(object)

    def __init__(self, registry: AccountRegistry, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._registry = registry
        self.step = LoginStep.PROVIDER_SELECT
        self.provider: Optional[EmailProvider] = None
        self.endpoint = ""
        self.email = ""
        self.password = ""
        self.error = ""
        self.account_id: Optional[int] = None

    @property
    def shows_endpoint_field(self) -> bool:
        """The free-text endpoint field is only shown for the custom provider."""
        return self.provider is not None and self.provider.is_custom

    def _transition(self, step: LoginStep) -> None:
        logger.debug(f"Login flow: {self.step.value} -> {step.value}")
        self.step = step
        self.step_changed.emit(step)

    def _require(self, *steps: LoginStep) -> None:
        if self.step not in steps:
            raise LoginFlowError(f"Not allowed while in step {self.step.value}")

    async def choose_provider(self, name: str) -> None:
        """
        Pick a provider on the selection screen.

        OAuth providers start the external flow and wait for its push event.
        Other providers move to credential entry, with the endpoint pre-filled
        from the provider table (left blank and editable for "Custom").

        Args:
            name: Provider display name.

        Raises:
            LoginFlowError: If not on the provider selection step or the
                provider is unknown.
        """
        self._require(LoginStep.PROVIDER_SELECT)
        provider = get_provider(name)
        if provider is None:
            raise LoginFlowError(f"Unknown provider: {name}")

        self.error = ""
        self.provider = provider

        if provider.requires_oauth:
            self._transition(LoginStep.EXTERNAL_AUTH_PENDING)
            try:
                await self._registry.login_with_oauth(provider.name)
            except OAuthError as e:
                logger.warning(f"OAuth flow for {provider.name} did not start: {e}")
                self._fail_oauth(human_friendly_message(e))
            return

        self.endpoint = provider.endpoint
        self._transition(LoginStep.CREDENTIAL_ENTRY)

    def set_endpoint(self, value: str) -> None:
        self._require(LoginStep.CREDENTIAL_ENTRY)
        if not self.shows_endpoint_field:
            raise LoginFlowError(f"{self.provider.name} has a fixed endpoint")
        self.error = ""
        self.endpoint = value

    def set_email(self, value: str) -> None:
        self._require(LoginStep.CREDENTIAL_ENTRY)
        self.error = ""
        self.email = value

    def set_password(self, value: str) -> None:
        self._require(LoginStep.CREDENTIAL_ENTRY)
        self.error = ""
        self.password = value

    def back(self) -> None:
        """Return to provider selection, clearing the entered credentials."""
        self._require(LoginStep.CREDENTIAL_ENTRY)
        self.provider = None
        self.endpoint = ""
        self.email = ""
        self.password = ""
        self.error = ""
        self._transition(LoginStep.PROVIDER_SELECT)

    async def submit(self) -> Optional[int]:
        """
        Submit the entered credentials.

        Local validation failures stay on credential entry without calling
        the backend. A rejected login passes through FAILURE back to
        credential entry with the error attached and the password cleared.

        Returns:
            The new account id, or None if the login did not succeed.
        """
        self._require(LoginStep.CREDENTIAL_ENTRY)
        endpoint = self.endpoint.strip()
        if not endpoint:
            self.error = MISSING_ENDPOINT_MESSAGE
            self.step_changed.emit(self.step)
            return None
        if not validate_email(self.email.strip()):
            self.error = INVALID_EMAIL_MESSAGE
            self.step_changed.emit(self.step)
            return None
        if not self.password:
            self.error = MISSING_PASSWORD_MESSAGE
            self.step_changed.emit(self.step)
            return None

        self._transition(LoginStep.SUBMITTING)
        try:
            account_id = await self._registry.login(endpoint, self.email.strip(), self.password)
        except MailViewError as e:
            self.password = ""
            self.error = human_friendly_message(e)
            self._transition(LoginStep.FAILURE)
            self._transition(LoginStep.CREDENTIAL_ENTRY)
            return None

        self.password = ""
        self.account_id = account_id
        self._transition(LoginStep.SUCCESS)
        return account_id

    def handle_oauth_success(self, account_id: int) -> None:
        """Complete a pending OAuth login; ignored in any other step."""
        if self.step is not LoginStep.EXTERNAL_AUTH_PENDING:
            logger.debug(f"OAuthSuccess for account {account_id} outside a pending flow")
            return
        self.account_id = account_id
        self.error = ""
        self._transition(LoginStep.SUCCESS)

    def handle_oauth_failure(self) -> None:
        """Fail a pending OAuth login; ignored in any other step."""
        if self.step is not LoginStep.EXTERNAL_AUTH_PENDING:
            logger.debug("OAuthFailure outside a pending flow")
            return
        self._fail_oauth(human_friendly_message(OAuthError()))

    def _fail_oauth(self, message: str) -> None:
        self.error = message
        self.provider = None
        self._transition(LoginStep.FAILURE)
        self._transition(LoginStep.PROVIDER_SELECT)

    def reset(self) -> None:
        """Start over, e.g. to add another account after a successful login."""
        self.provider = None
        self.endpoint = ""
        self.email = ""
        self.password = ""
        self.error = ""
        self.account_id = None
        self._transition(LoginStep.PROVIDER_SELECT)
