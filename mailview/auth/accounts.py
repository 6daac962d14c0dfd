"""
Account management for the mail session layer.

This module tracks the account handles issued by the backend and their login
status. Accounts are created on successful login and removed on logout or
when startup reconciliation finds them inactive; removal is announced through
``account_removed`` so dependent caches can purge themselves synchronously.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from PyQt5.QtCore import QObject, pyqtSignal

from mailview.models import Account, AccountStatus
from mailview.network.backend import LOGIN_FAILED, MailBackend, call_backend
from mailview.utils.errors import BackendUnavailable, CredentialError, OAuthError


logger = logging.getLogger(__name__)


class AccountRegistry(QObject):
    """
    Set of active accounts, in the order they were added.

    Signals:
        account_added(Account): a new account became active.
        account_removed(int): an account left the working set.
    """

    account_added = pyqtSignal(object)
    account_removed = pyqtSignal(int)

    def __init__(
        self,
        backend: MailBackend,
        timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ):
        """
        Initialize the registry.

        Args:
            backend: The mail backend.
            timeout: Per-call timeout in seconds (defaults to config).
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._backend = backend
        self._timeout = timeout
        self._accounts: Dict[int, Account] = {}

    @property
    def accounts(self) -> List[Account]:
        """Active accounts in insertion order."""
        return list(self._accounts.values())

    @property
    def account_ids(self) -> List[int]:
        return list(self._accounts)

    def get(self, account_id: int) -> Optional[Account]:
        return self._accounts.get(account_id)

    def is_active(self, account_id: int) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    async def initialize(self) -> List[Account]:
        """
        Reconcile with the backend's known accounts.

        Each known handle is checked for liveness; inactive ones, and ones
        whose check fails, are dropped without raising.

        Returns:
            The active accounts after reconciliation.

        Raises:
            BackendUnavailable: If the account list itself cannot be read.
        """
        account_ids = await call_backend(
            self._backend.get_account_ids(), "GetAccountIds", self._timeout
        )
        for account_id in account_ids or []:
            try:
                alive = await call_backend(
                    self._backend.is_logged_in(account_id), "IsLoggedIn", self._timeout
                )
            except BackendUnavailable as e:
                logger.warning(f"Dropping account {account_id}: liveness check failed: {e}")
                alive = False

            if alive:
                self.add(account_id)
            else:
                logger.info(f"Account {account_id} is no longer logged in; dropping it")
                self.remove(account_id)

        return self.accounts

    async def login(self, endpoint: str, email: str, password: str) -> int:
        """
        Log in with credentials.

        Args:
            endpoint: IMAP endpoint as ``host:port``.
            email: Email address.
            password: Password or app-specific password.

        Returns:
            The new account id.

        Raises:
            CredentialError: If the backend rejected the credentials.
            BackendUnavailable: If the backend could not be reached.
        """
        account_id = await call_backend(
            self._backend.login_user(endpoint, email, password), "LoginUser", self._timeout
        )
        if account_id is None or account_id == LOGIN_FAILED or account_id < 0:
            logger.info(f"Login rejected for {email} at {endpoint}")
            raise CredentialError(f"Login rejected for {email}")

        logger.info(f"Logged in {email} as account {account_id}")
        self.add(account_id, email_address=email, endpoint=endpoint)
        return account_id

    async def login_with_oauth(self, provider_name: str) -> bool:
        """
        Start an external OAuth flow.

        The return value only signals that the flow started; completion
        arrives later as an OAuthSuccess or OAuthFailure push event.

        Args:
            provider_name: Provider display name, e.g. "Gmail".

        Returns:
            True once the flow has started.

        Raises:
            OAuthError: If the flow could not be started.
        """
        try:
            started = await call_backend(
                self._backend.login_user_with_oauth(provider_name),
                "LoginUserWithOAuth",
                self._timeout,
            )
        except BackendUnavailable as e:
            raise OAuthError(f"Could not start OAuth flow for {provider_name}") from e

        if not started:
            raise OAuthError(f"OAuth flow for {provider_name} did not start")
        logger.info(f"OAuth flow started for {provider_name}")
        return True

    async def logout(self, account_id: int) -> None:
        """
        Log an account out.

        The backend request is issued first; local state is then removed
        immediately, without waiting for the response or for a confirming
        push event. A failing backend logout is logged and otherwise ignored.

        Args:
            account_id: The account to log out.
        """
        request = asyncio.ensure_future(
            call_backend(self._backend.logout_user(account_id), "LogoutUser", self._timeout)
        )
        self.remove(account_id)
        try:
            await request
        except BackendUnavailable as e:
            logger.warning(f"Backend logout for account {account_id} failed: {e}")

    def add(
        self,
        account_id: int,
        email_address: str = "",
        endpoint: str = "",
    ) -> Account:
        """
        Register an active account; re-adding an existing id is a no-op.

        Returns:
            The registered Account.
        """
        existing = self._accounts.get(account_id)
        if existing is not None:
            if email_address and not existing.email_address:
                existing.email_address = email_address
            if endpoint and not existing.endpoint:
                existing.endpoint = endpoint
            return existing

        account = Account(id=account_id, email_address=email_address, endpoint=endpoint)
        self._accounts[account_id] = account
        self.account_added.emit(account)
        return account

    def remove(self, account_id: int) -> bool:
        """
        Drop an account from the working set.

        Returns:
            True if the account was active, False for an unknown or already
            removed account.
        """
        account = self._accounts.pop(account_id, None)
        if account is None:
            return False
        account.status = AccountStatus.LOGGED_OUT
        logger.info(f"Account {account_id} removed")
        self.account_removed.emit(account_id)
        return True
