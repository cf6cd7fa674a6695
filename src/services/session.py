"""
Account Session - Per-application account context.

Created once at startup and passed to whoever needs the "current" account.
The recently used account is persisted in the secret store under a reserved
key so it survives restarts.
"""

import logging
from typing import Optional

from custody.manager import AccountStore
from models import Account
from .secret_store import SecretStore, RECENTLY_USED_KEY, DEFAULT_ACCESS

logger = logging.getLogger(__name__)


class AccountSession:
    """Tracks the recently used account."""

    def __init__(self, secret_store: SecretStore, account_store: AccountStore):
        self._secret_store = secret_store
        self._account_store = account_store

    @property
    def recently_used_account(self) -> Optional[Account]:
        """The last selected account, if it still exists."""
        address = self._secret_store.get(RECENTLY_USED_KEY)
        if not address:
            return None
        try:
            return self._account_store.find(address)
        except ValueError:
            logger.warning(f"Ignoring malformed recently used address: {address!r}")
            return None

    def set_recently_used(self, account: Optional[Account]) -> bool:
        """Remember an account (or clear with None). Returns the store's success flag."""
        if account is None:
            ok = self._secret_store.delete(RECENTLY_USED_KEY)
        else:
            ok = self._secret_store.set(RECENTLY_USED_KEY, account.address, DEFAULT_ACCESS)
        if not ok:
            logger.warning("Failed to persist recently used account")
        return ok

    def forget(self, account: Account) -> None:
        """Clear the pointer if it names this account."""
        address = self._secret_store.get(RECENTLY_USED_KEY)
        if address and address.lower() == account.address:
            self.set_recently_used(None)
