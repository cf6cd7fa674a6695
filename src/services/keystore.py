"""
Keystore Service - Account custody façade.

Composes the account store, the secret store and the session:
- create / import / export / delete accounts
- change account passwords
- sign transactions with a scoped unlock

Every operation is available synchronously (raising a KeystoreError subclass
on failure) and as a background operation that completes exactly once.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Union

from custody.crypto import generate_password
from custody.exceptions import (
    DecryptionFailed,
    ImportFailed,
    KeystoreError,
    PasswordPersistenceFailed,
    ProtectionUnavailable,
    SigningFailed,
)
from custody.manager import AccountStore
from models import Account, SignableTransaction
from .secret_store import SecretStore, DEFAULT_ACCESS
from .session import AccountSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


# ============================================
# Import Sources
# ============================================

@dataclass
class KeystoreImport:
    """A serialized keystore record and the password it is encrypted with."""
    keystore_json: str
    password: str


@dataclass
class PrivateKeyImport:
    """A raw hex private key (with or without 0x prefix)."""
    private_key: str


ImportSource = Union[KeystoreImport, PrivateKeyImport]


# ============================================
# Background Operations
# ============================================

class OperationState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class KeystoreOperation:
    """Handle on a background keystore operation."""

    def __init__(self, name: str):
        self.name = name
        self._future: Optional[Future] = None

    @property
    def state(self) -> OperationState:
        future = self._future
        if future is None:
            return OperationState.IDLE
        if not future.done():
            return OperationState.IN_PROGRESS
        if future.exception() is not None:
            return OperationState.FAILED
        return OperationState.SUCCEEDED

    @property
    def done(self) -> bool:
        return self.state in (OperationState.SUCCEEDED, OperationState.FAILED)

    def result(self, timeout: Optional[float] = None) -> Any:
        """Wait for the outcome; re-raises the operation's error."""
        if self._future is None:
            raise RuntimeError(f"Operation {self.name} was never started")
        return self._future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        if self._future is None:
            raise RuntimeError(f"Operation {self.name} was never started")
        return self._future.exception(timeout)

    def __repr__(self) -> str:
        return f"KeystoreOperation(name='{self.name}', state='{self.state.value}')"


class AccountLocks:
    """
    One mutex per account address.

    An entry lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._locks: dict[str, list] = {}  # address -> [lock, users]
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, address: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(address, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[address]


# ============================================
# Service
# ============================================

class KeystoreService:
    """
    Entry point for everything that touches keys.

    Flow for each operation:
    1. Resolve the account password from the secret store (or generate one)
    2. Let the account store encrypt/decrypt the record
    3. Persist the password and remember the account as recently used

    Usage:
        service = KeystoreService(AccountStore(keystore_dir), secret_store)
        account = service.create_account("password")
        raw_tx = service.sign_transaction(tx)

        # Off the caller's thread
        op = service.submit_create_account("password", on_complete=show_result)
    """

    def __init__(self, account_store: AccountStore, secret_store: SecretStore,
                 session: Optional[AccountSession] = None,
                 max_workers: int = DEFAULT_MAX_WORKERS,
                 dispatcher: Optional[Callable[[Callable[[], None]], None]] = None):
        """
        Initialize the service.

        Args:
            account_store: Keystore record storage
            secret_store: Password storage (must be unlocked)
            session: Recently used account tracker (created if omitted)
            max_workers: Background worker threads
            dispatcher: Delivers completion callbacks, e.g. onto a UI loop.
                        Callbacks run on the worker thread when omitted.

        Raises:
            ProtectionUnavailable: If the secret store is locked
        """
        if not secret_store.is_available():
            raise ProtectionUnavailable("Protected data is not available")

        self.account_store = account_store
        self.secret_store = secret_store
        self.session = session or AccountSession(secret_store, account_store)
        self._dispatcher = dispatcher
        self._account_locks = AccountLocks()
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="keystore")

    # ============================================
    # Accounts & Passwords
    # ============================================

    @property
    def accounts(self) -> list[Account]:
        return self.account_store.list_accounts()

    @property
    def has_accounts(self) -> bool:
        return self.account_store.has_accounts

    def get_password(self, account: Account) -> Optional[str]:
        return self.secret_store.get(account.address)

    def _store_password(self, account: Account, password: str) -> None:
        if not self.secret_store.set(account.address, password, DEFAULT_ACCESS):
            logger.critical(f"Password for {account.address} could not be stored")
            raise PasswordPersistenceFailed(account.address)

    def _resolve_password(self, account: Account, password: Optional[str]) -> str:
        if password is not None:
            return password
        # Raises AccountNotFound before a missing password is reported
        self.account_store.get(account.address)
        stored = self.get_password(account)
        if stored is None:
            raise DecryptionFailed(f"No stored password for {account.address}")
        return stored

    def select_account(self, account: Account) -> None:
        """Mark an account as the recently used one."""
        self.session.set_recently_used(account)

    # ============================================
    # Operations
    # ============================================

    def create_account(self, password: str) -> Account:
        """
        Create a new account protected by password.

        Raises:
            PasswordPersistenceFailed: If the password could not be stored
                                       (the new record is removed again)
            RecordWriteFailed: If the record could not be written
        """
        account = self.account_store.create(password)
        with self._account_locks.hold(account.address):
            try:
                self._store_password(account, password)
            except PasswordPersistenceFailed:
                self.account_store.delete(account, password)
                raise
        self.select_account(account)
        return account

    def import_wallet(self, source: ImportSource) -> Account:
        """
        Import a keystore record or a raw private key.

        Both forms end up as a record encrypted under a freshly generated
        password that only lives in the secret store.

        Raises:
            ImportFailed, DuplicateAccount, PasswordPersistenceFailed
        """
        new_password = generate_password()

        if isinstance(source, PrivateKeyImport):
            keystore_json = self.account_store.keystore_for_private_key(
                source.private_key, new_password
            )
            password = new_password
        elif isinstance(source, KeystoreImport):
            keystore_json = source.keystore_json
            password = source.password
        else:
            raise ImportFailed(TypeError(f"Unsupported import source: {type(source).__name__}"))

        account = self.account_store.import_key(keystore_json, password, new_password)
        with self._account_locks.hold(account.address):
            try:
                self._store_password(account, new_password)
            except PasswordPersistenceFailed:
                self.account_store.delete(account, new_password)
                raise
        self.select_account(account)
        return account

    def export(self, account: Account, new_password: str, password: Optional[str] = None) -> str:
        """
        Export an account as a keystore record encrypted under new_password.

        Uses the stored password unless one is given.

        Raises:
            AccountNotFound, DecryptionFailed
        """
        with self._account_locks.hold(account.address):
            password = self._resolve_password(account, password)
            return self.account_store.export(account, password, new_password)

    def delete(self, account: Account, password: Optional[str] = None) -> None:
        """
        Delete an account's record and its stored password.

        Raises:
            AccountNotFound, DecryptionFailed, PasswordPersistenceFailed
        """
        with self._account_locks.hold(account.address):
            password = self._resolve_password(account, password)
            self.account_store.delete(account, password)
            if not self.secret_store.delete(account.address):
                logger.critical(f"Stored password for deleted account {account.address} was not removed")
                raise PasswordPersistenceFailed(account.address)
        self.session.forget(account)

    def update_account(self, account: Account, password: str, new_password: str) -> None:
        """
        Change an account's password.

        If the new password cannot be stored, the record is switched back to
        the old password so the stored one keeps working.

        Raises:
            AccountNotFound, DecryptionFailed, PasswordPersistenceFailed,
            RecordWriteFailed
        """
        with self._account_locks.hold(account.address):
            self.account_store.update_password(account, password, new_password)
            if not self.secret_store.set(account.address, new_password, DEFAULT_ACCESS):
                logger.critical(f"Password for {account.address} could not be stored, reverting")
                try:
                    self.account_store.update_password(account, new_password, password)
                except KeystoreError as e:
                    logger.critical(f"Revert failed, record for {account.address} "
                                    f"no longer matches the stored password: {e}")
                    raise PasswordPersistenceFailed(account.address) from e
                raise PasswordPersistenceFailed(account.address)

    def sign_transaction(self, tx: SignableTransaction) -> bytes:
        """
        Sign a transaction and return its RLP encoding.

        The key is unlocked only for the signing call and locked again on
        every exit path.

        Raises:
            SigningFailed: For any failure (missing password, wrong password,
                           missing account, signing error)
        """
        account = tx.account
        with self._account_locks.hold(account.address):
            try:
                password = self.get_password(account)
                if password is None:
                    raise SigningFailed(f"No stored password for {account.address}")
                with self.account_store.unlocked(account, password):
                    return self.account_store.sign_transaction(tx)
            except SigningFailed:
                raise
            except Exception as e:
                logger.error(f"Signing error for {account.short_address}: {e}")
                raise SigningFailed(f"Failed to sign transaction for {account.address}") from e

    # ============================================
    # Background Dispatch
    # ============================================

    def _submit(self, name: str, fn: Callable, *args,
                on_complete: Optional[Callable[[KeystoreOperation], None]] = None) -> KeystoreOperation:
        operation = KeystoreOperation(name)
        future = self._executor.submit(fn, *args)
        operation._future = future

        if on_complete is not None:
            def deliver(_future: Future) -> None:
                def notify() -> None:
                    try:
                        on_complete(operation)
                    except Exception:
                        logger.exception(f"Completion callback for {name} raised")

                if self._dispatcher is not None:
                    self._dispatcher(notify)
                else:
                    notify()

            future.add_done_callback(deliver)
        return operation

    def submit_create_account(self, password: str, on_complete=None) -> KeystoreOperation:
        return self._submit("create_account", self.create_account, password,
                            on_complete=on_complete)

    def submit_import_wallet(self, source: ImportSource, on_complete=None) -> KeystoreOperation:
        return self._submit("import_wallet", self.import_wallet, source,
                            on_complete=on_complete)

    def submit_export(self, account: Account, new_password: str,
                      password: Optional[str] = None, on_complete=None) -> KeystoreOperation:
        return self._submit("export", self.export, account, new_password, password,
                            on_complete=on_complete)

    def submit_delete(self, account: Account, password: Optional[str] = None,
                      on_complete=None) -> KeystoreOperation:
        return self._submit("delete", self.delete, account, password,
                            on_complete=on_complete)

    def submit_update_account(self, account: Account, password: str, new_password: str,
                              on_complete=None) -> KeystoreOperation:
        return self._submit("update_account", self.update_account, account, password,
                            new_password, on_complete=on_complete)

    def submit_sign_transaction(self, tx: SignableTransaction,
                                on_complete=None) -> KeystoreOperation:
        return self._submit("sign_transaction", self.sign_transaction, tx,
                            on_complete=on_complete)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; in-flight operations run to completion."""
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "KeystoreService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
