"""
Account Store - On-disk collection of keystore records.

One JSON keystore file per account in the keystore directory, named the way
geth names them (UTC--<timestamp>--<address>). Encryption and decryption are
delegated to the KeystoreCodec; this module owns the files, the duplicate
check on import, and the unlock/lock window used for signing.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from eth_account import Account as EthAccount

from models import Account, SignableTransaction, normalize_address
from utils import set_secure_permissions
from .crypto import (
    KeystoreCodec,
    EncryptedKeyRecord,
    address_from_key,
    generate_private_key,
    parse_private_key,
)
from .exceptions import (
    AccountLocked,
    AccountNotFound,
    DuplicateAccount,
    ImportFailed,
    KeystoreError,
    RecordWriteFailed,
)

logger = logging.getLogger(__name__)

KEYSTORE_DIR_MODE = 0o700
RECORD_PREFIX = "UTC--"


def _wipe(buffer: bytearray) -> None:
    for i in range(len(buffer)):
        buffer[i] = 0


def sign_legacy_transaction(tx: SignableTransaction, private_key: bytes) -> bytes:
    """Sign an EIP-155 transaction with eth_account and return its RLP encoding."""
    signed = EthAccount.sign_transaction(tx.to_eth_dict(), private_key)
    return bytes(signed.raw_transaction)


class AccountStore:
    """
    Durable set of encrypted key records, one per account.

    Usage:
        store = AccountStore(get_keystore_dir())
        account = store.create("password")

        with store.unlocked(account, "password"):
            raw_tx = store.sign_transaction(tx)
    """

    def __init__(self, keystore_dir: str | Path, codec: Optional[KeystoreCodec] = None,
                 signer: Callable[[SignableTransaction, bytes], bytes] = sign_legacy_transaction):
        self.keystore_dir = Path(keystore_dir)
        self.keystore_dir.mkdir(parents=True, exist_ok=True, mode=KEYSTORE_DIR_MODE)
        self.codec = codec or KeystoreCodec()
        self._signer = signer
        # Guards every read-modify-write of the record files
        self._lock = threading.RLock()
        self._unlocked: dict[str, bytearray] = {}  # address -> key
        self._unlock_depth: dict[str, int] = {}  # open unlocked() blocks per address
        self._unlocked_lock = threading.Lock()

    # ============================================
    # File Operations
    # ============================================

    def _record_files(self) -> list[Path]:
        return sorted(
            p for p in self.keystore_dir.glob(f"{RECORD_PREFIX}*")
            if p.is_file() and p.suffix != ".tmp"
        )

    def _read_record(self, path: Path) -> Optional[EncryptedKeyRecord]:
        try:
            with open(path, "r") as f:
                record = EncryptedKeyRecord.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeystoreError) as e:
            logger.warning(f"Skipping unreadable keystore file {path.name}: {e}")
            return None
        if not record.address:
            logger.warning(f"Skipping keystore file without address: {path.name}")
            return None
        return record

    def _entries(self) -> list[tuple[Path, EncryptedKeyRecord]]:
        entries = []
        for path in self._record_files():
            record = self._read_record(path)
            if record is not None:
                entries.append((path, record))
        return entries

    def _find_entry(self, address: str) -> tuple[Path, EncryptedKeyRecord]:
        """Look up the record for an address. Raises AccountNotFound."""
        address = normalize_address(address)
        for path, record in self._entries():
            if "0x" + record.address == address:
                return path, record
        raise AccountNotFound(address)

    def _new_path(self, address: str) -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%fZ")
        path = self.keystore_dir / f"{RECORD_PREFIX}{timestamp}--{address[2:]}"
        counter = 1
        while path.exists():
            path = self.keystore_dir / f"{RECORD_PREFIX}{timestamp}-{counter}--{address[2:]}"
            counter += 1
        return path

    def _write_record(self, path: Path, record: EncryptedKeyRecord) -> None:
        """
        Write a record atomically (temp file + replace).

        Raises:
            RecordWriteFailed: If the file could not be written; no temp
                               file is left behind
        """
        temp_path = path.with_name(path.name + ".tmp")
        try:
            with open(temp_path, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
            set_secure_permissions(temp_path)
            temp_path.replace(path)
        except OSError as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"Could not remove {temp_path.name}: {cleanup_error}")
            logger.error(f"Failed to write keystore file {path.name}: {e}")
            raise RecordWriteFailed("0x" + (record.address or ""), e) from e

    # ============================================
    # Queries
    # ============================================

    def list_accounts(self) -> list[Account]:
        """All accounts, in storage order."""
        with self._lock:
            return [Account("0x" + record.address) for _, record in self._entries()]

    @property
    def has_accounts(self) -> bool:
        return bool(self.list_accounts())

    def find(self, address: str) -> Optional[Account]:
        """Account for an address, or None."""
        try:
            return self.get(address)
        except AccountNotFound:
            return None

    def get(self, address: str) -> Account:
        """Account for an address. Raises AccountNotFound."""
        with self._lock:
            _, record = self._find_entry(address)
        return Account("0x" + record.address)

    # ============================================
    # Mutations
    # ============================================

    def create(self, password: str) -> Account:
        """
        Generate a new key, store it encrypted under password.

        Raises:
            RecordWriteFailed: If the record could not be written
        """
        private_key = generate_private_key()
        record = self.codec.encrypt(private_key, password)
        account = Account("0x" + record.address)

        with self._lock:
            self._write_record(self._new_path(account.address), record)

        logger.info(f"Created account {account.short_address}")
        return account

    def keystore_for_private_key(self, private_key: str, password: str) -> str:
        """
        Wrap a hex private key into a serialized keystore record.

        Raises:
            ImportFailed: If the private key is invalid
        """
        try:
            key_bytes = parse_private_key(private_key)
        except ValueError as e:
            raise ImportFailed(e) from e
        return self.codec.encrypt(key_bytes, password).to_json()

    def import_key(self, keystore_json: str | bytes, password: str, new_password: str) -> Account:
        """
        Import a serialized keystore record, re-encrypted under new_password.

        Raises:
            ImportFailed: If the record cannot be parsed, decrypted or written
            DuplicateAccount: If the account is already in the store
        """
        try:
            private_key = self.codec.decrypt(keystore_json, password)
            address = address_from_key(private_key)
        except Exception as e:
            raise ImportFailed(e) from e

        record = self.codec.encrypt(private_key, new_password)

        with self._lock:
            path = self._new_path(address)
            try:
                self._write_record(path, record)
            except RecordWriteFailed as e:
                raise ImportFailed(e.cause) from e

            duplicates = [p for p, r in self._entries() if r.address == record.address]
            if len(duplicates) >= 2:
                path.unlink()
                logger.info(f"Rejected duplicate import of {address}")
                raise DuplicateAccount(address)

        account = Account(address)
        logger.info(f"Imported account {account.short_address}")
        return account

    def delete(self, account: Account, password: str) -> None:
        """
        Remove an account's record after checking the password.

        Raises:
            AccountNotFound, DecryptionFailed, RecordWriteFailed
        """
        with self._lock:
            path, record = self._find_entry(account.address)
            self.codec.decrypt(record, password)
            try:
                path.unlink()
            except OSError as e:
                raise RecordWriteFailed(account.address, e) from e
        self.lock(account)
        logger.info(f"Deleted account {account.short_address}")

    def update_password(self, account: Account, password: str, new_password: str) -> None:
        """
        Re-encrypt an account's record under a new password.

        The file is replaced atomically, so the record always opens with
        either the old or the new password.

        Raises:
            AccountNotFound, DecryptionFailed, RecordWriteFailed
        """
        with self._lock:
            path, record = self._find_entry(account.address)
            updated = self.codec.reencrypt(record, password, new_password)
            updated.id = record.id
            self._write_record(path, updated)
        logger.info(f"Updated password for {account.short_address}")

    def export(self, account: Account, password: str, new_password: str) -> str:
        """
        Serialized copy of the record, encrypted under new_password.

        The stored record is left untouched.

        Raises:
            AccountNotFound, DecryptionFailed
        """
        with self._lock:
            _, record = self._find_entry(account.address)
        exported = self.codec.reencrypt(record, password, new_password)
        exported.id = record.id
        return exported.to_json()

    # ============================================
    # Signing
    # ============================================

    @contextmanager
    def unlocked(self, account: Account, password: str) -> Iterator[Account]:
        """
        Keep an account's key decrypted for the duration of the block.

        Blocks for the same account may nest; the key stays unlocked until
        the outermost one exits and is wiped then, on every exit path.

        Raises:
            AccountNotFound, DecryptionFailed
        """
        with self._lock:
            _, record = self._find_entry(account.address)
        key = bytearray(self.codec.decrypt(record, password))

        address = account.address
        with self._unlocked_lock:
            if address in self._unlocked:
                _wipe(key)
                self._unlock_depth[address] += 1
            else:
                self._unlocked[address] = key
                self._unlock_depth[address] = 1
        try:
            yield account
        finally:
            self._release(account)

    def _release(self, account: Account) -> None:
        with self._unlocked_lock:
            depth = self._unlock_depth.get(account.address, 0) - 1
            if depth > 0:
                self._unlock_depth[account.address] = depth
                return
            self._unlock_depth.pop(account.address, None)
            key = self._unlocked.pop(account.address, None)
        if key is not None:
            _wipe(key)

    def lock(self, account: Account) -> None:
        """Forget an unlocked key immediately, zeroing its buffer."""
        with self._unlocked_lock:
            self._unlock_depth.pop(account.address, None)
            key = self._unlocked.pop(account.address, None)
        if key is not None:
            _wipe(key)

    def is_unlocked(self, account: Account) -> bool:
        with self._unlocked_lock:
            return account.address in self._unlocked

    def sign_transaction(self, tx: SignableTransaction) -> bytes:
        """
        Sign with the unlocked key of tx.account.

        Raises:
            AccountLocked: If the account is not unlocked
        """
        with self._unlocked_lock:
            key = self._unlocked.get(tx.account.address)
            if key is None:
                raise AccountLocked(tx.account.address)
            private_key = bytes(key)
        return self._signer(tx, private_key)
