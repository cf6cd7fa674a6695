"""
Custody package - Key custody for Ethereum accounts.

Contains:
- KeystoreCodec: Password encryption of private keys (keystore v3 JSON)
- EncryptedKeyRecord: The persisted form of one private key
- AccountStore: On-disk collection of keystore records
- Errors: KeystoreError and its subclasses
"""

from .crypto import (
    KeystoreCodec,
    EncryptedKeyRecord,
    DEFAULT_KDF_ITERATIONS,
    parse_private_key,
    address_from_key,
    generate_private_key,
    generate_password,
)
from .manager import AccountStore, sign_legacy_transaction
from .exceptions import (
    KeystoreError,
    DecryptionFailed,
    InvalidKeystoreRecord,
    ImportFailed,
    DuplicateAccount,
    AccountNotFound,
    AccountLocked,
    SigningFailed,
    PasswordPersistenceFailed,
    ProtectionUnavailable,
    RecordWriteFailed,
)

__all__ = [
    # Crypto
    "KeystoreCodec",
    "EncryptedKeyRecord",
    "DEFAULT_KDF_ITERATIONS",
    "parse_private_key",
    "address_from_key",
    "generate_private_key",
    "generate_password",
    # Store
    "AccountStore",
    "sign_legacy_transaction",
    # Errors
    "KeystoreError",
    "DecryptionFailed",
    "InvalidKeystoreRecord",
    "ImportFailed",
    "DuplicateAccount",
    "AccountNotFound",
    "AccountLocked",
    "SigningFailed",
    "PasswordPersistenceFailed",
    "RecordWriteFailed",
    "ProtectionUnavailable",
]
