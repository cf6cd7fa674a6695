"""
Custody errors.

Every failure the key-custody engine reports derives from KeystoreError so
callers can catch the whole family, while still telling the kinds apart:

- DecryptionFailed: wrong password or corrupted/tampered record
- InvalidKeystoreRecord: record is malformed or uses an unsupported scheme
- ImportFailed: an import could not be completed (wraps the cause)
- DuplicateAccount: the imported key is already in the store
- AccountNotFound: no record exists for an address
- AccountLocked: signing was attempted without unlocking the key
- SigningFailed: a transaction could not be signed
- RecordWriteFailed: a keystore file could not be written
- PasswordPersistenceFailed: the secret store refused a password write
- ProtectionUnavailable: protected storage is locked or unreadable
"""

from typing import Optional


class KeystoreError(Exception):
    """Base class for all custody errors."""


class DecryptionFailed(KeystoreError):
    """Wrong password or corrupted record (deliberately not distinguished)."""

    def __init__(self, message: str = "Wrong password or corrupted keystore record"):
        super().__init__(message)


class InvalidKeystoreRecord(DecryptionFailed):
    """Record structure is malformed or names an unsupported cipher/KDF."""


class ImportFailed(KeystoreError):
    """Import failed; the underlying error is kept in `cause`."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        message = "Failed to import wallet"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class DuplicateAccount(KeystoreError):
    """The account being imported already exists."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account {address} already exists")


class AccountNotFound(KeystoreError):
    """No keystore record for the given address."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"No keystore record for {address}")


class AccountLocked(KeystoreError):
    """The account's key is not unlocked for signing."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account {address} is locked")


class SigningFailed(KeystoreError):
    """Transaction signing failed."""


class RecordWriteFailed(KeystoreError):
    """A keystore record could not be written to disk."""

    def __init__(self, address: str, cause: Optional[BaseException] = None):
        self.address = address
        self.cause = cause
        super().__init__(f"Failed to write keystore record for {address}: {cause}")


class PasswordPersistenceFailed(KeystoreError):
    """The password could not be written to the secret store."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Failed to store password for {address}")


class ProtectionUnavailable(KeystoreError):
    """Protected storage is locked or otherwise unavailable."""
