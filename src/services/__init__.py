"""
Services package - Backend services for the custody engine.

Contains:
- KeystoreService: Account and signing façade
- SecretStore: Password storage (memory and encrypted vault backends)
- AccountSession: Recently used account tracking
"""

from .secret_store import (
    SecretStore,
    MemorySecretStore,
    EncryptedFileSecretStore,
    AccessPolicy,
    RECENTLY_USED_KEY,
)
from .session import AccountSession
from .keystore import (
    KeystoreService,
    KeystoreOperation,
    OperationState,
    KeystoreImport,
    PrivateKeyImport,
)

__all__ = [
    "SecretStore",
    "MemorySecretStore",
    "EncryptedFileSecretStore",
    "AccessPolicy",
    "RECENTLY_USED_KEY",
    "AccountSession",
    "KeystoreService",
    "KeystoreOperation",
    "OperationState",
    "KeystoreImport",
    "PrivateKeyImport",
]
