"""
Secret Store - Access-controlled storage for short secrets.

Holds account passwords (keyed by canonical address) and the recently used
account pointer. Entries carry an access policy: protected entries can only
be read or written while the store is unlocked.

Provides:
- SecretStore: The storage contract
- MemorySecretStore: In-process store (tests, ephemeral sessions)
- EncryptedFileSecretStore: Argon2id + AES-256-GCM sealed vault file
"""

import json
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional

# Cryptography
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from argon2.low_level import hash_secret_raw, Type

from custody.exceptions import ProtectionUnavailable
from utils import set_secure_permissions

logger = logging.getLogger(__name__)


# Reserved key for the recently used account address
RECENTLY_USED_KEY = "recentlyUsedAddress"

# ============================================
# Vault Constants
# ============================================

VAULT_VERSION = 1

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256

AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16

# Sealed under the vault key to detect a wrong passphrase on unlock
CHECK_KEY = "__vault_check__"


class AccessPolicy(str, Enum):
    """When a stored secret may be read."""
    WHEN_UNLOCKED = "when_unlocked"
    WHEN_UNLOCKED_THIS_DEVICE_ONLY = "when_unlocked_this_device_only"
    ALWAYS = "always"

    @property
    def requires_unlock(self) -> bool:
        return self is not AccessPolicy.ALWAYS


DEFAULT_ACCESS = AccessPolicy.WHEN_UNLOCKED_THIS_DEVICE_ONLY


class SecretStore(ABC):
    """
    Storage contract for short secret strings.

    `set` and `delete` report failure through their return value; callers
    must check it. Reading a protected entry from a locked store raises
    ProtectionUnavailable.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Stored value, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str, access: AccessPolicy = DEFAULT_ACCESS) -> bool:
        """Store a value. Returns False if it could not be written."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a value. Returns True once the key is absent."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether protected entries can currently be accessed."""


# ============================================
# In-Memory Store
# ============================================

class MemorySecretStore(SecretStore):
    """Secret store kept in process memory."""

    def __init__(self, locked: bool = False):
        self.locked = locked
        self._entries: dict[str, tuple[str, AccessPolicy]] = {}
        self._lock = threading.Lock()

    def lock(self) -> None:
        self.locked = True

    def unlock(self) -> None:
        self.locked = False

    def is_available(self) -> bool:
        return not self.locked

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        value, access = entry
        if access.requires_unlock and self.locked:
            raise ProtectionUnavailable(f"Secret store is locked, cannot read {key}")
        return value

    def set(self, key: str, value: str, access: AccessPolicy = DEFAULT_ACCESS) -> bool:
        if access.requires_unlock and self.locked:
            logger.error(f"Secret store is locked, cannot write {key}")
            return False
        with self._lock:
            self._entries[key] = (value, AccessPolicy(access))
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return True
            if entry[1].requires_unlock and self.locked:
                logger.error(f"Secret store is locked, cannot delete {key}")
                return False
            del self._entries[key]
        return True


# ============================================
# Encrypted Vault File
# ============================================

def derive_vault_key(passphrase: str, salt: bytes, time_cost: int = ARGON2_TIME_COST,
                     memory_cost: int = ARGON2_MEMORY_COST,
                     parallelism: int = ARGON2_PARALLELISM) -> bytes:
    """
    Derive the vault key from the master passphrase using Argon2id.

    Argon2id is memory-hard, making brute-force attacks expensive.
    """
    return hash_secret_raw(
        secret=passphrase.encode('utf-8'),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


def seal_secret(vault_key: bytes, key: str, value: str) -> dict:
    """
    Encrypt a secret with AES-256-GCM.

    The entry key is used as associated data, so a sealed value only opens
    under the key it was written for.
    """
    iv = secrets.token_bytes(AES_IV_SIZE)
    aesgcm = AESGCM(vault_key)
    ciphertext_and_tag = aesgcm.encrypt(iv, value.encode('utf-8'), key.encode('utf-8'))

    return {
        "ciphertext": ciphertext_and_tag[:-AES_TAG_SIZE].hex(),
        "iv": iv.hex(),
        "tag": ciphertext_and_tag[-AES_TAG_SIZE:].hex(),
    }


def open_secret(vault_key: bytes, key: str, sealed: dict) -> str:
    """
    Decrypt a sealed secret.

    Raises: InvalidTag if the vault key is wrong or data is tampered.
    """
    ciphertext_and_tag = bytes.fromhex(sealed["ciphertext"]) + bytes.fromhex(sealed["tag"])
    aesgcm = AESGCM(vault_key)
    plaintext = aesgcm.decrypt(bytes.fromhex(sealed["iv"]), ciphertext_and_tag, key.encode('utf-8'))
    return plaintext.decode('utf-8')


class EncryptedFileSecretStore(SecretStore):
    """
    Secret store persisted to a single vault file.

    Protected entries are sealed with a key derived from a master passphrase;
    entries written with AccessPolicy.ALWAYS are stored unsealed and stay
    readable while the vault is locked.

    Usage:
        store = EncryptedFileSecretStore(get_secrets_path())
        store.unlock("master passphrase")
        store.set("0xabc...", "account password")
        store.lock()
    """

    def __init__(self, path: str | Path, time_cost: int = ARGON2_TIME_COST,
                 memory_cost: int = ARGON2_MEMORY_COST,
                 parallelism: int = ARGON2_PARALLELISM):
        self.path = Path(path)
        self._vault_key: Optional[bytes] = None
        self._lock = threading.RLock()
        self._check: Optional[dict] = None
        self._entries: dict[str, dict] = {}
        self._kdf = {
            "algorithm": "argon2id",
            "salt": secrets.token_bytes(16).hex(),
            "time_cost": time_cost,
            "memory_cost": memory_cost,
            "parallelism": parallelism,
        }
        self._load()

    def _load(self) -> None:
        """Load the vault from disk (kdf parameters in the file take precedence)."""
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ProtectionUnavailable(f"Secret vault is unreadable: {e}") from e

        if not isinstance(data, dict):
            raise ProtectionUnavailable("Secret vault is not a JSON object")
        if data.get("version") != VAULT_VERSION:
            raise ProtectionUnavailable(f"Unsupported vault version: {data.get('version')}")

        kdf = data.get("kdf")
        entries = data.get("entries", {})
        if not isinstance(kdf, dict) or not isinstance(entries, dict):
            raise ProtectionUnavailable("Secret vault is missing its kdf or entries section")
        missing = {"salt", "time_cost", "memory_cost", "parallelism"} - kdf.keys()
        if missing:
            raise ProtectionUnavailable(f"Secret vault kdf is missing {sorted(missing)}")

        self._kdf = kdf
        self._check = data.get("check")
        self._entries = entries

    def _save(self) -> None:
        vault_data = {
            "version": VAULT_VERSION,
            "kdf": self._kdf,
            "check": self._check,
            "entries": self._entries,
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix('.tmp')
        with open(temp_path, 'w') as f:
            json.dump(vault_data, f, indent=2)

        temp_path.replace(self.path)
        set_secure_permissions(self.path)

    # ============================================
    # Lock State
    # ============================================

    def unlock(self, passphrase: str) -> None:
        """
        Unlock the vault with its master passphrase.

        Raises:
            ProtectionUnavailable: If the passphrase is wrong
        """
        vault_key = derive_vault_key(
            passphrase,
            bytes.fromhex(self._kdf["salt"]),
            time_cost=self._kdf["time_cost"],
            memory_cost=self._kdf["memory_cost"],
            parallelism=self._kdf["parallelism"],
        )

        with self._lock:
            if self._check is None:
                # First unlock of a new vault sets its passphrase
                self._check = seal_secret(vault_key, CHECK_KEY, CHECK_KEY)
                self._save()
            else:
                try:
                    open_secret(vault_key, CHECK_KEY, self._check)
                except InvalidTag as e:
                    raise ProtectionUnavailable("Wrong vault passphrase") from e
            self._vault_key = vault_key
        logger.info("Secret vault unlocked")

    def lock(self) -> None:
        """Forget the vault key."""
        with self._lock:
            self._vault_key = None

    def is_available(self) -> bool:
        return self._vault_key is not None

    # ============================================
    # Entries
    # ============================================

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            access = AccessPolicy(entry["policy"])
            if not access.requires_unlock:
                return entry["value"]

            if self._vault_key is None:
                raise ProtectionUnavailable(f"Secret vault is locked, cannot read {key}")
            try:
                return open_secret(self._vault_key, key, entry)
            except (InvalidTag, KeyError, ValueError) as e:
                raise ProtectionUnavailable(f"Secret for {key} cannot be opened") from e

    def set(self, key: str, value: str, access: AccessPolicy = DEFAULT_ACCESS) -> bool:
        access = AccessPolicy(access)
        with self._lock:
            if access.requires_unlock:
                if self._vault_key is None:
                    logger.error(f"Secret vault is locked, cannot write {key}")
                    return False
                entry = seal_secret(self._vault_key, key, value)
            else:
                entry = {"value": value}
            entry["policy"] = access.value

            previous = self._entries.get(key)
            self._entries[key] = entry
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to save secret vault: {e}")
                if previous is None:
                    del self._entries[key]
                else:
                    self._entries[key] = previous
                return False
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            previous = self._entries.get(key)
            if previous is None:
                return True
            if AccessPolicy(previous["policy"]).requires_unlock and self._vault_key is None:
                logger.error(f"Secret vault is locked, cannot delete {key}")
                return False

            del self._entries[key]
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to save secret vault: {e}")
                self._entries[key] = previous
                return False
        return True
