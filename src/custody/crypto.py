"""
Custody Crypto - Keystore file codec.

Converts a raw private key to and from the password-encrypted JSON keystore
format (version 3):

- PBKDF2-HMAC-SHA256 key derivation (iteration count configurable)
- AES-128-CTR encryption of the key bytes (no padding)
- Keccak-256 MAC over derived_key[16:32] + ciphertext

Decryption additionally accepts scrypt-derived records, so keystores written
by other Ethereum wallets can be imported.
"""

import hmac
import json
import secrets
import uuid
from dataclasses import dataclass
from typing import Optional, Union

# Cryptography
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

# Ethereum
from eth_account import Account as EthAccount
from eth_utils import keccak

from models import normalize_address
from .exceptions import DecryptionFailed, InvalidKeystoreRecord


# ============================================
# Format Constants
# ============================================

KEYSTORE_VERSION = 3

CIPHER_NAME = "aes-128-ctr"
KDF_PBKDF2 = "pbkdf2"
KDF_SCRYPT = "scrypt"
PBKDF2_PRF = "hmac-sha256"

# Configurable through Settings.kdf_iterations
DEFAULT_KDF_ITERATIONS = 2214

SALT_SIZE = 32
IV_SIZE = 16  # AES block size
DKLEN = 32
CIPHER_KEY_SIZE = 16  # AES-128

PRIVATE_KEY_SIZE = 32


# ============================================
# Key Record
# ============================================

@dataclass
class EncryptedKeyRecord:
    """A password-encrypted private key, as stored in a keystore file."""
    ciphertext: bytes
    iv: bytes
    kdfparams: dict         # JSON form: salt as hex
    mac: bytes
    cipher: str = CIPHER_NAME
    kdf: str = KDF_PBKDF2
    version: int = KEYSTORE_VERSION
    id: str = ""
    address: Optional[str] = None   # lower-case hex, no prefix

    def to_dict(self) -> dict:
        data = {
            "crypto": {
                "cipher": self.cipher,
                "ciphertext": self.ciphertext.hex(),
                "cipherparams": {"iv": self.iv.hex()},
                "kdf": self.kdf,
                "kdfparams": dict(self.kdfparams),
                "mac": self.mac.hex(),
            },
            "version": self.version,
            "id": self.id,
        }
        if self.address:
            data["address"] = self.address
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedKeyRecord":
        """
        Build a record from its JSON object.

        Raises:
            InvalidKeystoreRecord: If fields are missing or not valid hex
        """
        if not isinstance(data, dict):
            raise InvalidKeystoreRecord("Keystore record must be a JSON object")

        try:
            # Older geth files capitalise the crypto section
            crypto = data.get("crypto", data.get("Crypto"))
            if not isinstance(crypto, dict):
                raise InvalidKeystoreRecord("Missing 'crypto' section")

            version = data.get("version")
            if version != KEYSTORE_VERSION:
                raise InvalidKeystoreRecord(f"Unsupported keystore version: {version}")

            kdfparams = crypto["kdfparams"]
            if not isinstance(kdfparams, dict):
                raise InvalidKeystoreRecord("'kdfparams' must be an object")

            address = data.get("address")
            if address:
                address = normalize_address(address)[2:]

            return cls(
                cipher=crypto["cipher"],
                ciphertext=_unhex(crypto["ciphertext"]),
                iv=_unhex(crypto["cipherparams"]["iv"]),
                kdf=crypto["kdf"],
                kdfparams=dict(kdfparams),
                mac=_unhex(crypto["mac"]),
                version=version,
                id=str(data.get("id") or ""),
                address=address or None,
            )
        except InvalidKeystoreRecord:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeystoreRecord(f"Malformed keystore record: {e}") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "EncryptedKeyRecord":
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise InvalidKeystoreRecord(f"Keystore is not valid JSON: {e}") from e
        return cls.from_dict(data)


def _unhex(value: str) -> bytes:
    if not isinstance(value, str):
        raise TypeError(f"expected hex string, got {type(value).__name__}")
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, iterations: int, dklen: int = DKLEN) -> bytes:
    """Derive the record key from a password with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=dklen,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode('utf-8'))


def derive_key_scrypt(password: str, salt: bytes, n: int, r: int, p: int,
                      dklen: int = DKLEN) -> bytes:
    """Derive the record key from a password with scrypt."""
    kdf = Scrypt(salt=salt, length=dklen, n=n, r=r, p=p)
    return kdf.derive(password.encode('utf-8'))


def _derive_record_key(record: EncryptedKeyRecord, password: str) -> bytes:
    params = record.kdfparams
    try:
        salt = _unhex(params["salt"])
        dklen = int(params.get("dklen", DKLEN))
        if dklen < DKLEN:
            raise InvalidKeystoreRecord(f"Derived key too short: {dklen}")

        if record.kdf == KDF_PBKDF2:
            if params.get("prf", PBKDF2_PRF) != PBKDF2_PRF:
                raise InvalidKeystoreRecord(f"Unsupported PBKDF2 PRF: {params.get('prf')}")
            iterations = int(params["c"])
            if iterations <= 0:
                raise InvalidKeystoreRecord("Iteration count must be positive")
            return derive_key(password, salt, iterations, dklen)

        if record.kdf == KDF_SCRYPT:
            return derive_key_scrypt(
                password, salt,
                n=int(params["n"]), r=int(params["r"]), p=int(params["p"]),
                dklen=dklen,
            )
    except InvalidKeystoreRecord:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidKeystoreRecord(f"Invalid KDF parameters: {e}") from e

    raise InvalidKeystoreRecord(f"Unsupported KDF: {record.kdf}")


def compute_mac(derived_key: bytes, ciphertext: bytes) -> bytes:
    """Keccak-256 over the second half of the derived key and the ciphertext."""
    return keccak(derived_key[16:32] + ciphertext)


# ============================================
# Encryption
# ============================================

def _aes_ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    # CTR is symmetric: the same keystream encrypts and decrypts
    cipher = Cipher(algorithms.AES(key), modes.CTR(iv))
    transform = cipher.encryptor()
    return transform.update(data) + transform.finalize()


class KeystoreCodec:
    """
    Encrypts private keys into keystore records and back.

    Usage:
        codec = KeystoreCodec()
        record = codec.encrypt(private_key, "my-password")
        text = record.to_json()

        private_key = codec.decrypt(text, "my-password")
    """

    def __init__(self, iterations: int = DEFAULT_KDF_ITERATIONS):
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations <= 0:
            raise ValueError(f"KDF iterations must be a positive integer, got {iterations!r}")
        self.iterations = iterations

    def encrypt(self, private_key: bytes, password: str) -> EncryptedKeyRecord:
        """Encrypt raw private key bytes under a password."""
        salt = secrets.token_bytes(SALT_SIZE)
        iv = secrets.token_bytes(IV_SIZE)

        derived = derive_key(password, salt, self.iterations, DKLEN)
        ciphertext = _aes_ctr(derived[:CIPHER_KEY_SIZE], iv, bytes(private_key))
        mac = compute_mac(derived, ciphertext)

        return EncryptedKeyRecord(
            ciphertext=ciphertext,
            iv=iv,
            kdfparams={
                "prf": PBKDF2_PRF,
                "c": self.iterations,
                "salt": salt.hex(),
                "dklen": DKLEN,
            },
            mac=mac,
            id=str(uuid.uuid4()),
            address=address_from_key(private_key)[2:],
        )

    def decrypt(self, record: Union[EncryptedKeyRecord, dict, str, bytes],
                password: str) -> bytes:
        """
        Recover the private key from a record.

        Raises:
            DecryptionFailed: Wrong password or tampered record
            InvalidKeystoreRecord: Malformed record or unsupported scheme
        """
        if isinstance(record, (str, bytes)):
            record = EncryptedKeyRecord.from_json(record)
        elif isinstance(record, dict):
            record = EncryptedKeyRecord.from_dict(record)

        if record.cipher != CIPHER_NAME:
            raise InvalidKeystoreRecord(f"Unsupported cipher: {record.cipher}")
        if len(record.iv) != IV_SIZE:
            raise InvalidKeystoreRecord(f"Invalid IV length: {len(record.iv)}")

        derived = _derive_record_key(record, password)
        expected = compute_mac(derived, record.ciphertext)
        if not hmac.compare_digest(expected, record.mac):
            raise DecryptionFailed()

        return _aes_ctr(derived[:CIPHER_KEY_SIZE], record.iv, record.ciphertext)

    def reencrypt(self, record: Union[EncryptedKeyRecord, dict, str, bytes],
                  password: str, new_password: str) -> EncryptedKeyRecord:
        """Decrypt with one password and encrypt again (fresh salt/IV) with another."""
        private_key = self.decrypt(record, password)
        return self.encrypt(private_key, new_password)


# ============================================
# Key Helpers
# ============================================

def parse_private_key(private_key: str) -> bytes:
    """
    Parse a hex private key (with or without 0x prefix).

    Raises:
        ValueError: If it is not a valid 32-byte secp256k1 key
    """
    pkey = private_key.strip()
    if pkey.startswith("0x") or pkey.startswith("0X"):
        pkey = pkey[2:]

    try:
        pkey_bytes = bytes.fromhex(pkey)
    except ValueError as e:
        raise ValueError("Private key is not valid hex") from e

    if len(pkey_bytes) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(pkey_bytes)}")

    try:
        EthAccount.from_key(pkey_bytes)  # Validate
    except Exception as e:
        raise ValueError("Private key is outside the secp256k1 range") from e

    return pkey_bytes


def address_from_key(private_key: bytes) -> str:
    """Derive the canonical account address for a private key."""
    return normalize_address(EthAccount.from_key(bytes(private_key)).address)


def generate_private_key() -> bytes:
    """Generate a fresh random private key."""
    return bytes(EthAccount.create().key)


def generate_password() -> str:
    """Random password for records whose password only lives in the secret store."""
    return secrets.token_urlsafe(32)
