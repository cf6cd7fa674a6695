"""
Ether Custody - Local key custody and signing engine.

Entry point: builds the engine from settings and reports its accounts.
"""

import getpass
import sys
from typing import Optional

from config import Settings, load_settings
from custody import AccountStore, KeystoreCodec, KeystoreError
from services import (
    AccountSession,
    EncryptedFileSecretStore,
    KeystoreService,
    SecretStore,
)
from services.logging import configure_logging
from utils import get_keystore_dir, get_secrets_path


def open_keystore(settings: Optional[Settings] = None,
                  passphrase: Optional[str] = None,
                  secret_store: Optional[SecretStore] = None) -> KeystoreService:
    """
    Assemble the custody engine.

    Args:
        settings: Engine settings (loaded from disk if omitted)
        passphrase: Master passphrase for the default encrypted vault
        secret_store: Use this store instead of the encrypted vault

    Raises:
        ProtectionUnavailable: If the secret store cannot be unlocked
    """
    settings = settings or load_settings()

    if secret_store is None:
        vault = EncryptedFileSecretStore(
            get_secrets_path(settings.secrets_filename),
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )
        if passphrase is not None:
            vault.unlock(passphrase)
        secret_store = vault

    account_store = AccountStore(
        get_keystore_dir(settings.keystore_subdir),
        KeystoreCodec(settings.kdf_iterations),
    )
    session = AccountSession(secret_store, account_store)
    return KeystoreService(account_store, secret_store, session,
                           max_workers=settings.max_workers)


def main():
    """Application entry point."""
    settings = load_settings()
    # Configure logging before anything else
    configure_logging(settings.log_level_value, settings.log_retention_days)

    passphrase = getpass.getpass("Vault passphrase: ")
    try:
        service = open_keystore(settings, passphrase)
    except KeystoreError as e:
        print(f"Cannot open keystore: {e}", file=sys.stderr)
        sys.exit(1)

    with service:
        accounts = service.accounts
        if not accounts:
            print("No accounts yet")
        for account in accounts:
            print(account.checksum_address)

        recent = service.session.recently_used_account
        if recent:
            print(f"Recently used: {recent.checksum_address}")


if __name__ == "__main__":
    main()
