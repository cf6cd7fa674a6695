"""
Test the secret store backends.
"""

import json
import os

import pytest

from custody import ProtectionUnavailable
from services import AccessPolicy, EncryptedFileSecretStore, MemorySecretStore
from services.secret_store import open_secret, seal_secret, derive_vault_key

# Cheap Argon2 parameters for tests
FAST_KDF = {"time_cost": 1, "memory_cost": 8, "parallelism": 1}


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "secrets.vault"


@pytest.fixture
def vault(vault_path):
    store = EncryptedFileSecretStore(vault_path, **FAST_KDF)
    store.unlock("master")
    return store


class TestMemorySecretStore:
    def test_set_get_delete(self):
        store = MemorySecretStore()

        assert store.get("k") is None
        assert store.set("k", "v")
        assert store.get("k") == "v"
        assert store.delete("k")
        assert store.get("k") is None
        assert store.delete("k")

    def test_locked(self):
        store = MemorySecretStore()
        store.set("protected", "v")
        store.set("open", "w", AccessPolicy.ALWAYS)
        store.lock()

        assert not store.is_available()
        assert store.get("open") == "w"
        with pytest.raises(ProtectionUnavailable):
            store.get("protected")
        assert not store.set("other", "x")
        assert not store.delete("protected")

        store.unlock()
        assert store.get("protected") == "v"

    def test_policy_requires_unlock(self):
        assert AccessPolicy.WHEN_UNLOCKED.requires_unlock
        assert AccessPolicy.WHEN_UNLOCKED_THIS_DEVICE_ONLY.requires_unlock
        assert not AccessPolicy.ALWAYS.requires_unlock


class TestSealing:
    def test_seal_and_open(self):
        key = os.urandom(32)
        sealed = seal_secret(key, "0xabc", "password")

        assert open_secret(key, "0xabc", sealed) == "password"

    def test_bound_to_entry_key(self):
        from cryptography.exceptions import InvalidTag

        key = os.urandom(32)
        sealed = seal_secret(key, "0xabc", "password")

        with pytest.raises(InvalidTag):
            open_secret(key, "0xdef", sealed)

    def test_derive_vault_key(self):
        salt = b"s" * 16
        first = derive_vault_key("master", salt, **FAST_KDF)

        assert len(first) == 32
        assert first == derive_vault_key("master", salt, **FAST_KDF)
        assert first != derive_vault_key("other", salt, **FAST_KDF)


class TestEncryptedFileSecretStore:
    def test_new_vault_is_locked(self, vault_path):
        store = EncryptedFileSecretStore(vault_path, **FAST_KDF)

        assert not store.is_available()
        assert not store.set("k", "v")

    def test_round_trip_across_reopen(self, vault, vault_path):
        assert vault.set("0xabc", "account-password")

        reopened = EncryptedFileSecretStore(vault_path)
        reopened.unlock("master")
        assert reopened.get("0xabc") == "account-password"

    def test_wrong_passphrase(self, vault, vault_path):
        vault.set("0xabc", "account-password")

        reopened = EncryptedFileSecretStore(vault_path)
        with pytest.raises(ProtectionUnavailable):
            reopened.unlock("not master")
        assert not reopened.is_available()

    def test_no_plaintext_on_disk(self, vault, vault_path):
        vault.set("0xabc", "account-password")

        assert "account-password" not in vault_path.read_text()

    @pytest.mark.skipif(os.name != "posix", reason="Unix permissions only")
    def test_owner_only(self, vault, vault_path):
        vault.set("0xabc", "pw")

        assert vault_path.stat().st_mode & 0o777 == 0o600

    def test_locked_reads(self, vault):
        vault.set("0xabc", "pw")
        vault.set("recent", "0xabc", AccessPolicy.ALWAYS)
        vault.lock()

        assert vault.get("recent") == "0xabc"
        assert vault.get("missing") is None
        with pytest.raises(ProtectionUnavailable):
            vault.get("0xabc")
        assert not vault.delete("0xabc")
        assert vault.delete("recent")

    def test_moved_entry_does_not_open(self, vault, vault_path):
        vault.set("0xabc", "pw")
        data = json.loads(vault_path.read_text())
        data["entries"]["0xdef"] = data["entries"]["0xabc"]
        vault_path.write_text(json.dumps(data))

        reopened = EncryptedFileSecretStore(vault_path)
        reopened.unlock("master")
        assert reopened.get("0xabc") == "pw"
        with pytest.raises(ProtectionUnavailable):
            reopened.get("0xdef")

    def test_delete(self, vault, vault_path):
        vault.set("0xabc", "pw")

        assert vault.delete("0xabc")
        assert vault.get("0xabc") is None
        assert "0xabc" not in json.loads(vault_path.read_text())["entries"]

    def test_failed_save(self, vault, monkeypatch):
        vault.set("0xabc", "pw")

        def broken_save():
            raise OSError("read-only filesystem")

        monkeypatch.setattr(vault, "_save", broken_save)

        assert not vault.set("0xabc", "new")
        assert vault.get("0xabc") == "pw"
        assert not vault.set("0xdef", "pw")
        assert vault.get("0xdef") is None
        assert not vault.delete("0xabc")
        assert vault.get("0xabc") == "pw"

    def test_unreadable_vault(self, vault_path):
        vault_path.write_text("{garbage")

        with pytest.raises(ProtectionUnavailable):
            EncryptedFileSecretStore(vault_path)

    def test_unsupported_version(self, vault_path):
        vault_path.write_text(json.dumps({"version": 99, "kdf": {}}))

        with pytest.raises(ProtectionUnavailable):
            EncryptedFileSecretStore(vault_path)

    def test_vault_not_an_object(self, vault_path):
        vault_path.write_text("[1, 2, 3]")

        with pytest.raises(ProtectionUnavailable):
            EncryptedFileSecretStore(vault_path)

    @pytest.mark.parametrize("data", [
        {"version": 1},
        {"version": 1, "kdf": "argon2id"},
        {"version": 1, "kdf": {"algorithm": "argon2id"}},
        {"version": 1, "kdf": {"salt": "00", "time_cost": 1, "memory_cost": 8,
                               "parallelism": 1}, "entries": []},
    ])
    def test_vault_missing_sections(self, vault_path, data):
        vault_path.write_text(json.dumps(data))

        with pytest.raises(ProtectionUnavailable):
            EncryptedFileSecretStore(vault_path)
