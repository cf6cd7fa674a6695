"""
Shared fixtures for the custody engine tests.
"""

import pytest

from custody import AccountStore, KeystoreCodec
from services import AccountSession, KeystoreService
from helpers import FlakySecretStore


@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    """Keep every path helper inside the test's temp dir."""
    home = tmp_path / "home"
    monkeypatch.setenv("ETHER_CUSTODY_HOME", str(home))
    return home


@pytest.fixture
def codec():
    return KeystoreCodec()


@pytest.fixture
def account_store(tmp_path, codec):
    return AccountStore(tmp_path / "keystore", codec)


@pytest.fixture
def secret_store():
    return FlakySecretStore()


@pytest.fixture
def service(account_store, secret_store):
    session = AccountSession(secret_store, account_store)
    svc = KeystoreService(account_store, secret_store, session, max_workers=4)
    yield svc
    svc.shutdown()
