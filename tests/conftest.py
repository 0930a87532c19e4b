import pytest

from accountsync.config import Settings
from accountsync.connectors.google_session import GoogleSession
from accountsync.events import CollectingEventChannel
from accountsync.service import AccountService
from accountsync.store import CacheStores
from tests.fakes import FakeGoogle, FakeTokens, no_sleep


@pytest.fixture
def stores(tmp_path):
    stores = CacheStores.open(tmp_path / "cache")
    yield stores
    stores.close()


@pytest.fixture
def account(stores):
    return stores.accounts.add_account("me@example.com", "Me")


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def session(account, google, tokens):
    return GoogleSession(account, tokens, build_service=google.build, per_call_http=False, sleep=no_sleep)


@pytest.fixture
def events():
    return CollectingEventChannel()


@pytest.fixture
def service(tmp_path, stores, google, tokens, events):
    settings = Settings(cache_dir=tmp_path / "cache", token_dir=tmp_path / "tokens")
    return AccountService(
        settings,
        stores=stores,
        tokens=tokens,
        events=events,
        session_factory=lambda acct: GoogleSession(
            acct, tokens, build_service=google.build, per_call_http=False, sleep=no_sleep
        ),
    )
