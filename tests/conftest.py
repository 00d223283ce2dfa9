"""Shared test fixtures for the EMSG daemon."""

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from emsgd.auth import RequestAuthenticator
from emsgd.config import DaemonConfig
from emsgd.crypto import KeyPair
from emsgd.events import SystemEventLog
from emsgd.group import GroupRegistry
from emsgd.main import create_app
from emsgd.models import Identity
from emsgd.storage import SqliteStore

NOW = 1_700_000_000


class FixedClock:
    """A clock tests can move by hand."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeDns:
    """TXT lookup backed by a dict; values may be exceptions to raise."""

    def __init__(self, records: dict = None, delay: float = 0):
        self.records = records or {}
        self.delay = delay
        self.queries: list[str] = []

    async def __call__(self, name: str) -> list[str]:
        self.queries.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        value = self.records.get(name, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    """A fresh SQLite store in a temp directory."""
    s = SqliteStore(str(tmp_path / "emsg.db"))
    yield s
    s.close()


@pytest.fixture
def alice_key() -> KeyPair:
    return KeyPair.generate()


@pytest.fixture
def bob_key() -> KeyPair:
    return KeyPair.generate()


@pytest.fixture
def alice(store: SqliteStore, alice_key: KeyPair) -> str:
    """Registered identity alice#example.com."""
    address = "alice#example.com"
    store.put_identity(Identity(address=address, pubkey=alice_key.pubkey_b64, first_name="Alice"))
    return address


@pytest.fixture
def authenticator(store: SqliteStore, clock: FixedClock) -> RequestAuthenticator:
    return RequestAuthenticator(store, clock=clock)


@pytest.fixture
def event_log(store: SqliteStore, clock: FixedClock) -> SystemEventLog:
    return SystemEventLog(store, clock=clock)


@pytest.fixture
def groups(store: SqliteStore, event_log: SystemEventLog) -> GroupRegistry:
    return GroupRegistry(store, event_log)


@pytest.fixture
def fake_dns() -> FakeDns:
    return FakeDns({
        "_emsg.example.org": ['{"server": "https://emsg.example.org", "pubkey": "abc", "version": "1.0", "ttl": 600}'],
        "_emsg.other.net": ["https://mail.other.net:8443"],
    })


@pytest.fixture
def config(tmp_path: Path) -> DaemonConfig:
    return DaemonConfig(
        domain="example.com",
        data_dir=str(tmp_path / "data"),
        public_url="https://emsg.example.com",
    )


@pytest.fixture
def api_client(config: DaemonConfig, fake_dns: FakeDns):
    """TestClient over a fully wired daemon (lifespan runs)."""
    app = create_app(config, lookup_txt=fake_dns)
    with TestClient(app) as client:
        yield client
