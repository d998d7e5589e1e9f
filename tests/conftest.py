# tests/conftest.py
import importlib
from typing import Optional

import pytest
import redis
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from trackledger.config import Settings
from trackledger.errors import PersistenceError
from trackledger.ledger import Ledger
from trackledger.models import Snapshot
from trackledger.payments import Verification
from trackledger.solana import b58encode
from trackledger.storage import PersistenceBackend


@pytest.fixture
def anyio_backend():
    return "asyncio"


class MemoryBackend(PersistenceBackend):
    """Снимок в памяти; fail=True имитирует упавший диск/сеть."""

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        self.stored = snapshot.copy() if snapshot is not None else None
        self.saves = 0
        self.fail = False

    def load(self):
        if self.fail:
            raise PersistenceError("backend down")
        return self.stored.copy() if self.stored is not None else None

    def save(self, snapshot: Snapshot) -> None:
        if self.fail:
            raise PersistenceError("backend down")
        self.stored = snapshot.copy()
        self.saves += 1


class FakeRedis:
    """То, что RedisBackend использует от redis.Redis: get/set."""

    def __init__(self) -> None:
        self.data = {}
        self.down = False

    def get(self, key):
        if self.down:
            raise redis.ConnectionError("connection refused")
        return self.data.get(key)

    def set(self, key, value):
        if self.down:
            raise redis.ConnectionError("connection refused")
        self.data[key] = value
        return True


class FakeVerifier:
    """Платёж валиден, если подпись есть в self.valid."""

    def __init__(self) -> None:
        self.valid = set()
        self.calls = []

    async def verify(self, signature: str) -> Verification:
        self.calls.append(signature)
        if signature in self.valid:
            return Verification(True)
        return Verification(False, "no valid transfer found")


@pytest.fixture()
def make_wallet():
    """Настоящий Ed25519 pubkey в base58 - как адрес кошелька Solana."""
    def _wallet() -> str:
        return b58encode(SigningKey.generate().verify_key.encode())
    return _wallet


@pytest.fixture()
def memory_backend():
    return MemoryBackend()


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def ledger(memory_backend):
    return Ledger(memory_backend)


@pytest.fixture()
def verifier():
    return FakeVerifier()


@pytest.fixture()
def settings(tmp_path):
    return Settings(data_dir=tmp_path, max_tracks=50)


@pytest.fixture()
def app(settings, verifier):
    main = importlib.import_module("trackledger.main")
    return main.build_app(settings, verifier=verifier)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c
