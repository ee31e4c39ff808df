import os

# Services build their engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

import fnmatch
import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import analytics_service.main as analytics_main
import exchange_service.main as exchange_main
import patient_service.main as patient_main
from careassist.context import PatientContext
from careassist.records import HDExchange, PDExchange


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the services use."""

    def __init__(self):
        self.store = {}
        self.sets = {}
        self.published = []
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        return True

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    def expire(self, key, ttl):
        self.ttls[key] = ttl
        return True

    def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def keys(self, pattern="*"):
        return [k for k in self.store if fnmatch.fnmatch(k, pattern)]

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


def _session_override(engine):
    def get_test_session():
        with Session(engine) as session:
            yield session

    return get_test_session


@pytest.fixture
def exchange_client(engine, fake_redis, monkeypatch):
    monkeypatch.setattr(exchange_main, "redis_client", fake_redis)
    monkeypatch.setattr(exchange_main, "_ensure_patient_exists", lambda patient_id: None)
    exchange_main.app.dependency_overrides[exchange_main.get_session] = _session_override(engine)
    yield TestClient(exchange_main.app)
    exchange_main.app.dependency_overrides.clear()


@pytest.fixture
def patient_client(engine, fake_redis, monkeypatch):
    monkeypatch.setattr(patient_main, "redis_client", fake_redis)
    patient_main.app.dependency_overrides[patient_main.get_session] = _session_override(engine)
    yield TestClient(patient_main.app)
    patient_main.app.dependency_overrides.clear()


@pytest.fixture
def analytics_client(fake_redis, monkeypatch):
    monkeypatch.setattr(analytics_main, "redis_client", fake_redis)
    return TestClient(analytics_main.app)


@pytest.fixture
def patient_id():
    return uuid.uuid4()


@pytest.fixture
def make_pd(patient_id):
    """Factory for PD records; ``uf`` defaults to drain - fill."""

    def _make(timestamp, fill=2000.0, drain=2000.0, uf="derive", **extra):
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        if uf == "derive":
            uf = None if fill is None or drain is None else drain - fill
        fields = {
            "id": uuid.uuid4(),
            "patient_id": patient_id,
            "timestamp": timestamp,
            "baxter_strength": "1.5%",
            "fill_volume": fill,
            "drain_volume": drain,
            "uf": uf,
        }
        fields.update(extra)
        return PDExchange(**fields)

    return _make


class FakeRecordStore:
    """Async record store kept in memory; derives ``uf`` the way the exchange service does."""

    def __init__(self, records=None):
        self.pd = list(records or [])
        self.hd = []
        self.calls = []
        self.fail_with = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def list_pd(self, patient_id, start_time=None, end_time=None, descending=False):
        self.calls.append(("list_pd", start_time, end_time, descending))
        self._maybe_fail()
        rows = [r for r in self.pd if r.patient_id == patient_id]
        if start_time is not None:
            rows = [r for r in rows if r.timestamp >= start_time]
        if end_time is not None:
            rows = [r for r in rows if r.timestamp <= end_time]
        return sorted(rows, key=lambda r: r.timestamp, reverse=descending)

    async def insert_pd(self, patient_id, fields):
        self.calls.append(("insert_pd", fields))
        self._maybe_fail()
        row = PDExchange(
            id=uuid.uuid4(),
            patient_id=patient_id,
            uf=fields["drain_volume"] - fields["fill_volume"],
            **fields,
        )
        self.pd.append(row)
        return row

    async def update_pd(self, exchange_id, fields):
        self.calls.append(("update_pd", fields))
        self._maybe_fail()
        for i, row in enumerate(self.pd):
            if row.id == exchange_id:
                merged = row.model_copy(update=fields)
                if merged.fill_volume is not None and merged.drain_volume is not None:
                    uf = merged.drain_volume - merged.fill_volume
                else:
                    uf = None
                self.pd[i] = merged.model_copy(update={"uf": uf})
                return self.pd[i]
        raise KeyError(exchange_id)

    async def delete_pd(self, exchange_id):
        self.calls.append(("delete_pd", exchange_id))
        self._maybe_fail()
        self.pd = [r for r in self.pd if r.id != exchange_id]

    async def list_hd(self, patient_id):
        return [r for r in self.hd if r.patient_id == patient_id]

    async def insert_hd(self, patient_id, fields):
        self.calls.append(("insert_hd", fields))
        self._maybe_fail()
        row = HDExchange(
            id=uuid.uuid4(),
            patient_id=patient_id,
            timestamp=datetime(2024, 5, 1, 8, 0),
            uf=round(fields["pre_weight"] - fields["post_weight"], 2),
            **fields,
        )
        self.hd.append(row)
        return row

    async def delete_hd(self, exchange_id):
        self.hd = [r for r in self.hd if r.id != exchange_id]


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def ctx(patient_id):
    return PatientContext(user_id=uuid.uuid4(), patient_id=patient_id, username="Asha Rao")
