# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, List
from unittest.mock import MagicMock

from tardiness_core.errors import RemoteUnavailable
from tardiness_core.models import OPTIONS_COLLECTION, TARDINESS_COLLECTION


# =============================================================================
# FAKES
# =============================================================================

class FakeRemoteStore:
    """
    In-memory stand-in for RemoteStoreClient.

    Every attempted call is recorded in `calls` as (operation, collection, doc_id).
    Add an operation name ("put") or an (operation, doc_id) pair to `fail_on`
    to make matching calls raise RemoteUnavailable.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {
            TARDINESS_COLLECTION: {},
            OPTIONS_COLLECTION: {},
        }
        self.calls: List[tuple] = []
        self.fail_on = set()
        self.configured = True

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _attempt(self, operation: str, collection: str, doc_id: str = None) -> None:
        self.calls.append((operation, collection, doc_id))
        if operation in self.fail_on or (operation, doc_id) in self.fail_on:
            raise RemoteUnavailable(
                f"Injected failure on {operation}",
                collection=collection,
                operation=operation,
                doc_id=doc_id,
            )

    def writes(self) -> List[tuple]:
        """Recorded calls other than fetches."""
        return [call for call in self.calls if call[0] != "fetch_all"]

    def fetch_all(self, collection, order_by=None, descending=False):
        self._attempt("fetch_all", collection)
        docs = [dict(doc) for doc in self.collections[collection].values()]
        if order_by:
            docs.sort(key=lambda doc: doc.get(order_by) or "", reverse=descending)
        return docs

    def put(self, collection, doc_id, doc):
        self._attempt("put", collection, doc_id)
        self.collections[collection][doc_id] = {**doc, "id": doc_id}

    def update(self, collection, doc_id, partial):
        self._attempt("update", collection, doc_id)
        current = self.collections[collection].setdefault(doc_id, {"id": doc_id})
        current.update({k: v for k, v in partial.items() if k != "id"})

    def delete(self, collection, doc_id):
        self._attempt("delete", collection, doc_id)
        self.collections[collection].pop(doc_id, None)


class FixedClock:
    """Engine clock pinned to local noon; advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def fixed_now():
    """Wednesday 2024-03-13 12:00 local time"""
    return datetime(2024, 3, 13, 12, 0).astimezone()


@pytest.fixture
def clock(fixed_now):
    return FixedClock(fixed_now)


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "tardiness.db"


@pytest.fixture
def cache(cache_path):
    """Temporary SQLite local cache"""
    from tardiness_core.offline import LocalCache

    local_cache = LocalCache(cache_path)
    local_cache.initialize()
    yield local_cache
    local_cache.close()


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def monitor():
    """Monitor reporting online, with no background thread"""
    from tardiness_core.offline import ConnectionMonitor

    connection_monitor = ConnectionMonitor()
    connection_monitor.set_online(True)
    return connection_monitor


@pytest.fixture
def notices():
    """Collected (level, message) user notices"""
    return []


@pytest.fixture
def make_engine(cache, fake_remote, monitor, clock, notices):
    """Factory for a loaded engine; seed the cache or remote before calling it."""
    from tardiness_core.offline import ReconciliationEngine

    def _make(load: bool = True):
        engine = ReconciliationEngine(
            cache,
            fake_remote,
            monitor,
            notifier=lambda message, level: notices.append((level, message)),
            clock=clock,
        )
        engine.attach()
        if load:
            engine.load()
        return engine

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    table = mock_client.table.return_value
    table.select.return_value.range.return_value.execute.return_value.data = []
    table.select.return_value.order.return_value.range.return_value.execute.return_value.data = []
    table.upsert.return_value.execute.return_value = MagicMock()
    table.update.return_value.eq.return_value.execute.return_value = MagicMock()
    table.delete.return_value.eq.return_value.execute.return_value = MagicMock()
    return mock_client
