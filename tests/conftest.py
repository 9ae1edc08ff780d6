import sqlite3
import threading
from datetime import datetime, timedelta, timezone

import pytest

from vault.commons.normalizer import ExtractionNormalizer
from vault.services.grant_registry import GrantRegistry, InMemoryGrantStore, SqliteGrantStore
from vault.services.report_store import InMemoryReportStore, SqliteReportStore
from vault.services.scoped_reader import ScopedReader

T0 = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw):
        self.now = self.now + timedelta(**kw)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def backend(request):
    """(report_store, grant_store) for each backend."""
    if request.param == "memory":
        yield InMemoryReportStore(), InMemoryGrantStore()
        return
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    lock = threading.Lock()
    yield SqliteReportStore(conn, lock), SqliteGrantStore(conn, lock)
    conn.close()


@pytest.fixture
def vault(backend, clock):
    reports, grants = backend
    normalizer = ExtractionNormalizer(clock=clock)
    registry = GrantRegistry(reports, grants, clock=clock)
    reader = ScopedReader(registry, reports, clock=clock)
    return {
        "reports": reports,
        "grants": grants,
        "normalizer": normalizer,
        "registry": registry,
        "reader": reader,
        "clock": clock,
    }
