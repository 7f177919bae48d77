"""
Tests for the bounded connection pool.

============================================================
PURPOSE
============================================================
- Bounds: never more than max_size connections
- Acquire timeout and closed-pool behavior
- Idle eviction down to (never below) min_size
- SQLAlchemy engine integration via BoundedPool

============================================================
"""

import itertools
import threading
import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text

from core.clock import MockClock
from core.exceptions import (
    ConfigurationError,
    PoolClosedError,
    PoolError,
    PoolTimeoutError,
)
from database.pool import BoundedPool, ConnectionPool


# ============================================================
# FIXTURES
# ============================================================

class FakeConnection:
    """Stand-in for a driver connection."""

    _ids = itertools.count(1)

    def __init__(self):
        self.id = next(self._ids)
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def opener():
    return MagicMock(side_effect=FakeConnection)


def make_pool(opener, clock, **kwargs):
    params = dict(
        min_size=0,
        max_size=3,
        idle_timeout=10.0,
        acquire_timeout=0.05,
        eviction_interval=0,
    )
    params.update(kwargs)
    return ConnectionPool(opener, clock=clock, name="test-pool", **params)


# ============================================================
# CONSTRUCTION
# ============================================================

class TestPoolConfiguration:
    """Tests for pool bound validation."""

    def test_max_zero_is_rejected(self, opener):
        with pytest.raises(ConfigurationError) as exc_info:
            ConnectionPool(opener, max_size=0)
        assert exc_info.value.context["config_key"] == "db-pool-max"

    def test_min_above_max_is_rejected(self, opener):
        with pytest.raises(ConfigurationError):
            ConnectionPool(opener, min_size=4, max_size=2)

    def test_negative_timeout_is_rejected(self, opener):
        with pytest.raises(ConfigurationError):
            ConnectionPool(opener, idle_timeout=-1)

    def test_min_is_not_prefilled(self, opener, clock):
        make_pool(opener, clock, min_size=2)

        opener.assert_not_called()


# ============================================================
# ACQUIRE / RELEASE
# ============================================================

class TestAcquireRelease:
    """Tests for checkout and checkin."""

    def test_released_connection_is_reused(self, opener, clock):
        pool = make_pool(opener, clock)

        conn = pool.acquire()
        pool.release(conn)
        again = pool.acquire()

        assert again is conn
        assert opener.call_count == 1

    def test_most_recently_released_first(self, opener, clock):
        pool = make_pool(opener, clock)
        first, second = pool.acquire(), pool.acquire()

        pool.release(first)
        pool.release(second)

        assert pool.acquire() is second

    def test_never_exceeds_max(self, opener, clock):
        pool = make_pool(opener, clock, max_size=2)
        pool.acquire()
        pool.acquire()

        with pytest.raises(PoolTimeoutError) as exc_info:
            pool.acquire()

        stats = pool.stats()
        assert stats.size == 2
        assert stats.in_use == 2
        assert stats.timeouts_total == 1
        assert exc_info.value.context["timeout_seconds"] == 0.05
        assert opener.call_count == 2

    def test_timeout_override(self, opener, clock):
        pool = make_pool(opener, clock, max_size=1, acquire_timeout=30)
        pool.acquire()

        started = time.monotonic()
        with pytest.raises(PoolTimeoutError):
            pool.acquire(timeout=0.05)
        assert time.monotonic() - started < 5

    def test_waiter_receives_released_connection(self, opener, clock):
        pool = make_pool(opener, clock, max_size=1, acquire_timeout=5)
        conn = pool.acquire()
        result = {}

        def waiter():
            result["conn"] = pool.acquire()

        thread = threading.Thread(target=waiter)
        thread.start()
        time.sleep(0.05)
        pool.release(conn)
        thread.join(timeout=5)

        assert result["conn"] is conn

    def test_failed_open_frees_slot(self, clock):
        opener = MagicMock(side_effect=[OSError("refused"), FakeConnection()])
        pool = make_pool(opener, clock, max_size=1)

        with pytest.raises(OSError):
            pool.acquire()

        assert pool.stats().size == 0
        assert isinstance(pool.acquire(), FakeConnection)

    def test_release_unknown_connection(self, opener, clock):
        pool = make_pool(opener, clock)

        with pytest.raises(PoolError):
            pool.release(FakeConnection())

    def test_double_release(self, opener, clock):
        pool = make_pool(opener, clock)
        conn = pool.acquire()
        pool.release(conn)

        with pytest.raises(PoolError):
            pool.release(conn)

    def test_discard_closes_and_frees_slot(self, opener, clock):
        pool = make_pool(opener, clock, max_size=1)
        conn = pool.acquire()

        pool.discard(conn)

        assert conn.closed
        assert pool.acquire() is not conn


# ============================================================
# EVICTION
# ============================================================

class TestEviction:
    """Tests for idle eviction."""

    def test_evicts_only_expired_connections(self, opener, clock):
        pool = make_pool(opener, clock)
        conns = [pool.acquire() for _ in range(3)]
        for conn in conns:
            pool.release(conn)

        clock.advance(5)
        assert pool.evict_idle() == 0

        clock.advance(6)
        assert pool.evict_idle() == 3
        assert all(conn.closed for conn in conns)
        assert pool.stats().size == 0

    def test_never_below_min(self, opener, clock):
        pool = make_pool(opener, clock, min_size=1)
        conns = [pool.acquire() for _ in range(3)]
        for conn in conns:
            pool.release(conn)

        clock.advance(11)
        evicted = pool.evict_idle()

        assert evicted == 2
        assert pool.stats().size == 1
        assert [c.closed for c in conns] == [True, True, False]
        assert pool.acquire() is conns[2]

    def test_recently_used_connection_survives(self, opener, clock):
        pool = make_pool(opener, clock)
        old, recent = pool.acquire(), pool.acquire()
        pool.release(old)
        clock.advance(8)
        pool.release(recent)

        clock.advance(3)
        assert pool.evict_idle() == 1
        assert old.closed
        assert not recent.closed

    def test_checked_out_connections_are_not_evicted(self, opener, clock):
        pool = make_pool(opener, clock)
        conn = pool.acquire()

        clock.advance(60)

        assert pool.evict_idle() == 0
        assert not conn.closed

    def test_background_evictor(self, opener):
        pool = ConnectionPool(
            opener,
            idle_timeout=0,
            acquire_timeout=1,
            eviction_interval=0.02,
        )
        conn = pool.acquire()
        pool.release(conn)

        deadline = time.monotonic() + 5
        while not conn.closed and time.monotonic() < deadline:
            time.sleep(0.01)
        pool.close()

        assert conn.closed
        assert pool.stats().evicted_total == 1


# ============================================================
# CLOSE
# ============================================================

class TestClose:
    """Tests for pool shutdown."""

    def test_close_releases_idle_connections(self, opener, clock):
        pool = make_pool(opener, clock)
        conn = pool.acquire()
        pool.release(conn)

        pool.close()

        assert conn.closed
        assert pool.closed
        assert pool.stats().size == 0

    def test_acquire_after_close(self, opener, clock):
        pool = make_pool(opener, clock)
        pool.close()

        with pytest.raises(PoolClosedError):
            pool.acquire()

    def test_checked_out_connection_closed_on_release(self, opener, clock):
        pool = make_pool(opener, clock)
        conn = pool.acquire()
        pool.close()

        assert not conn.closed
        pool.release(conn)
        assert conn.closed
        assert pool.stats().size == 0

    def test_close_is_idempotent(self, opener, clock):
        pool = make_pool(opener, clock)
        pool.close()
        pool.close()

    def test_describe(self, opener, clock):
        pool = make_pool(opener, clock)
        pool.acquire()

        assert pool.describe() == "Pool size: 1  Idle: 0  In use: 1  Max: 3"


# ============================================================
# SQLALCHEMY INTEGRATION
# ============================================================

class TestBoundedPool:
    """Tests for BoundedPool as an engine poolclass."""

    @pytest.fixture
    def engine(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'pool.db'}",
            poolclass=BoundedPool,
            max_size=1,
            acquire_timeout=0.05,
            eviction_interval=0,
            connect_args={"check_same_thread": False},
        )
        yield engine
        engine.dispose()

    def test_engine_uses_bounded_pool(self, engine):
        assert isinstance(engine.pool, BoundedPool)
        assert engine.pool.size() == 1

        with engine.connect() as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1
            assert engine.pool.checkedout() == 1

        assert engine.pool.checkedin() == 1

    def test_engine_checkout_times_out(self, engine):
        with engine.connect():
            with pytest.raises(PoolTimeoutError):
                engine.connect()

    def test_dispose_recreates_pool(self, engine):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        old_pool = engine.pool

        engine.dispose()

        assert old_pool.connections.closed
        assert isinstance(engine.pool, BoundedPool)
        assert engine.pool is not old_pool
        assert engine.pool.connections.max_size == 1
        with engine.connect() as conn:
            assert conn.execute(text("SELECT 2")).scalar() == 2
