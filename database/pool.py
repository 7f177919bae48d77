"""
Database - Connection Pool.

============================================================
RESPONSIBILITY
============================================================
Bounded pool of reusable connections.

- At most max_size connections exist (idle + in use)
- acquire() blocks up to the acquire timeout, then fails
- Idle connections older than the idle timeout are evicted,
  never shrinking the pool below min_size
- A background thread runs eviction every eviction interval

============================================================
DESIGN
============================================================
ConnectionPool is generic: it opens and closes connections
through callables and knows nothing about the database.
BoundedPool plugs it into SQLAlchemy as an engine poolclass,
so every engine checkout is governed by the same bounds.

Connections are opened lazily; min_size is a floor for
eviction, not a pre-fill.

============================================================
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple
import logging
import threading
import time

from sqlalchemy.pool import ConnectionPoolEntry, Pool

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    ConfigurationError,
    PoolClosedError,
    PoolError,
    PoolTimeoutError,
)


logger = logging.getLogger(__name__)


Opener = Callable[[], Any]
Closer = Callable[[Any], None]


@dataclass
class PoolStats:
    """Point-in-time pool counters."""

    size: int
    idle: int
    in_use: int
    max_size: int
    min_size: int
    waiting: int
    opened_total: int
    evicted_total: int
    timeouts_total: int
    closed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "idle": self.idle,
            "in_use": self.in_use,
            "max_size": self.max_size,
            "min_size": self.min_size,
            "waiting": self.waiting,
            "opened_total": self.opened_total,
            "evicted_total": self.evicted_total,
            "timeouts_total": self.timeouts_total,
            "closed": self.closed,
        }


def _close_quietly(closer: Closer, conn: Any) -> None:
    try:
        closer(conn)
    except Exception as e:
        logger.warning(f"Error closing pooled connection: {e}")


# ============================================================
# CONNECTION POOL
# ============================================================

class ConnectionPool:
    """
    Thread-safe bounded connection pool.

    Idle connections are handed out most-recently-released first,
    so surplus connections age out and get evicted.
    """

    def __init__(
        self,
        opener: Opener,
        closer: Optional[Closer] = None,
        min_size: int = 0,
        max_size: int = 5,
        idle_timeout: float = 10.0,
        acquire_timeout: float = 10.0,
        eviction_interval: float = 10.0,
        clock: Optional[ClockProtocol] = None,
        name: str = "pool",
    ):
        """
        Initialize the pool.

        Args:
            opener: Creates a new connection
            closer: Closes a connection (default: conn.close())
            min_size: Connections eviction never goes below
            max_size: Upper bound on open connections
            idle_timeout: Seconds idle before a connection may be evicted
            acquire_timeout: Seconds acquire() waits for a free slot
            eviction_interval: Seconds between eviction runs (0 disables)
            clock: Clock for idle bookkeeping (default: global clock)
            name: Name used in log messages and the evictor thread

        Raises:
            ConfigurationError: If the bounds are invalid
        """
        if max_size <= 0:
            raise ConfigurationError(
                message=f"pool max size must be at least 1, got {max_size}",
                config_key="db-pool-max",
                actual_value=max_size,
            )
        if min_size < 0 or min_size > max_size:
            raise ConfigurationError(
                message=f"pool min size must be between 0 and {max_size}, got {min_size}",
                config_key="db-pool-min",
                actual_value=min_size,
            )
        if idle_timeout < 0 or acquire_timeout < 0 or eviction_interval < 0:
            raise ConfigurationError(message="pool timeouts must not be negative")

        self._opener = opener
        self._closer = closer or (lambda conn: conn.close())
        self._min_size = min_size
        self._max_size = max_size
        self._idle_timeout = idle_timeout
        self._acquire_timeout = acquire_timeout
        self._eviction_interval = eviction_interval
        self._clock = clock or ClockFactory.get_clock()
        self._name = name

        # (connection, released_at); right end is the most recently released
        self._idle: Deque[Tuple[Any, float]] = deque()
        self._in_use: Dict[int, Any] = {}
        self._size = 0
        self._waiting = 0
        self._closed = False

        self._opened_total = 0
        self._evicted_total = 0
        self._timeouts_total = 0

        self._cond = threading.Condition(threading.Lock())
        self._evictor: Optional[threading.Thread] = None
        self._stop_evictor = threading.Event()

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def min_size(self) -> int:
        return self._min_size

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def idle_timeout(self) -> float:
        return self._idle_timeout

    @property
    def acquire_timeout(self) -> float:
        return self._acquire_timeout

    @property
    def eviction_interval(self) -> float:
        return self._eviction_interval

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------------------------------------
    # ACQUIRE / RELEASE
    # --------------------------------------------------------

    def acquire(self, timeout: Optional[float] = None) -> Any:
        """
        Get a connection, opening one if below max_size.

        Args:
            timeout: Override for the acquire timeout (seconds)

        Raises:
            PoolTimeoutError: No connection became available in time
            PoolClosedError: The pool is closed
        """
        wait_for = self._acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait_for

        with self._cond:
            self._ensure_evictor()
            while True:
                if self._closed:
                    raise PoolClosedError(f"{self._name} is closed")

                if self._idle:
                    conn, _ = self._idle.pop()
                    self._in_use[id(conn)] = conn
                    return conn

                if self._size < self._max_size:
                    # Reserve the slot; the connection is opened outside the lock
                    self._size += 1
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._timeouts_total += 1
                    raise PoolTimeoutError(
                        f"{self._name}: timed out after {wait_for:g}s waiting for a "
                        f"connection ({self._max_size} in use)",
                        timeout_seconds=wait_for,
                    )
                self._waiting += 1
                try:
                    self._cond.wait(remaining)
                finally:
                    self._waiting -= 1

        try:
            conn = self._opener()
        except BaseException:
            with self._cond:
                self._size -= 1
                self._cond.notify()
            raise

        with self._cond:
            self._opened_total += 1
            self._in_use[id(conn)] = conn
            logger.debug(f"{self._name}: opened connection ({self._size}/{self._max_size})")
        return conn

    def release(self, conn: Any) -> None:
        """
        Return a connection to the pool.

        Raises:
            PoolError: The connection is not checked out from this pool
        """
        with self._cond:
            if self._in_use.pop(id(conn), None) is None:
                raise PoolError(f"{self._name}: released connection is not checked out")

            if not self._closed:
                self._idle.append((conn, self._clock.monotonic()))
                self._cond.notify()
                return

            self._size -= 1

        _close_quietly(self._closer, conn)

    def discard(self, conn: Any) -> None:
        """Close a checked-out connection and free its slot."""
        with self._cond:
            if self._in_use.pop(id(conn), None) is None:
                raise PoolError(f"{self._name}: discarded connection is not checked out")
            self._size -= 1
            self._cond.notify()

        _close_quietly(self._closer, conn)

    # --------------------------------------------------------
    # EVICTION
    # --------------------------------------------------------

    def evict_idle(self) -> int:
        """
        Close connections idle longer than the idle timeout.

        Oldest idle connections go first; the pool never shrinks
        below min_size.

        Returns:
            Number of connections evicted
        """
        now = self._clock.monotonic()
        victims = []

        with self._cond:
            while self._idle and self._size > self._min_size:
                conn, released_at = self._idle[0]
                if now - released_at < self._idle_timeout:
                    break
                self._idle.popleft()
                self._size -= 1
                victims.append(conn)

            if victims:
                self._evicted_total += len(victims)
                self._cond.notify(len(victims))

        for conn in victims:
            _close_quietly(self._closer, conn)

        if victims:
            logger.debug(f"{self._name}: evicted {len(victims)} idle connection(s)")
        return len(victims)

    def _ensure_evictor(self) -> None:
        # Called with the condition held
        if self._evictor is not None or self._eviction_interval <= 0:
            return
        self._evictor = threading.Thread(
            target=self._eviction_loop,
            name=f"{self._name}-evictor",
            daemon=True,
        )
        self._evictor.start()

    def _eviction_loop(self) -> None:
        while not self._stop_evictor.wait(self._eviction_interval):
            try:
                self.evict_idle()
            except Exception as e:
                logger.error(f"{self._name}: eviction run failed: {e}", exc_info=True)

    # --------------------------------------------------------
    # SHUTDOWN
    # --------------------------------------------------------

    def close(self) -> None:
        """
        Close the pool.

        Idle connections are closed now, checked-out ones when
        they are released. Waiters fail with PoolClosedError.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = [conn for conn, _ in self._idle]
            self._idle.clear()
            self._size -= len(idle)
            self._cond.notify_all()
            evictor = self._evictor

        self._stop_evictor.set()
        if evictor is not None and evictor is not threading.current_thread():
            evictor.join(timeout=1.0)

        for conn in idle:
            _close_quietly(self._closer, conn)

        logger.debug(f"{self._name}: closed ({len(idle)} idle connection(s) released)")

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                size=self._size,
                idle=len(self._idle),
                in_use=len(self._in_use),
                max_size=self._max_size,
                min_size=self._min_size,
                waiting=self._waiting,
                opened_total=self._opened_total,
                evicted_total=self._evicted_total,
                timeouts_total=self._timeouts_total,
                closed=self._closed,
            )

    def describe(self) -> str:
        s = self.stats()
        return f"Pool size: {s.size}  Idle: {s.idle}  In use: {s.in_use}  Max: {s.max_size}"


# ============================================================
# SQLALCHEMY ADAPTER
# ============================================================

class BoundedPool(Pool):
    """
    SQLAlchemy pool backed by ConnectionPool.

    Used as create_engine(..., poolclass=BoundedPool, min_size=...,
    max_size=..., idle_timeout=..., acquire_timeout=...,
    eviction_interval=...).
    """

    def __init__(
        self,
        creator,
        min_size: int = 0,
        max_size: int = 5,
        idle_timeout: float = 10.0,
        acquire_timeout: float = 10.0,
        eviction_interval: float = 10.0,
        **kw,
    ):
        Pool.__init__(self, creator, **kw)
        self._connections = ConnectionPool(
            opener=self._create_connection,
            closer=lambda record: record.close(),
            min_size=min_size,
            max_size=max_size,
            idle_timeout=idle_timeout,
            acquire_timeout=acquire_timeout,
            eviction_interval=eviction_interval,
            name="db-pool",
        )

    @property
    def connections(self) -> ConnectionPool:
        return self._connections

    def _do_get(self) -> ConnectionPoolEntry:
        return self._connections.acquire()

    def _do_return_conn(self, record: ConnectionPoolEntry) -> None:
        self._connections.release(record)

    def dispose(self) -> None:
        self._connections.close()
        self.logger.info("Pool disposed. %s", self.status())

    def recreate(self) -> "BoundedPool":
        self.logger.info("Pool recreating")
        pool = self._connections
        return self.__class__(
            self._creator,
            min_size=pool.min_size,
            max_size=pool.max_size,
            idle_timeout=pool.idle_timeout,
            acquire_timeout=pool.acquire_timeout,
            eviction_interval=pool.eviction_interval,
            recycle=self._recycle,
            echo=self.echo,
            pre_ping=self._pre_ping,
            logging_name=self._orig_logging_name,
            reset_on_return=self._reset_on_return,
            _dispatch=self.dispatch,
            dialect=self._dialect,
        )

    def status(self) -> str:
        return self._connections.describe()

    def size(self) -> int:
        return self._connections.max_size

    def checkedin(self) -> int:
        return self._connections.stats().idle

    def checkedout(self) -> int:
        return self._connections.stats().in_use


__all__ = [
    "ConnectionPool",
    "BoundedPool",
    "PoolStats",
]
