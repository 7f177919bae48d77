"""
Database - Engine and Connection Handle.

============================================================
RESPONSIBILITY
============================================================
Turns a DatabaseConfig into a live, pooled SQLAlchemy engine
and wraps it in the DatabaseHandle shared by all modules.

- Dialect-specific connection URL (sqlite file vs network)
- Credential-free display URL for logs and errors
- BoundedPool as the engine pool
- Statement logging at DEBUG, without catalog introspection
- Authentication, schema synchronization, retried operations,
  sessions and transactions

============================================================
OWNERSHIP
============================================================
The handle is created and closed by DatabaseModule only.
Other modules use it; they never close it.

============================================================
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Mapping, Optional
import logging
import re

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import DatabaseConfig, Dialect
from .pool import BoundedPool
from .retry import RetryPolicy
from .schema import SchemaModel


logger = logging.getLogger(__name__)
sql_logger = logging.getLogger("database.sql")


# =============================================================
# CONNECTION URL
# =============================================================

DRIVER_NAMES: Dict[Dialect, str] = {
    Dialect.POSTGRES: "postgresql",
    Dialect.MYSQL: "mysql+pymysql",
    Dialect.MARIADB: "mariadb+pymysql",
    Dialect.MSSQL: "mssql+pyodbc",
    Dialect.SQLITE: "sqlite",
}


def build_connection_url(config: DatabaseConfig) -> URL:
    """SQLAlchemy URL for the config (includes the password)."""
    config = config.normalized()
    if config.dialect == Dialect.SQLITE:
        return URL.create("sqlite", database=config.database)
    return URL.create(
        DRIVER_NAMES[config.dialect],
        username=config.username or None,
        password=config.password or None,
        host=config.host or None,
        port=config.port,
        database=config.database,
    )


def describe_connection(config: DatabaseConfig) -> str:
    """
    Display URL used in log lines and error messages.

    sqlite://<path> for sqlite, otherwise
    <dialect>://<user>@<host>:<port>/<database>. Never contains the password.
    """
    config = config.normalized()
    if config.dialect == Dialect.SQLITE:
        return f"sqlite://{config.database}"
    return (
        f"{config.dialect.value}://{config.username}@{config.host}:"
        f"{config.port}/{config.database}"
    )


# =============================================================
# STATEMENT LOGGING
# =============================================================

CATALOG_QUERY = re.compile(
    r"FROM\s+(?:pg_catalog\.)?pg_class"
    r"|\bsqlite_(?:master|schema|temp_master)\b"
    r"|PRAGMA\s+(?:\w+\.)?table_"
    r"|\binformation_schema\.",
    re.IGNORECASE,
)


def log_statement(conn, cursor, statement, parameters, context, executemany) -> None:
    """before_cursor_execute listener forwarding statements to database.sql."""
    if not sql_logger.isEnabledFor(logging.DEBUG):
        return
    if CATALOG_QUERY.search(statement):
        return
    sql_logger.debug(f"DB: {statement}")


# =============================================================
# DATABASE ENGINE
# =============================================================

def create_database_engine(config: DatabaseConfig, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine with bounded connection pooling.

    Args:
        config: Database configuration
        echo: Let SQLAlchemy echo statements as well

    Returns:
        SQLAlchemy Engine (no connection is opened yet)
    """
    config = config.normalized()
    connect_args: Dict[str, Any] = {}
    if config.dialect == Dialect.SQLITE:
        # The pool hands connections to whichever thread acquires them
        connect_args["check_same_thread"] = False

    engine = create_engine(
        build_connection_url(config),
        poolclass=BoundedPool,
        min_size=config.pool_min,
        max_size=config.pool_max,
        idle_timeout=config.pool_idle,
        acquire_timeout=config.pool_acquire,
        eviction_interval=config.pool_evict,
        connect_args=connect_args,
        echo=echo,
    )
    event.listen(engine, "before_cursor_execute", log_statement)

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


# =============================================================
# CONNECTION HANDLE
# =============================================================

class DatabaseHandle:
    """
    The live, shared database connection for the process.

    Operations issued through run() and execute() go through the
    retry policy. transaction() is not retried.
    """

    def __init__(
        self,
        engine: Engine,
        display_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        dialect: Optional[Dialect] = None,
    ):
        self.engine = engine
        self.url = display_url
        self.dialect = dialect
        self.retry_policy = retry_policy or RetryPolicy()
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._closed = False

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "DatabaseHandle":
        """Build engine, pool and retry policy for a config."""
        config = config.normalized()
        return cls(
            engine=create_database_engine(config),
            display_url=describe_connection(config),
            retry_policy=RetryPolicy.from_config(config),
            dialect=config.dialect,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------------------------------------
    # LIFECYCLE OPERATIONS
    # --------------------------------------------------------

    def authenticate(self) -> None:
        """
        Open a pooled connection and run a trivial query.

        Not retried; failures propagate to the caller.
        """
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

    def sync(self, schema: SchemaModel, drop: bool = False) -> None:
        """
        Synchronize the schema model with the database.

        Args:
            schema: Tables to synchronize
            drop: Drop every model table first, then recreate all
                (destroys their data); otherwise only create missing tables
        """
        metadata = schema.metadata
        if drop:
            self.retry_policy.execute(metadata.drop_all, bind=self.engine, checkfirst=True)
        self.retry_policy.execute(metadata.create_all, bind=self.engine, checkfirst=True)

    def close(self) -> None:
        """Dispose of the engine and every pooled connection."""
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()

    # --------------------------------------------------------
    # OPERATIONS
    # --------------------------------------------------------

    def run(self, operation: Callable[[Connection], Any]) -> Any:
        """
        Run operation(connection) in a transaction, retrying on
        matched transient errors. Each attempt gets a fresh transaction.
        """
        def attempt():
            with self.engine.begin() as conn:
                return operation(conn)

        return self.retry_policy.execute(attempt)

    def execute(self, statement, parameters: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Execute a statement in its own transaction.

        Returns:
            List of rows for row-returning statements, else the rowcount
        """
        if isinstance(statement, str):
            statement = text(statement)

        def operation(conn: Connection):
            result = conn.execute(statement, parameters or {})
            if result.returns_rows:
                return result.all()
            return result.rowcount

        return self.run(operation)

    def get_session(self) -> Session:
        """
        Get a new ORM session.

        Caller is responsible for committing/closing.
        Prefer session() or transaction().
        """
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for sessions with automatic cleanup.

        Rolls back and re-raises on any exception.
        """
        session = self.get_session()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error, rolling back: {e}")
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Context manager for an explicit transaction boundary.

        Commits only if the block completes. Not retried: use run()
        for units of work that must survive transient errors.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed")
        except Exception as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    def pool_status(self) -> Dict[str, Any]:
        pool = self.engine.pool
        if isinstance(pool, BoundedPool):
            return pool.connections.stats().to_dict()
        return {"status": pool.status()}


__all__ = [
    "DRIVER_NAMES",
    "CATALOG_QUERY",
    "build_connection_url",
    "describe_connection",
    "create_database_engine",
    "log_statement",
    "DatabaseHandle",
]
