"""
Tests for engine creation and the database handle.

============================================================
PURPOSE
============================================================
- Connection URLs and credential-free display URLs
- Statement logging without catalog introspection
- Handle operations against a real sqlite file

============================================================
"""

import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Column, Integer, String, select

from database.config import DatabaseConfig
from database.engine import (
    DatabaseHandle,
    build_connection_url,
    describe_connection,
    log_statement,
)
from database.pool import BoundedPool
from database.retry import RetryPolicy
from database.schema import SchemaModel


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def sqlite_config(tmp_path):
    return DatabaseConfig(
        dialect="sqlite",
        database=str(tmp_path / "app.db"),
        pool_evict=0,
    )


@pytest.fixture
def handle(sqlite_config):
    handle = DatabaseHandle.from_config(sqlite_config)
    yield handle
    handle.close()


@pytest.fixture
def schema():
    model = SchemaModel()
    model.define(
        "users",
        Column("id", Integer, primary_key=True),
        Column("name", String(50), nullable=False),
    )
    return model


# ============================================================
# CONNECTION URL
# ============================================================

class TestConnectionUrl:
    """Tests for URL building."""

    def test_postgres_url(self):
        config = DatabaseConfig(username="app", password="s3cret", database="main")

        url = build_connection_url(config)

        assert url.drivername == "postgresql"
        assert url.username == "app"
        assert url.password == "s3cret"
        assert url.host == "localhost"
        assert url.port == 5432
        assert url.database == "main"

    @pytest.mark.parametrize("dialect,driver", [
        ("mysql", "mysql+pymysql"),
        ("mariadb", "mariadb+pymysql"),
        ("mssql", "mssql+pyodbc"),
    ])
    def test_driver_names(self, dialect, driver):
        url = build_connection_url(DatabaseConfig(dialect=dialect, port=1234))

        assert url.drivername == driver
        assert url.port == 1234

    def test_sqlite_url_ignores_network_fields(self):
        config = DatabaseConfig(
            dialect="sqlite",
            host="db.internal",
            username="root",
            password="secret",
            database="/data/app.db",
        )

        url = build_connection_url(config)

        assert url.drivername == "sqlite"
        assert url.database == "/data/app.db"
        assert url.host is None
        assert url.username is None
        assert url.password is None

    def test_display_url_never_contains_password(self):
        config = DatabaseConfig(username="app", password="s3cret", database="main")

        display = describe_connection(config)

        assert display == "postgres://app@localhost:5432/main"
        assert "s3cret" not in display

    def test_sqlite_display_url(self):
        config = DatabaseConfig(dialect="sqlite", database="./data.db", password="x")

        assert describe_connection(config) == "sqlite://./data.db"


# ============================================================
# STATEMENT LOGGING
# ============================================================

class TestStatementLogging:
    """Tests for the before_cursor_execute listener."""

    def _log(self, statement):
        log_statement(None, None, statement, {}, None, False)

    def test_statement_is_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="database.sql"):
            self._log("INSERT INTO users (name) VALUES (?)")

        assert [r.getMessage() for r in caplog.records] == [
            "DB: INSERT INTO users (name) VALUES (?)"
        ]

    @pytest.mark.parametrize("statement", [
        "SELECT name FROM sqlite_master WHERE type='table'",
        "PRAGMA main.table_info(\"users\")",
        "PRAGMA table_xinfo(users)",
        "SELECT c.relname FROM pg_catalog.pg_class c WHERE c.relkind = 'r'",
        "select table_name from information_schema.tables",
    ])
    def test_catalog_queries_are_suppressed(self, caplog, statement):
        with caplog.at_level(logging.DEBUG, logger="database.sql"):
            self._log(statement)

        assert caplog.records == []

    def test_nothing_logged_above_debug(self, caplog):
        with caplog.at_level(logging.INFO, logger="database.sql"):
            self._log("SELECT 1")

        assert caplog.records == []


# ============================================================
# HANDLE
# ============================================================

class TestDatabaseHandle:
    """Tests for DatabaseHandle against sqlite."""

    def test_from_config(self, handle, sqlite_config):
        assert handle.url == f"sqlite://{sqlite_config.database}"
        assert isinstance(handle.engine.pool, BoundedPool)
        assert handle.retry_policy.max_attempts == 5

    def test_authenticate(self, handle):
        handle.authenticate()

        assert handle.pool_status()["size"] == 1
        assert handle.pool_status()["in_use"] == 0

    def test_sync_creates_tables(self, handle, schema):
        handle.sync(schema)

        rows = handle.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        assert [row[0] for row in rows] == ["users"]

    def test_sync_keeps_data_without_drop(self, handle, schema):
        handle.sync(schema)
        handle.execute("INSERT INTO users (name) VALUES (:name)", {"name": "ada"})

        handle.sync(schema)

        assert handle.execute("SELECT count(*) FROM users")[0][0] == 1

    def test_sync_with_drop_recreates_tables(self, handle, schema):
        handle.sync(schema)
        handle.execute("INSERT INTO users (name) VALUES (:name)", {"name": "ada"})

        handle.sync(schema, drop=True)

        assert handle.execute("SELECT count(*) FROM users")[0][0] == 0

    def test_execute_returns_rowcount(self, handle, schema):
        handle.sync(schema)

        count = handle.execute(
            schema["users"].insert(),
            {"name": "grace"},
        )

        assert count == 1
        rows = handle.execute(select(schema["users"].c.name))
        assert [row.name for row in rows] == ["grace"]

    def test_run_retries_matched_errors(self, sqlite_config):
        sleeps = []
        handle = DatabaseHandle.from_config(sqlite_config)
        handle.retry_policy = RetryPolicy(match=["SQLITE_BUSY"], sleep=sleeps.append)
        operation = MagicMock(side_effect=[RuntimeError("SQLITE_BUSY"), "done"])

        try:
            assert handle.run(operation) == "done"
        finally:
            handle.close()

        assert operation.call_count == 2
        assert sleeps == [0.1]

    def test_transaction_commits(self, handle, schema):
        handle.sync(schema)
        users = schema["users"]

        with handle.transaction() as session:
            session.execute(users.insert().values(name="linus"))

        assert handle.execute("SELECT name FROM users")[0][0] == "linus"

    def test_transaction_rolls_back_on_error(self, handle, schema):
        handle.sync(schema)
        users = schema["users"]

        with pytest.raises(RuntimeError):
            with handle.transaction() as session:
                session.execute(users.insert().values(name="ken"))
                raise RuntimeError("abort")

        assert handle.execute("SELECT count(*) FROM users")[0][0] == 0

    def test_session_context(self, handle, schema):
        handle.sync(schema)

        with handle.session() as session:
            assert session.execute(select(schema["users"])).all() == []

    def test_close_is_idempotent(self, handle):
        handle.authenticate()

        handle.close()
        handle.close()

        assert handle.closed
