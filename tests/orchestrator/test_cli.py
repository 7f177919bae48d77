"""
Tests for the command line interface and application entry point.
"""

import logging

import pytest

from app import main as app_main, wire_modules
from orchestrator.cli import (
    EXIT_FAILURE,
    EXIT_OK,
    build_config,
    create_parser,
    validate_args,
)
from orchestrator.core import Orchestrator
from orchestrator.models import ProcessMode


ENV_VARS = (
    "PROCESS_MODE", "SHUTDOWN_TIMEOUT_SECONDS", "LOG_LEVEL", "LOG_FORMAT",
    "DB_DIALECT", "DB_HOST", "DB_PORT", "DB_DATABASE", "DB_USERNAME",
    "DB_PASSWORD", "DB_SCHEMA_DROP", "DB_POOL_MIN", "DB_POOL_MAX",
    "DB_POOL_IDLE", "DB_POOL_ACQUIRE", "DB_POOL_EVICT",
    "DB_QUERY_RETRY_MATCH", "DB_QUERY_RETRY_MAX",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def parser():
    orchestrator = Orchestrator()
    wire_modules(orchestrator)
    return create_parser(orchestrator)


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self, parser):
        args = parser.parse_args([])

        assert args.process_mode == "normal"
        assert args.shutdown_timeout == 30
        assert args.log_level == "INFO"
        assert args.log_format == "text"
        assert args.check is False

    def test_module_options_are_added(self, parser):
        args = parser.parse_args(["--db-dialect", "sqlite", "--db-pool-max", "2"])

        assert args.db_dialect == "sqlite"
        assert args.db_pool_max == 2
        assert args.db_query_retry_match == "SQLITE_BUSY"

    def test_parser_without_orchestrator(self):
        args = create_parser().parse_args([])

        assert not hasattr(args, "db_dialect")

    def test_build_config(self, parser):
        args = parser.parse_args(["--process-mode", "worker", "--log-level", "DEBUG"])

        config = build_config(args)

        assert config.process_mode == ProcessMode.WORKER
        assert config.log_level == "DEBUG"

    def test_validate_args(self, parser):
        args = parser.parse_args(["--shutdown-timeout", "0"])

        assert validate_args(args) == ["shutdown_timeout_seconds must be at least 1"]

    def test_unknown_process_mode(self, parser):
        with pytest.raises(SystemExit):
            parser.parse_args(["--process-mode", "supervisor"])


class TestMain:
    """Tests for the application entry point."""

    def test_check_succeeds(self, tmp_path):
        db_path = tmp_path / "app.db"

        code = app_main([
            "--check",
            "--db-dialect", "sqlite",
            "--db-database", str(db_path),
            "--db-pool-evict", "0",
            "--log-level", "WARNING",
        ])

        assert code == EXIT_OK
        assert db_path.exists()

    def test_unreachable_database_fails(self, tmp_path):
        code = app_main([
            "--check",
            "--db-dialect", "sqlite",
            "--db-database", str(tmp_path / "missing" / "app.db"),
            "--log-level", "CRITICAL",
        ])

        assert code == EXIT_FAILURE

    def test_invalid_database_config_fails(self, tmp_path):
        code = app_main([
            "--check",
            "--db-dialect", "sqlite",
            "--db-database", str(tmp_path / "app.db"),
            "--db-pool-max", "0",
            "--log-level", "CRITICAL",
        ])

        assert code == EXIT_FAILURE

    def test_invalid_arguments_fail(self, tmp_path, capsys):
        code = app_main(["--check", "--shutdown-timeout", "0"])

        assert code == EXIT_FAILURE
        assert "shutdown_timeout_seconds must be at least 1" in capsys.readouterr().err

    def test_daemon_controller_skips_database(self, tmp_path):
        code = app_main([
            "--check",
            "--process-mode", "daemon-controller",
            "--db-dialect", "sqlite",
            "--db-database", str(tmp_path / "missing" / "app.db"),
            "--log-level", "WARNING",
        ])

        assert code == EXIT_OK
        assert not (tmp_path / "missing").exists()

    def test_environment_configuration(self, tmp_path, monkeypatch):
        db_path = tmp_path / "env.db"
        monkeypatch.setenv("DB_DIALECT", "sqlite")
        monkeypatch.setenv("DB_DATABASE", str(db_path))
        monkeypatch.setenv("DB_POOL_EVICT", "0")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        assert app_main(["--check"]) == EXIT_OK
        assert db_path.exists()


class TestWiring:
    """Tests for module wiring."""

    def test_database_is_critical_without_start_timeout(self):
        orchestrator = Orchestrator()
        wire_modules(orchestrator)

        definition = orchestrator.registry.get_all_definitions()["database"]

        assert definition.critical
        assert definition.timeout_seconds is None
