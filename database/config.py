"""
Database - Configuration.

============================================================
RESPONSIBILITY
============================================================
Defines the database connection configuration.

- Supported dialects
- Immutable connection/pool/retry configuration
- Command line option declarations (db-* options)
- Environment loading (DB_* variables, .env via python-dotenv)

============================================================
SQLITE
============================================================
For sqlite the database option is a filesystem path and
host, port, username and password are ignored. normalized()
blanks them so nothing downstream can use them by accident.

============================================================
"""

from enum import Enum
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Tuple
import argparse
import os
import re

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


# ============================================================
# DIALECTS
# ============================================================

class Dialect(Enum):
    """Supported database dialects."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MSSQL = "mssql"
    SQLITE = "sqlite"

    @property
    def is_file_based(self) -> bool:
        """Check if the dialect stores data in a local file."""
        return self == Dialect.SQLITE

    @classmethod
    def parse(cls, value: Any) -> "Dialect":
        """
        Parse a dialect name.

        Raises:
            ConfigurationError: If the dialect is unknown
        """
        if isinstance(value, Dialect):
            return value
        name = str(value or "").strip().lower()
        name = _DIALECT_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(d.value for d in cls)
            raise ConfigurationError(
                message=f"unknown dialect '{value}' (expected one of: {choices})",
                config_key="db-dialect",
                actual_value=value,
            ) from None


_DIALECT_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlserver": "mssql",
    "sqlite3": "sqlite",
}


# ============================================================
# DEFAULTS
# ============================================================

DEFAULT_DIALECT = "postgres"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
DEFAULT_DATABASE = "example"
DEFAULT_USERNAME = "example"
DEFAULT_PASSWORD = "example"
DEFAULT_POOL_MIN = 0
DEFAULT_POOL_MAX = 5
DEFAULT_POOL_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRY_MATCH = "SQLITE_BUSY"
DEFAULT_RETRY_MAX = 5

_MATCH_SEPARATOR = re.compile(r"\s*,\s*")


def split_match_list(value: str) -> Tuple[str, ...]:
    """Split a comma-separated matcher list, dropping empty entries."""
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if str(v))
    return tuple(part for part in _MATCH_SEPARATOR.split(str(value or "").strip()) if part)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration."""

    # Connection
    dialect: Dialect = Dialect.POSTGRES
    host: str = DEFAULT_HOST
    port: Optional[int] = DEFAULT_PORT
    database: str = DEFAULT_DATABASE
    """Database name, or the file path for sqlite."""
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD

    # Schema
    schema_drop: bool = False
    """Drop and recreate every table on startup (destroys data)."""

    # Pool (seconds)
    pool_min: int = DEFAULT_POOL_MIN
    pool_max: int = DEFAULT_POOL_MAX
    pool_idle: float = DEFAULT_POOL_TIMEOUT_SECONDS
    pool_acquire: float = DEFAULT_POOL_TIMEOUT_SECONDS
    pool_evict: float = DEFAULT_POOL_TIMEOUT_SECONDS

    # Query retry
    retry_match: Tuple[str, ...] = (DEFAULT_RETRY_MATCH,)
    retry_max: int = DEFAULT_RETRY_MAX

    def __post_init__(self) -> None:
        object.__setattr__(self, "dialect", Dialect.parse(self.dialect))
        object.__setattr__(self, "retry_match", split_match_list(self.retry_match))

    def normalized(self) -> "DatabaseConfig":
        """Return the config with fields the dialect ignores blanked."""
        if self.dialect.is_file_based:
            return replace(self, host="", port=None, username="", password="")
        return self

    # --------------------------------------------------------
    # CONSTRUCTION
    # --------------------------------------------------------

    @classmethod
    def from_options(cls, options: argparse.Namespace) -> "DatabaseConfig":
        """Build from parsed db-* command line options."""
        return cls(
            dialect=Dialect.parse(options.db_dialect),
            host=options.db_host,
            port=options.db_port,
            database=options.db_database,
            username=options.db_username,
            password=options.db_password,
            schema_drop=bool(options.db_schema_drop),
            pool_min=options.db_pool_min,
            pool_max=options.db_pool_max,
            pool_idle=options.db_pool_idle,
            pool_acquire=options.db_pool_acquire,
            pool_evict=options.db_pool_evict,
            retry_match=split_match_list(options.db_query_retry_match),
            retry_max=options.db_query_retry_max,
        )

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Load configuration from DB_* environment variables."""
        load_dotenv()
        port = os.getenv("DB_PORT", str(DEFAULT_PORT))
        return cls(
            dialect=Dialect.parse(os.getenv("DB_DIALECT", DEFAULT_DIALECT)),
            host=os.getenv("DB_HOST", DEFAULT_HOST),
            port=int(port) if port else None,
            database=os.getenv("DB_DATABASE", DEFAULT_DATABASE),
            username=os.getenv("DB_USERNAME", DEFAULT_USERNAME),
            password=os.getenv("DB_PASSWORD", DEFAULT_PASSWORD),
            schema_drop=_env_flag("DB_SCHEMA_DROP"),
            pool_min=int(os.getenv("DB_POOL_MIN", str(DEFAULT_POOL_MIN))),
            pool_max=int(os.getenv("DB_POOL_MAX", str(DEFAULT_POOL_MAX))),
            pool_idle=float(os.getenv("DB_POOL_IDLE", str(DEFAULT_POOL_TIMEOUT_SECONDS))),
            pool_acquire=float(os.getenv("DB_POOL_ACQUIRE", str(DEFAULT_POOL_TIMEOUT_SECONDS))),
            pool_evict=float(os.getenv("DB_POOL_EVICT", str(DEFAULT_POOL_TIMEOUT_SECONDS))),
            retry_match=split_match_list(os.getenv("DB_QUERY_RETRY_MATCH", DEFAULT_RETRY_MATCH)),
            retry_max=int(os.getenv("DB_QUERY_RETRY_MAX", str(DEFAULT_RETRY_MAX))),
        )

    # --------------------------------------------------------
    # VALIDATION
    # --------------------------------------------------------

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.pool_max < 1:
            errors.append("db-pool-max must be at least 1")
        if self.pool_min < 0:
            errors.append("db-pool-min must not be negative")
        elif self.pool_min > self.pool_max:
            errors.append("db-pool-min must not exceed db-pool-max")
        for key, value in (
            ("db-pool-idle", self.pool_idle),
            ("db-pool-acquire", self.pool_acquire),
            ("db-pool-evict", self.pool_evict),
        ):
            if value < 0:
                errors.append(f"{key} must not be negative")

        if self.retry_max < 1:
            errors.append("db-query-retry-max must be at least 1")

        if not self.database:
            errors.append("db-database must not be empty")

        if not self.dialect.is_file_based:
            if not self.host:
                errors.append("db-host must not be empty")
            if self.port is None or not 0 < self.port < 65536:
                errors.append("db-port must be between 1 and 65535")

        return errors

    def ensure_valid(self) -> "DatabaseConfig":
        """
        Raise ConfigurationError listing every validation error.

        Returns:
            self, for chaining
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                message="invalid database configuration: " + "; ".join(errors),
                context={"errors": errors},
            )
        return self


# ============================================================
# OPTION DECLARATIONS
# ============================================================

def declare_options(parser: argparse.ArgumentParser) -> argparse._ArgumentGroup:
    """
    Add the db-* options to a host parser.

    Defaults come from DB_* environment variables when set, so the
    precedence is command line, then environment, then built-in.
    """
    load_dotenv()
    group = parser.add_argument_group("Database Options")

    group.add_argument(
        "--db-dialect",
        type=str,
        metavar="DIALECT",
        default=os.getenv("DB_DIALECT", DEFAULT_DIALECT),
        help="database dialect: postgres, mysql, mariadb, mssql or sqlite (default: %(default)s)",
    )
    group.add_argument(
        "--db-host",
        type=str,
        metavar="HOST",
        default=os.getenv("DB_HOST", DEFAULT_HOST),
        help="database server host name (default: %(default)s)",
    )
    group.add_argument(
        "--db-port",
        type=int,
        metavar="PORT",
        default=os.getenv("DB_PORT", str(DEFAULT_PORT)),
        help="database server port (default: %(default)s)",
    )
    group.add_argument(
        "--db-database",
        type=str,
        metavar="NAME",
        default=os.getenv("DB_DATABASE", DEFAULT_DATABASE),
        help="database name, or file path for sqlite (default: %(default)s)",
    )
    group.add_argument(
        "--db-username",
        type=str,
        metavar="USERNAME",
        default=os.getenv("DB_USERNAME", DEFAULT_USERNAME),
        help="database user name (default: %(default)s)",
    )
    group.add_argument(
        "--db-password",
        type=str,
        metavar="PASSWORD",
        default=os.getenv("DB_PASSWORD", DEFAULT_PASSWORD),
        help="database user password",
    )
    group.add_argument(
        "--db-schema-drop",
        action="store_true",
        default=_env_flag("DB_SCHEMA_DROP"),
        help="drop and recreate the database schema on startup (destroys all data)",
    )
    group.add_argument(
        "--db-pool-min",
        type=int,
        metavar="NUM",
        default=os.getenv("DB_POOL_MIN", str(DEFAULT_POOL_MIN)),
        help="minimum number of pooled connections kept open (default: %(default)s)",
    )
    group.add_argument(
        "--db-pool-max",
        type=int,
        metavar="NUM",
        default=os.getenv("DB_POOL_MAX", str(DEFAULT_POOL_MAX)),
        help="maximum number of pooled connections (default: %(default)s)",
    )
    group.add_argument(
        "--db-pool-idle",
        type=float,
        metavar="SECONDS",
        default=os.getenv("DB_POOL_IDLE", str(DEFAULT_POOL_TIMEOUT_SECONDS)),
        help="seconds a connection may stay idle before it is released (default: %(default)s)",
    )
    group.add_argument(
        "--db-pool-acquire",
        type=float,
        metavar="SECONDS",
        default=os.getenv("DB_POOL_ACQUIRE", str(DEFAULT_POOL_TIMEOUT_SECONDS)),
        help="seconds to wait for a pooled connection before failing (default: %(default)s)",
    )
    group.add_argument(
        "--db-pool-evict",
        type=float,
        metavar="SECONDS",
        default=os.getenv("DB_POOL_EVICT", str(DEFAULT_POOL_TIMEOUT_SECONDS)),
        help="seconds between idle connection eviction runs, 0 disables (default: %(default)s)",
    )
    group.add_argument(
        "--db-query-retry-match",
        type=str,
        metavar="PATTERNS",
        default=os.getenv("DB_QUERY_RETRY_MATCH", DEFAULT_RETRY_MATCH),
        help="comma-separated error patterns that make a query retryable (default: %(default)s)",
    )
    group.add_argument(
        "--db-query-retry-max",
        type=int,
        metavar="NUM",
        default=os.getenv("DB_QUERY_RETRY_MAX", str(DEFAULT_RETRY_MAX)),
        help="maximum attempts for a retryable query (default: %(default)s)",
    )

    return group


__all__ = [
    "Dialect",
    "DatabaseConfig",
    "declare_options",
    "split_match_list",
    "DEFAULT_RETRY_MATCH",
]
