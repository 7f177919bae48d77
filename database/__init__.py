"""
Database Package Initialization.

============================================================
DATABASE CONNECTION LIFECYCLE
============================================================

Manages the process's single database connection:
configuration, bounded pooling, retry of transient
query failures, schema extension and synchronization.

Query building and ORM mapping are SQLAlchemy's; this
package configures and drives it.

============================================================
"""

from .config import Dialect, DatabaseConfig, declare_options
from .database_module import DDL_HOOK, DatabaseModule
from .engine import (
    DatabaseHandle,
    build_connection_url,
    create_database_engine,
    describe_connection,
)
from .pool import BoundedPool, ConnectionPool, PoolStats
from .retry import RetryPolicy, parse_matchers
from .schema import SchemaModel


__version__ = "1.0.0"


__all__ = [
    "__version__",

    # Configuration
    "Dialect",
    "DatabaseConfig",
    "declare_options",

    # Lifecycle
    "DatabaseModule",
    "DDL_HOOK",

    # Engine
    "DatabaseHandle",
    "build_connection_url",
    "create_database_engine",
    "describe_connection",

    # Pool
    "ConnectionPool",
    "BoundedPool",
    "PoolStats",

    # Retry
    "RetryPolicy",
    "parse_matchers",

    # Schema
    "SchemaModel",
]
