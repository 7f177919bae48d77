"""
Database Module for Orchestrator.

============================================================
PURPOSE
============================================================
Owns the process's database connection from configuration
to shutdown, as an orchestrator-compatible module.

============================================================
LIFECYCLE
============================================================
start():
  1. daemon controllers return immediately (no connection)
  2. build the pooled handle and authenticate
  3. broadcast "database:ddl" (handle, schema_model) so other
     modules can extend the schema, then freeze the model
  4. sync_schema() (skipped in worker processes)
  5. READY: handle and schema_model become available

stop():
  close the handle and every pooled connection

Failures in 2 and 4 raise DatabaseConnectionError and
SchemaSyncError; reporting them and terminating is up to
the host. Authentication and sync are never interrupted
midway: a cancelled start() waits for them, then fails.

============================================================
"""

import argparse
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from core.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    HookError,
    SchemaSyncError,
)
from core.state_manager import LifecycleState, StateManager
from orchestrator.hooks import Hook
from orchestrator.models import ProcessMode

from .config import DatabaseConfig, declare_options
from .engine import DatabaseHandle, describe_connection
from .schema import SchemaModel


logger = logging.getLogger("database.module")


DDL_HOOK = "database:ddl"
"""Hook called with (handle, schema_model) before schema sync."""


async def _run_to_completion(operation: str, func: Callable[..., Any], *args: Any) -> Any:
    """
    Run a blocking call in a worker thread and wait for its outcome.

    Cancelling the caller does not abandon the call: its result is
    awaited (and discarded) before CancelledError is re-raised.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        logger.warning(f"cancelled during {operation}, waiting for it to finish")
        await asyncio.gather(task, return_exceptions=True)
        raise


class DatabaseModule:
    """
    Database connection lifecycle manager.

    Other modules reach the live connection through
    context.require("database").handle once the module is READY.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        process_mode: ProcessMode = ProcessMode.NORMAL,
        ddl_hook: Optional[Hook] = None,
        handle_factory: Callable[[DatabaseConfig], DatabaseHandle] = DatabaseHandle.from_config,
    ) -> None:
        """
        Initialize the database module.

        Args:
            config: Database configuration (default: from environment)
            process_mode: Role of this process
            ddl_hook: Schema extension hook (default: a private, empty hook)
            handle_factory: Builds the connection handle from a config

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config = config if config is not None else DatabaseConfig.from_env()
        self._config = config.normalized().ensure_valid()
        self._process_mode = process_mode
        self._ddl_hook = ddl_hook if ddl_hook is not None else Hook(DDL_HOOK)
        self._handle_factory = handle_factory

        self._state = StateManager(owner="database")
        self._handle: Optional[DatabaseHandle] = None
        self._schema_model = SchemaModel()
        self._url = describe_connection(self._config)

    # --------------------------------------------------------
    # HOST INTEGRATION
    # --------------------------------------------------------

    @classmethod
    def declare_options(cls, parser: argparse.ArgumentParser) -> None:
        """Contribute the db-* options to the host's parser."""
        declare_options(parser)

    @classmethod
    def from_context(cls, context) -> "DatabaseModule":
        """Build from the orchestrator's ModuleContext."""
        if hasattr(context.options, "db_dialect"):
            config = DatabaseConfig.from_options(context.options)
        else:
            config = DatabaseConfig.from_env()
        return cls(
            config=config,
            process_mode=context.process_mode,
            ddl_hook=context.hooks.get(DDL_HOOK),
        )

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def process_mode(self) -> ProcessMode:
        return self._process_mode

    @property
    def state(self) -> LifecycleState:
        return self._state.state

    @property
    def url(self) -> str:
        """Credential-free connection URL."""
        return self._url

    @property
    def ddl_hook(self) -> Hook:
        return self._ddl_hook

    @property
    def handle(self) -> DatabaseHandle:
        """The live connection handle (READY only)."""
        self._state.require(LifecycleState.READY, operation="handle access")
        return self._handle

    @property
    def schema_model(self) -> SchemaModel:
        """The frozen schema model (READY only)."""
        self._state.require(LifecycleState.READY, operation="schema model access")
        return self._schema_model

    # --------------------------------------------------------
    # ORCHESTRATOR INTERFACE
    # --------------------------------------------------------

    async def start(self) -> Optional[DatabaseHandle]:
        """
        Open, extend and synchronize the database.

        Authentication and schema sync run to completion once begun.
        If start() is cancelled meanwhile, the in-flight operation is
        awaited, the module moves to FAILED and the handle is closed
        before the cancellation propagates.

        Returns:
            The connection handle, or None for daemon controllers

        Raises:
            ConfigurationError: The connection handle could not be built
            DatabaseConnectionError: Authentication failed
            HookError: A schema extension participant failed
            SchemaSyncError: Schema synchronization failed
            StateTransitionError: start() was already called
        """
        if not self._process_mode.owns_connection:
            logger.debug("Daemon controller process, not opening a database connection")
            return None

        self._state.transition_to(LifecycleState.AUTHENTICATING, reason="start")
        try:
            handle = self._handle_factory(self._config)
        except Exception as e:
            self._state.transition_to(LifecycleState.FAILED, reason=f"handle setup failed: {e}")
            raise ConfigurationError(
                message=f"cannot set up {self._config.dialect.value} connection to {self._url}: {e}",
                config_key="db-dialect",
                actual_value=self._config.dialect.value,
                cause=e,
            ) from e

        try:
            await _run_to_completion("authentication", handle.authenticate)
        except asyncio.CancelledError:
            await self._abort(handle, "authentication cancelled")
            raise
        except Exception as e:
            await self._abort(handle, f"authentication failed: {e}")
            raise DatabaseConnectionError(
                message=f"failed to open database connection to {self._url}: {e}",
                operation="authenticate",
                url=self._url,
                cause=e,
            ) from e

        logger.info(f"opened database connection to {self._url}")
        self._handle = handle

        self._state.transition_to(LifecycleState.SCHEMA_EXTENDING, reason="authenticated")
        try:
            self._ddl_hook.broadcast(handle, self._schema_model)
        except HookError as e:
            await self._abort(handle, str(e))
            raise
        self._schema_model.freeze()

        await self._sync(initial=True)

        self._state.transition_to(LifecycleState.READY, reason="started")
        return handle

    async def sync_schema(self) -> None:
        """
        Re-synchronize the schema of a READY connection.

        Raises:
            SchemaSyncError: Schema synchronization failed
        """
        self._state.require(LifecycleState.READY, operation="sync_schema")
        await self._sync(initial=False)
        if self._state.state == LifecycleState.SYNCING:
            self._state.transition_to(LifecycleState.READY, reason="synchronized")

    async def _sync(self, initial: bool) -> None:
        if not self._process_mode.synchronizes_schema:
            logger.debug("Worker process, leaving database schema to the primary process")
            return

        self._state.transition_to(LifecycleState.SYNCING, reason="sync schema")
        drop = self._config.schema_drop and initial
        try:
            await _run_to_completion("schema sync", self._handle.sync, self._schema_model, drop)
        except asyncio.CancelledError:
            await self._abort(self._handle, "schema sync cancelled")
            raise
        except Exception as e:
            await self._abort(self._handle, f"schema sync failed: {e}")
            raise SchemaSyncError(
                message=f"failed to synchronize database schema: {e}",
                operation="sync",
                url=self._url,
                cause=e,
            ) from e

        if drop:
            logger.info("(re)created database schema from scratch")
        else:
            logger.info("synchronized existing database schema")

    async def _abort(self, handle: DatabaseHandle, reason: str) -> None:
        """Move to FAILED and close the handle, keeping the original error."""
        self._state.transition_to(LifecycleState.FAILED, reason=reason)
        try:
            await _run_to_completion("close", handle.close)
        except Exception as e:
            logger.error(f"failed to close database connection after {reason}: {e}")

    async def stop(self) -> None:
        """
        Close the connection and release pooled connections.

        Raises:
            StateTransitionError: The module is not READY
        """
        if not self._process_mode.owns_connection:
            return

        self._state.transition_to(LifecycleState.CLOSING, reason="stop")
        logger.info("closing database connection")
        try:
            await asyncio.to_thread(self._handle.close)
        finally:
            self._state.transition_to(LifecycleState.CLOSED, reason="stopped")

    # --------------------------------------------------------
    # HEALTH
    # --------------------------------------------------------

    def get_health_status(self) -> Dict[str, Any]:
        """Get health status for monitoring."""
        state = self._state.state
        status: Dict[str, Any] = {
            "module": "DatabaseModule",
            "state": state.value,
            "process_mode": self._process_mode.value,
            "url": self._url,
        }

        if not self._process_mode.owns_connection:
            status["status"] = "detached"
            return status

        if state != LifecycleState.READY:
            status["status"] = "failed" if state == LifecycleState.FAILED else "not_ready"
            return status

        status["status"] = "healthy"
        status["pool"] = self._handle.pool_status()
        return status


__all__ = [
    "DatabaseModule",
    "DDL_HOOK",
]
