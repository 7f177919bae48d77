"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Composition root of the process.

- Registers modules and collects their command line options
- Lets modules register hook participants before startup
- Starts modules in dependency order, stops them in reverse
- Reports fatal startup errors once, at CRITICAL
- Handles signals (SIGINT, SIGTERM)

============================================================
STARTUP FAILURE
============================================================
If a critical module fails to start, modules that did start
are stopped again before the error propagates. The caller
(CLI) turns the error into a non-zero exit status.

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from .hooks import HookRegistry, Participant
from .models import OrchestratorConfig
from .registry import ModuleFactory, ModuleRegistry
from core.clock import ClockFactory
from core.exceptions import KernelException, ShutdownError, StartupError


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
) -> logging.Logger:
    """
    Set up process-wide logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        The orchestrator logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# ORCHESTRATOR
# ============================================================

class Orchestrator:
    """
    Process orchestrator.

    Usage:
        orchestrator = Orchestrator(config)
        orchestrator.register_module("database", DatabaseModule, critical=True)
        orchestrator.latch("database:ddl", extend_schema)
        orchestrator.configure(options=parser.parse_args())
        await orchestrator.start()
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        options: Optional[argparse.Namespace] = None,
    ):
        self._config = config or OrchestratorConfig()
        self._options = options or argparse.Namespace()
        self._registry = ModuleRegistry()
        self._hooks = HookRegistry()
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._logger = logging.getLogger("orchestrator")

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # Composition
    # --------------------------------------------------------

    def register_module(
        self,
        name: str,
        module_class: type,
        dependencies: Optional[List[str]] = None,
        enabled: bool = True,
        critical: bool = False,
        timeout_seconds: Optional[float] = 60.0,
    ) -> None:
        """Register a module with the orchestrator."""
        self._registry.register(
            name=name,
            module_class=module_class,
            dependencies=dependencies,
            enabled=enabled,
            critical=critical,
            timeout_seconds=timeout_seconds,
        )

    def latch(self, hook_name: str, participant: Participant, label: Optional[str] = None) -> None:
        """Register a hook participant during composition."""
        self._hooks.latch(hook_name, participant, label)

    def declare_options(self, parser: argparse.ArgumentParser) -> None:
        """Add every registered module's options to the parser."""
        for definition in self._registry.get_all_definitions().values():
            declare = getattr(definition.module_class, "declare_options", None)
            if declare is not None:
                declare(parser)

    def configure(
        self,
        config: Optional[OrchestratorConfig] = None,
        options: Optional[argparse.Namespace] = None,
    ) -> None:
        """Apply parsed configuration before start()."""
        if self._running:
            raise StartupError(message="Cannot reconfigure a running orchestrator")
        if config is not None:
            self._config = config
        if options is not None:
            self._options = options

    def get_module(self, name: str) -> Optional[Any]:
        return self._registry.get_instance(name)

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Instantiate, wire and start all modules.

        Raises:
            KernelException: Startup failed; already started modules
                have been stopped again
        """
        if self._running:
            self._logger.warning("Orchestrator already running")
            return

        self._logger.info(
            f"Starting modules | process_mode={self._config.process_mode.value}"
        )
        factory = ModuleFactory(
            registry=self._registry,
            hooks=self._hooks,
            options=self._options,
            process_mode=self._config.process_mode,
        )

        try:
            await self._registry.instantiate_all(factory.create)
            self._registry.latch_all(self._hooks)
            self._hooks.seal_all()
            started = await self._registry.start_all()
        except Exception as e:
            self.report_fatal(e)
            stopped = await self._registry.stop_all()
            if stopped:
                self._logger.info(f"Stopped {len(stopped)} module(s) after failed startup")
            raise

        self._running = True
        self._logger.info(f"Started {len(started)} module(s): {', '.join(started)}")

    def report_fatal(self, error: BaseException) -> None:
        """Log a fatal error once, at CRITICAL, naming the failing operation."""
        reason = error
        if isinstance(error, StartupError) and error.cause is not None:
            reason = error.cause
        message = reason.message if isinstance(reason, KernelException) else str(reason)
        if not message:
            message = str(error) or type(error).__name__
        self._logger.critical(message)

    async def stop(self) -> None:
        """Stop all running modules in reverse dependency order."""
        if not self._running:
            return

        self._logger.info("Stopping modules")
        try:
            stopped = await asyncio.wait_for(
                self._registry.stop_all(),
                timeout=self._config.shutdown_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ShutdownError(
                message="Shutdown timed out",
                timeout_seconds=self._config.shutdown_timeout_seconds,
                cause=e,
            ) from e
        finally:
            self._running = False

        self._logger.info(f"Stopped {len(stopped)} module(s)")

    def request_shutdown(self) -> None:
        """Ask run_forever() to stop."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run_forever(self) -> None:
        """Start, wait for a shutdown request or signal, then stop."""
        self._shutdown_event = asyncio.Event()
        if not self._running:
            await self.start()

        self._install_signal_handlers()
        try:
            await self._shutdown_event.wait()
        finally:
            self._restore_signal_handlers()
            await self.stop()

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler, sig, None)

    def _restore_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self._logger.info(f"Received signal {signal.Signals(signum).name}")
        self.request_shutdown()

    # --------------------------------------------------------
    # Health & Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "process_mode": self._config.process_mode.value,
            "current_time": ClockFactory.get_clock().now().isoformat(),
            "modules": self._registry.get_status_summary(),
            "hooks": self._hooks.names(),
        }

    async def health_check(self) -> Dict[str, Any]:
        module_health = await self._registry.check_all_health()
        unhealthy = self._registry.get_unhealthy_modules()
        return {
            "healthy": self._running and not unhealthy,
            "modules": module_health,
            "unhealthy_modules": unhealthy,
        }


__all__ = [
    "Orchestrator",
    "setup_logging",
]
