"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the module orchestrator.

- Process modes (normal, worker, daemon-controller)
- Module status and health
- Module definitions and runtime instances
- Orchestrator configuration

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional
import os

from core.exceptions import InvalidConfigError


# ============================================================
# PROCESS MODES
# ============================================================

class ProcessMode(Enum):
    """
    Role of the current process.

    A daemon controller only starts or stops a detached process
    and never touches the database. Workers share a database with
    a primary process, which alone synchronizes the schema.
    """

    NORMAL = "normal"
    """Standalone or primary process."""

    WORKER = "worker"
    """Worker process of a multi-process deployment."""

    DAEMON_CONTROLLER = "daemon-controller"
    """Process that only controls a background daemon."""

    @property
    def owns_connection(self) -> bool:
        """Check if the process opens its own database connection."""
        return self != ProcessMode.DAEMON_CONTROLLER

    @property
    def synchronizes_schema(self) -> bool:
        """Check if the process may create or drop tables."""
        return self == ProcessMode.NORMAL

    @classmethod
    def parse(cls, value: str) -> "ProcessMode":
        name = str(value).strip().lower().replace("_", "-")
        if name == "daemon":
            name = cls.DAEMON_CONTROLLER.value
        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidConfigError(
                "process-mode", value, f"expected one of: {choices}"
            ) from None


# ============================================================
# MODULE STATUS
# ============================================================

class ModuleStatus(Enum):
    """Module lifecycle status."""

    NOT_STARTED = "not_started"
    """Module has not been started."""

    STARTING = "starting"
    """Module is starting up."""

    RUNNING = "running"
    """Module is running normally."""

    STOPPING = "stopping"
    """Module is shutting down."""

    STOPPED = "stopped"
    """Module has stopped cleanly."""

    ERROR = "error"
    """Module encountered an error."""

    DISABLED = "disabled"
    """Module is disabled by configuration."""

    @property
    def is_healthy(self) -> bool:
        return self in (ModuleStatus.RUNNING, ModuleStatus.STOPPED, ModuleStatus.DISABLED)


# ============================================================
# MODULE DEFINITION
# ============================================================

@dataclass
class ModuleDefinition:
    """Definition of a module for registration."""

    name: str
    """Unique module name."""

    module_class: type
    """Module class to instantiate."""

    dependencies: List[str] = field(default_factory=list)
    """Names of modules this depends on."""

    enabled: bool = True
    """Whether module is enabled."""

    critical: bool = False
    """Whether module failure stops the process."""

    timeout_seconds: Optional[float] = 60.0
    """Timeout for start and stop (None waits for completion)."""


@dataclass
class ModuleInstance:
    """Runtime instance of a module."""

    definition: ModuleDefinition
    instance: Any
    status: ModuleStatus = ModuleStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    error: Optional[str] = None
    health_checks_passed: int = 0
    health_checks_failed: int = 0

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def is_healthy(self) -> bool:
        """Check if module is healthy."""
        if self.status != ModuleStatus.RUNNING:
            return False
        total = self.health_checks_passed + self.health_checks_failed
        if total >= 3:
            return self.health_checks_failed / total < 0.5
        return True


# ============================================================
# ORCHESTRATOR CONFIGURATION
# ============================================================

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    process_mode: ProcessMode = ProcessMode.NORMAL
    """Role of this process."""

    shutdown_timeout_seconds: int = 30
    """Timeout for graceful shutdown."""

    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "text"
    """Log output format (json or text)."""

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Load configuration from environment variables."""
        return cls(
            process_mode=ProcessMode.parse(os.getenv("PROCESS_MODE", "normal")),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.shutdown_timeout_seconds < 1:
            errors.append("shutdown_timeout_seconds must be at least 1")

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}")

        return errors


__all__ = [
    "ProcessMode",
    "ModuleStatus",
    "ModuleDefinition",
    "ModuleInstance",
    "OrchestratorConfig",
    "LOG_LEVELS",
    "LOG_FORMATS",
]
