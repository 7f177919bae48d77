"""
Orchestrator Package.

Composition root for the host process: module registry,
hooks, process modes and the command line interface.
"""

from .core import Orchestrator, setup_logging
from .hooks import Hook, HookRegistry
from .models import (
    ModuleDefinition,
    ModuleInstance,
    ModuleStatus,
    OrchestratorConfig,
    ProcessMode,
)
from .registry import ModuleContext, ModuleFactory, ModuleRegistry

__all__ = [
    "Orchestrator",
    "setup_logging",
    "Hook",
    "HookRegistry",
    "ModuleDefinition",
    "ModuleInstance",
    "ModuleStatus",
    "OrchestratorConfig",
    "ProcessMode",
    "ModuleContext",
    "ModuleFactory",
    "ModuleRegistry",
]
