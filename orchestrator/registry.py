"""
Orchestrator - Module Registry.

============================================================
RESPONSIBILITY
============================================================
Manages module registration, dependency resolution, and lifecycle.

- Register modules with dependencies
- Resolve dependency order
- Give each module a context (options, process mode, hooks,
  access to the modules it depends on)
- Start modules in dependency order, stop them in reverse
- Track module health

============================================================
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from .hooks import HookRegistry
from .models import (
    ModuleDefinition,
    ModuleInstance,
    ModuleStatus,
    ProcessMode,
)
from core.exceptions import ModuleError, StartupError
from core.clock import ClockFactory


# ============================================================
# MODULE PROTOCOL
# ============================================================

class ModuleProtocol(Protocol):
    """
    Protocol that all modules should implement.

    Optional extras picked up by the orchestrator:
    - classmethod declare_options(parser): contribute CLI options
    - classmethod from_context(context): build from a ModuleContext
    - latch(hooks): register hook participants before startup
    """

    async def start(self) -> Any:
        """Start the module."""
        ...

    async def stop(self) -> None:
        """Stop the module."""
        ...

    def get_health_status(self) -> Dict[str, Any]:
        """Get health status."""
        ...


# ============================================================
# MODULE CONTEXT
# ============================================================

@dataclass
class ModuleContext:
    """What a module receives from the host when it is created."""

    name: str
    options: argparse.Namespace
    process_mode: ProcessMode
    hooks: HookRegistry
    registry: "ModuleRegistry"

    def require(self, name: str) -> Any:
        """
        Get another module's instance.

        Raises:
            ModuleError: If the module is not registered or not instantiated
        """
        instance = self.registry.get_instance(name)
        if instance is None:
            raise ModuleError(
                message=f"Module '{self.name}' requires '{name}', which is not available",
                module_name=self.name,
                operation="require",
                context={"required": name},
            )
        return instance


# ============================================================
# DEPENDENCY GRAPH
# ============================================================

class DependencyGraph:
    """
    Manages module dependencies and resolution order.

    Uses topological sort to determine startup order; modules
    without an ordering constraint keep their registration order.
    """

    def __init__(self):
        self._edges: Dict[str, List[str]] = {}  # node -> dependencies

    def add_node(self, name: str, dependencies: Optional[List[str]] = None) -> None:
        """Add a node with its dependencies."""
        self._edges[name] = list(dependencies or [])

        for dep in (dependencies or []):
            self._edges.setdefault(dep, [])

    def get_startup_order(self) -> List[str]:
        """
        Get modules in startup order (dependencies first).

        Raises:
            ModuleError: If circular dependency detected
        """
        visited: Set[str] = set()
        temp_visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str) -> None:
            if node in temp_visited:
                raise ModuleError(
                    message=f"Circular dependency detected involving: {node}",
                    module_name=node,
                )
            if node in visited:
                return

            temp_visited.add(node)
            for dep in self._edges.get(node, []):
                visit(dep)
            temp_visited.remove(node)

            visited.add(node)
            order.append(node)

        for node in list(self._edges):
            if node not in visited:
                visit(node)

        return order

    def get_shutdown_order(self) -> List[str]:
        """Get modules in shutdown order (reverse of startup)."""
        return list(reversed(self.get_startup_order()))

    def get_dependents(self, name: str) -> Set[str]:
        """Get modules that depend on the given module."""
        return {node for node, deps in self._edges.items() if name in deps}


# ============================================================
# MODULE REGISTRY
# ============================================================

class ModuleRegistry:
    """
    Central registry for all process modules.

    Handles:
    - Module registration
    - Dependency resolution
    - Lifecycle management (start/stop)
    - Health tracking
    """

    def __init__(self):
        self._definitions: Dict[str, ModuleDefinition] = {}
        self._instances: Dict[str, ModuleInstance] = {}
        self._graph = DependencyGraph()
        self._logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    # --------------------------------------------------------
    # Registration
    # --------------------------------------------------------

    def register(
        self,
        name: str,
        module_class: type,
        dependencies: Optional[List[str]] = None,
        enabled: bool = True,
        critical: bool = False,
        timeout_seconds: Optional[float] = 60.0,
    ) -> ModuleDefinition:
        """
        Register a module.

        Args:
            name: Unique module name
            module_class: Class to instantiate
            dependencies: Names of modules that must start first
            enabled: Whether module is enabled
            critical: Whether failure stops the process
            timeout_seconds: Start/stop timeout (None for no timeout)

        Raises:
            ModuleError: If the name is already registered
        """
        definition = ModuleDefinition(
            name=name,
            module_class=module_class,
            dependencies=dependencies or [],
            enabled=enabled,
            critical=critical,
            timeout_seconds=timeout_seconds,
        )
        self.register_definition(definition)
        return definition

    def register_definition(self, definition: ModuleDefinition) -> None:
        """Register a module from a definition."""
        if definition.name in self._definitions:
            raise ModuleError(
                message=f"Module already registered: {definition.name}",
                module_name=definition.name,
                operation="register",
            )
        self._definitions[definition.name] = definition
        self._graph.add_node(definition.name, definition.dependencies)
        self._logger.debug(f"Registered module: {definition.name}")

    # --------------------------------------------------------
    # Instance Management
    # --------------------------------------------------------

    def get_instance(self, name: str) -> Optional[Any]:
        instance = self._instances.get(name)
        return instance.instance if instance else None

    def get_module_info(self, name: str) -> Optional[ModuleInstance]:
        return self._instances.get(name)

    def get_all_instances(self) -> Dict[str, ModuleInstance]:
        return dict(self._instances)

    def get_all_definitions(self) -> Dict[str, ModuleDefinition]:
        return dict(self._definitions)

    def get_startup_order(self) -> List[str]:
        """Get registered modules in startup order."""
        order = self._graph.get_startup_order()
        missing = [
            dep
            for name, defn in self._definitions.items()
            for dep in defn.dependencies
            if dep not in self._definitions
        ]
        if missing:
            raise ModuleError(
                message=f"Unregistered module dependencies: {', '.join(sorted(set(missing)))}",
                operation="resolve",
            )
        return [m for m in order if m in self._definitions]

    def get_shutdown_order(self) -> List[str]:
        return list(reversed(self.get_startup_order()))

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def instantiate_all(
        self,
        factory: Callable[[ModuleDefinition], Any],
    ) -> None:
        """
        Instantiate all enabled modules in startup order.

        Args:
            factory: Function to create module instance from definition
        """
        async with self._lock:
            for name in self.get_startup_order():
                if name in self._instances:
                    continue
                defn = self._definitions[name]
                if not defn.enabled:
                    continue
                try:
                    instance = factory(defn)
                except Exception as e:
                    self._logger.error(f"Failed to instantiate {name}: {e}")
                    if defn.critical:
                        raise StartupError(
                            message=f"Failed to instantiate critical module {name}: {e}",
                            module=name,
                            cause=e,
                        ) from e
                    continue
                self._instances[name] = ModuleInstance(
                    definition=defn,
                    instance=instance,
                    status=ModuleStatus.NOT_STARTED,
                )
                self._logger.debug(f"Instantiated module: {name}")

    def latch_all(self, hooks: HookRegistry) -> None:
        """Let every instantiated module register its hook participants."""
        for name in self.get_startup_order():
            module_info = self._instances.get(name)
            if module_info and hasattr(module_info.instance, "latch"):
                module_info.instance.latch(hooks)

    async def start_all(self) -> List[str]:
        """
        Start all modules in dependency order.

        Returns:
            List of successfully started modules

        Raises:
            StartupError: If a critical module fails to start
        """
        started = []

        for name in self.get_startup_order():
            module_info = self._instances.get(name)
            if not module_info or module_info.status != ModuleStatus.NOT_STARTED:
                continue

            try:
                await self.start_module(name)
                started.append(name)
            except Exception as e:
                self._logger.error(f"Failed to start module {name}: {e}")
                if module_info.definition.critical:
                    raise

        return started

    async def start_module(self, name: str) -> None:
        """
        Start a single module.

        Raises:
            ModuleError: If the module is unknown
            StartupError: If module fails to start
        """
        module_info = self._instances.get(name)
        if not module_info:
            raise ModuleError(
                message=f"Module not found: {name}",
                module_name=name,
            )

        if module_info.status == ModuleStatus.RUNNING:
            return

        for dep in module_info.definition.dependencies:
            dep_info = self._instances.get(dep)
            if not dep_info or dep_info.status != ModuleStatus.RUNNING:
                raise StartupError(
                    message=f"Dependency not running: {dep}",
                    module=name,
                    context={"dependency": dep},
                )

        module_info.status = ModuleStatus.STARTING
        clock = ClockFactory.get_clock()

        try:
            if hasattr(module_info.instance, "start"):
                await asyncio.wait_for(
                    module_info.instance.start(),
                    timeout=module_info.definition.timeout_seconds,
                )
        except asyncio.TimeoutError as e:
            module_info.status = ModuleStatus.ERROR
            module_info.error = "Start timeout"
            raise StartupError(
                message=(
                    f"Module start timeout: {name} "
                    f"({module_info.definition.timeout_seconds:g}s)"
                ),
                module=name,
                cause=e,
            ) from e
        except Exception as e:
            module_info.status = ModuleStatus.ERROR
            module_info.error = str(e)
            raise StartupError(
                message=f"Module start failed: {name}",
                module=name,
                cause=e,
            ) from e

        module_info.status = ModuleStatus.RUNNING
        module_info.started_at = clock.now()
        module_info.error = None
        self._logger.info(f"Started module: {name}")

    async def stop_all(self) -> List[str]:
        """
        Stop all running modules in reverse dependency order.

        Returns:
            List of successfully stopped modules
        """
        stopped = []

        for name in self.get_shutdown_order():
            module_info = self._instances.get(name)
            if not module_info or module_info.status != ModuleStatus.RUNNING:
                continue

            if await self.stop_module(name):
                stopped.append(name)

        return stopped

    async def stop_module(self, name: str) -> bool:
        """
        Stop a single running module.

        Returns:
            True if the module stopped cleanly
        """
        module_info = self._instances.get(name)
        if not module_info or module_info.status != ModuleStatus.RUNNING:
            return False

        for dep in self._graph.get_dependents(name):
            dep_info = self._instances.get(dep)
            if dep_info and dep_info.status == ModuleStatus.RUNNING:
                self._logger.warning(f"Stopping {name} while dependent {dep} is running")

        module_info.status = ModuleStatus.STOPPING
        clock = ClockFactory.get_clock()

        try:
            if hasattr(module_info.instance, "stop"):
                await asyncio.wait_for(
                    module_info.instance.stop(),
                    timeout=module_info.definition.timeout_seconds,
                )
        except asyncio.TimeoutError:
            module_info.status = ModuleStatus.ERROR
            module_info.error = "Stop timeout"
            self._logger.error(f"Module stop timeout: {name}")
            return False
        except Exception as e:
            module_info.status = ModuleStatus.ERROR
            module_info.error = str(e)
            self._logger.error(f"Module stop failed: {name}: {e}")
            return False

        module_info.status = ModuleStatus.STOPPED
        module_info.stopped_at = clock.now()
        self._logger.info(f"Stopped module: {name}")
        return True

    # --------------------------------------------------------
    # Health
    # --------------------------------------------------------

    async def check_health(self, name: str) -> Dict[str, Any]:
        """Check health of a module."""
        module_info = self._instances.get(name)
        if not module_info:
            return {"status": "not_found", "module": name}

        if module_info.status != ModuleStatus.RUNNING:
            return {
                "status": "not_running",
                "module": name,
                "module_status": module_info.status.value,
            }

        try:
            if hasattr(module_info.instance, "get_health_status"):
                health = module_info.instance.get_health_status()
            else:
                health = {"status": "healthy", "module": name}
        except Exception as e:
            module_info.health_checks_failed += 1
            return {"status": "error", "module": name, "error": str(e)}

        module_info.health_checks_passed += 1
        return health

    async def check_all_health(self) -> Dict[str, Dict[str, Any]]:
        results = {}
        for name in self._instances:
            results[name] = await self.check_health(name)
        return results

    def get_unhealthy_modules(self) -> List[str]:
        return [name for name, info in self._instances.items() if not info.is_healthy]

    def get_status_summary(self) -> Dict[str, Any]:
        """Get summary of all module statuses."""
        status_counts = {status.value: 0 for status in ModuleStatus}
        for info in self._instances.values():
            status_counts[info.status.value] += 1

        return {
            "total_registered": len(self._definitions),
            "total_instantiated": len(self._instances),
            "status_counts": status_counts,
            "unhealthy": self.get_unhealthy_modules(),
        }


# ============================================================
# MODULE FACTORY
# ============================================================

class ModuleFactory:
    """
    Factory for creating module instances.

    Modules that define from_context(context) receive a
    ModuleContext; others are constructed without arguments.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        hooks: HookRegistry,
        options: Optional[argparse.Namespace] = None,
        process_mode: ProcessMode = ProcessMode.NORMAL,
    ):
        self._registry = registry
        self._hooks = hooks
        self._options = options or argparse.Namespace()
        self._process_mode = process_mode

    def context_for(self, definition: ModuleDefinition) -> ModuleContext:
        return ModuleContext(
            name=definition.name,
            options=self._options,
            process_mode=self._process_mode,
            hooks=self._hooks,
            registry=self._registry,
        )

    def create(self, definition: ModuleDefinition) -> Any:
        """Create a module instance from definition."""
        module_class = definition.module_class
        if hasattr(module_class, "from_context"):
            return module_class.from_context(self.context_for(definition))
        return module_class()

    __call__ = create


__all__ = [
    "ModuleProtocol",
    "ModuleContext",
    "DependencyGraph",
    "ModuleRegistry",
    "ModuleFactory",
]
