"""
Core Module Package.

This package contains the infrastructure components
that the database and orchestrator packages depend on.

Components:
- clock: Testable time abstraction
- state_manager: Connection lifecycle state machine
- exceptions: Custom exception hierarchy
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock
from .exceptions import KernelException
from .state_manager import LifecycleState, StateManager

__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "KernelException",
    "LifecycleState",
    "StateManager",
]
