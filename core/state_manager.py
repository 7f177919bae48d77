"""
Core Module - Lifecycle State Manager.

============================================================
RESPONSIBILITY
============================================================
Tracks the lifecycle state of the database connection.

- Enforces valid transitions
- Records every transition with reason and timestamp
- Notifies listeners on state change

============================================================
STATE MACHINE
============================================================
UNCONFIGURED -> AUTHENTICATING -> SCHEMA_EXTENDING -> SYNCING -> READY
READY -> CLOSING -> CLOSED

- SCHEMA_EXTENDING -> READY when the process skips schema sync
- READY -> SYNCING to re-synchronize a running connection
- AUTHENTICATING, SCHEMA_EXTENDING, SYNCING -> FAILED (terminal)

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Set
import logging
import threading

from .clock import now_utc
from .exceptions import StateTransitionError


# ============================================================
# LIFECYCLE STATE
# ============================================================

class LifecycleState(Enum):
    """Connection lifecycle states."""

    UNCONFIGURED = "unconfigured"
    """Configured but not yet started."""

    AUTHENTICATING = "authenticating"
    """Opening and authenticating the pooled connection."""

    SCHEMA_EXTENDING = "schema_extending"
    """Schema extension participants are being called."""

    SYNCING = "syncing"
    """Schema is being synchronized with the database."""

    READY = "ready"
    """Handle and schema model are available."""

    CLOSING = "closing"
    """Pooled connections are being released."""

    CLOSED = "closed"
    """Connection released; the handle is unusable."""

    FAILED = "failed"
    """Startup failed fatally."""

    @property
    def is_operational(self) -> bool:
        """Check if the handle may be used."""
        return self == LifecycleState.READY

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return self in (LifecycleState.CLOSED, LifecycleState.FAILED)


# ============================================================
# STATE TRANSITIONS
# ============================================================

VALID_TRANSITIONS: Dict[LifecycleState, Set[LifecycleState]] = {
    LifecycleState.UNCONFIGURED: {
        LifecycleState.AUTHENTICATING,
    },
    LifecycleState.AUTHENTICATING: {
        LifecycleState.SCHEMA_EXTENDING,
        LifecycleState.FAILED,
    },
    LifecycleState.SCHEMA_EXTENDING: {
        LifecycleState.SYNCING,
        LifecycleState.READY,
        LifecycleState.FAILED,
    },
    LifecycleState.SYNCING: {
        LifecycleState.READY,
        LifecycleState.FAILED,
    },
    LifecycleState.READY: {
        LifecycleState.SYNCING,
        LifecycleState.CLOSING,
    },
    LifecycleState.CLOSING: {
        LifecycleState.CLOSED,
    },
    LifecycleState.CLOSED: set(),
    LifecycleState.FAILED: set(),
}


@dataclass
class StateTransition:
    """Record of a state transition."""

    from_state: LifecycleState
    to_state: LifecycleState
    reason: str
    triggered_by: str
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "triggered_by": self.triggered_by,
            "timestamp": self.timestamp.isoformat(),
        }


StateListener = Callable[[StateTransition], None]


# ============================================================
# STATE MANAGER
# ============================================================

class StateManager:
    """
    Thread-safe lifecycle state holder.

    Transitions are validated against VALID_TRANSITIONS; an invalid
    one raises StateTransitionError and leaves the state unchanged.
    """

    def __init__(
        self,
        owner: str = "database",
        initial_state: LifecycleState = LifecycleState.UNCONFIGURED,
        max_history: int = 100,
    ):
        self._owner = owner
        self._state = initial_state
        self._reason = "created"
        self._history: List[StateTransition] = []
        self._max_history = max_history
        self._listeners: List[StateListener] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    def can_transition_to(self, target_state: LifecycleState) -> bool:
        return target_state in VALID_TRANSITIONS.get(self._state, set())

    def require(self, *states: LifecycleState, operation: str = "") -> None:
        """Raise unless the current state is one of `states`."""
        if self._state not in states:
            expected = ", ".join(s.value for s in states)
            raise StateTransitionError(
                message=(
                    f"{self._owner}: {operation or 'operation'} requires state "
                    f"{expected}, current state is {self._state.value}"
                ),
                from_state=self._state.value,
            )

    def transition_to(
        self,
        target_state: LifecycleState,
        reason: str = "",
        triggered_by: str = "system",
    ) -> StateTransition:
        """
        Transition to a new state.

        Raises:
            StateTransitionError: If transition is invalid
        """
        with self._lock:
            if not self.can_transition_to(target_state):
                raise StateTransitionError(
                    message=(
                        f"{self._owner}: invalid state transition: "
                        f"{self._state.value} -> {target_state.value}"
                    ),
                    from_state=self._state.value,
                    to_state=target_state.value,
                    reason=reason,
                )

            transition = StateTransition(
                from_state=self._state,
                to_state=target_state,
                reason=reason,
                triggered_by=triggered_by,
            )
            self._state = target_state
            self._reason = reason
            self._history.append(transition)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

        self._logger.debug(
            f"{self._owner} state: {transition.from_state.value} -> "
            f"{target_state.value} | reason={reason}"
        )
        self._notify_listeners(transition)
        return transition

    def register_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def unregister_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self, transition: StateTransition) -> None:
        for listener in self._listeners:
            try:
                listener(transition)
            except Exception as e:
                self._logger.error(f"State listener error: {e}", exc_info=True)


__all__ = [
    "LifecycleState",
    "StateTransition",
    "StateListener",
    "StateManager",
    "VALID_TRANSITIONS",
]
