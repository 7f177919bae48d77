"""
Orchestrator - Hooks.

============================================================
RESPONSIBILITY
============================================================
Named extension points that modules contribute to.

- Participants register during composition, before startup
- A broadcast calls every participant once, synchronously,
  in registration order
- Once broadcast starts the hook is sealed; late registration
  is an error instead of a silently skipped participant

============================================================
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging

from core.exceptions import HookError


logger = logging.getLogger(__name__)


Participant = Callable[..., Any]


@dataclass
class _Registration:
    name: str
    participant: Participant


# ============================================================
# HOOK
# ============================================================

class Hook:
    """An ordered list of participants for one extension point."""

    def __init__(self, name: str):
        self.name = name
        self._registrations: List[_Registration] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def participants(self) -> List[str]:
        return [r.name for r in self._registrations]

    def register(self, participant: Participant, name: Optional[str] = None) -> None:
        """
        Add a participant.

        Raises:
            HookError: If the hook has already been broadcast
        """
        label = name or getattr(participant, "__qualname__", None) or repr(participant)
        if self._sealed:
            raise HookError(
                message=f"hook '{self.name}' is sealed; cannot register '{label}'",
                hook=self.name,
                participant=label,
            )
        if not callable(participant):
            raise HookError(
                message=f"hook '{self.name}' participant '{label}' is not callable",
                hook=self.name,
                participant=label,
            )
        self._registrations.append(_Registration(label, participant))
        logger.debug(f"Hook '{self.name}': registered participant '{label}'")

    def seal(self) -> None:
        self._sealed = True

    def broadcast(self, *args, **kwargs) -> List[Any]:
        """
        Call every participant in registration order.

        Returns:
            The participants' return values, in order

        Raises:
            HookError: If a participant raises (later participants are not called)
        """
        self._sealed = True
        results = []
        for registration in self._registrations:
            try:
                results.append(registration.participant(*args, **kwargs))
            except HookError:
                raise
            except Exception as e:
                raise HookError(
                    message=(
                        f"hook '{self.name}' participant '{registration.name}' "
                        f"failed: {e}"
                    ),
                    hook=self.name,
                    participant=registration.name,
                    cause=e,
                ) from e
        logger.debug(
            f"Hook '{self.name}': broadcast to {len(self._registrations)} participant(s)"
        )
        return results


# ============================================================
# HOOK REGISTRY
# ============================================================

class HookRegistry:
    """Named hooks shared by all modules of a process."""

    def __init__(self):
        self._hooks: Dict[str, Hook] = {}

    def get(self, name: str) -> Hook:
        """Get a hook, creating it on first use."""
        hook = self._hooks.get(name)
        if hook is None:
            hook = Hook(name)
            self._hooks[name] = hook
        return hook

    def latch(self, name: str, participant: Participant, label: Optional[str] = None) -> None:
        """Register a participant on a named hook."""
        self.get(name).register(participant, name=label)

    def hook(self, name: str, *args, **kwargs) -> List[Any]:
        """Broadcast a named hook."""
        return self.get(name).broadcast(*args, **kwargs)

    def names(self) -> List[str]:
        return list(self._hooks)

    def seal_all(self) -> None:
        for hook in self._hooks.values():
            hook.seal()


__all__ = [
    "Hook",
    "HookRegistry",
    "Participant",
]
