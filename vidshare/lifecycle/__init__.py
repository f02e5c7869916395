"""Process lifecycle: port negotiation, listener, supervisor, runner."""

from .supervisor import (
    InvalidTransitionError,
    LifecycleSupervisor,
    ListenerState,
    ShutdownReason,
    ShutdownSignal,
)

__all__ = [
    "LifecycleSupervisor",
    "ListenerState",
    "ShutdownReason",
    "ShutdownSignal",
    "InvalidTransitionError",
]
