"""
Name: Lifecycle Supervisor

Responsibilities:
  - Own the listener state machine:
      UNBOUND -> BOUND -> ACCEPTING -> DRAINING -> CLOSED
      UNBOUND -> FAILED_TO_BIND
  - Turn termination signals and unhandled loop errors into one ShutdownSignal
  - Decide the process exit code (0 after a signal, 1 after an error)

Collaborators:
  - lifecycle/runner.py: drives the transitions and waits for shutdown
  - asyncio loop: signal handlers and the loop exception handler are installed here

Constraints:
  - Illegal transitions raise InvalidTransitionError
  - The first shutdown request wins; later ones are logged and ignored
  - Pure state + logging; no sockets, so it is testable without a process
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass
from enum import Enum

from ..crosscutting.exceptions import VidshareError
from ..crosscutting.logger import logger

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ListenerState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    ACCEPTING = "accepting"
    DRAINING = "draining"
    CLOSED = "closed"
    FAILED_TO_BIND = "failed_to_bind"


class ShutdownReason(str, Enum):
    SIGNAL = "signal"
    ASYNC_ERROR = "async_error"
    BIND_CONFLICT = "bind_conflict"


@dataclass(frozen=True)
class ShutdownSignal:
    reason: ShutdownReason
    detail: str = ""


class InvalidTransitionError(VidshareError):
    error_code: str = "INVALID_LIFECYCLE_TRANSITION"


# R: A shutdown can be requested while the server is still starting (BOUND).
_TRANSITIONS: dict[ListenerState, frozenset[ListenerState]] = {
    ListenerState.UNBOUND: frozenset({ListenerState.BOUND, ListenerState.FAILED_TO_BIND}),
    ListenerState.BOUND: frozenset({ListenerState.ACCEPTING, ListenerState.DRAINING}),
    ListenerState.ACCEPTING: frozenset({ListenerState.DRAINING}),
    ListenerState.DRAINING: frozenset({ListenerState.CLOSED}),
    ListenerState.CLOSED: frozenset(),
    ListenerState.FAILED_TO_BIND: frozenset(),
}


class LifecycleSupervisor:
    def __init__(self) -> None:
        self._state = ListenerState.UNBOUND
        self._port: int | None = None
        self._shutdown: ShutdownSignal | None = None
        self._shutdown_event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- state -------------------------------------------------------------
    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def shutdown_signal(self) -> ShutdownSignal | None:
        return self._shutdown

    @property
    def exit_code(self) -> int:
        if self._state == ListenerState.FAILED_TO_BIND:
            return 1
        if self._shutdown is None or self._shutdown.reason == ShutdownReason.SIGNAL:
            return 0
        return 1

    def _transition(self, target: ListenerState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Invalid lifecycle transition: {self._state.value} -> {target.value}"
            )
        logger.debug(
            "lifecycle transition",
            extra={"from_state": self._state.value, "to_state": target.value},
        )
        self._state = target

    # -- transitions -------------------------------------------------------
    def mark_bound(self, port: int) -> None:
        self._transition(ListenerState.BOUND)
        self._port = port
        logger.info(f"Listener bound on port {port}", extra={"port": port})

    def mark_accepting(self, port: int, run_mode: str) -> None:
        self._transition(ListenerState.ACCEPTING)
        self._port = port
        logger.info(
            f"Server running in {run_mode} mode on port {port}",
            extra={"run_mode": run_mode, "port": port},
        )

    def fail_to_bind(self, error: Exception) -> int:
        """UNBOUND -> FAILED_TO_BIND; returns the exit code (1)."""
        self._transition(ListenerState.FAILED_TO_BIND)
        port = getattr(error, "port", None)
        if getattr(error, "in_use", False):
            logger.error(
                f"Port {port} is already in use",
                extra={"port": port, "reason": ShutdownReason.BIND_CONFLICT.value},
            )
        else:
            logger.error(
                "Failed to bind listener", extra={"port": port, "error": str(error)}
            )
        return 1

    def begin_drain(self) -> None:
        self._transition(ListenerState.DRAINING)
        logger.info(
            "draining connections",
            extra={"reason": self._shutdown.reason.value if self._shutdown else None},
        )

    def mark_closed(self) -> int:
        """DRAINING -> CLOSED; idempotent once closed. Returns the exit code."""
        if self._state == ListenerState.CLOSED:
            return self.exit_code
        self._transition(ListenerState.CLOSED)
        logger.info("shutdown complete", extra={"exit_code": self.exit_code})
        return self.exit_code

    # -- shutdown requests -------------------------------------------------
    def request_shutdown(self, shutdown: ShutdownSignal) -> bool:
        """Record the first shutdown request and wake the runner; False if one exists."""
        if self._shutdown is not None:
            logger.info(
                "shutdown already in progress",
                extra={
                    "reason": shutdown.reason.value,
                    "detail": shutdown.detail,
                    "state": self._state.value,
                },
            )
            return False

        self._shutdown = shutdown
        self._shutdown_event.set()
        logger.info(
            "shutdown requested",
            extra={"reason": shutdown.reason.value, "detail": shutdown.detail},
        )
        return True

    def handle_signal(self, signum: int) -> bool:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        return self.request_shutdown(ShutdownSignal(ShutdownReason.SIGNAL, name))

    def handle_async_error(self, exc: BaseException) -> bool:
        logger.error(
            f"Error: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return self.request_shutdown(ShutdownSignal(ShutdownReason.ASYNC_ERROR, str(exc)))

    def _loop_exception_handler(self, loop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = RuntimeError(context.get("message", "unhandled error in event loop"))
        self.handle_async_error(exc)

    async def wait_for_shutdown(self) -> ShutdownSignal:
        await self._shutdown_event.wait()
        return self._shutdown

    # -- loop hooks --------------------------------------------------------
    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route SIGINT/SIGTERM and unhandled loop errors to this supervisor."""
        self._loop = loop
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler.
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self.handle_signal, signum
                    ),
                )
        loop.set_exception_handler(self._loop_exception_handler)

    def uninstall(self) -> None:
        loop, self._loop = self._loop, None
        if loop is None:
            return
        for sig in HANDLED_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)
        loop.set_exception_handler(None)


__all__ = [
    "ListenerState",
    "ShutdownReason",
    "ShutdownSignal",
    "InvalidTransitionError",
    "LifecycleSupervisor",
]
