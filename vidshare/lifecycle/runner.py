"""
Name: Process Runner (bootstrap entry point)

Responsibilities:
  - Run startup strictly in order: settings -> store -> pipeline -> port -> listener
  - Serve with uvicorn on the pre-bound socket until the supervisor asks to stop
  - Drain in-flight requests, close the store handle, exit with the supervisor's code

Collaborators:
  - crosscutting.config.load_settings / crosscutting.logger.configure_logging
  - infrastructure.db.DataStoreConnector
  - api.pipeline.assemble_app
  - lifecycle.ports.resolve_port, lifecycle.listener.bind_listener
  - lifecycle.supervisor.LifecycleSupervisor (signals, loop errors, exit code)

Constraints:
  - Any startup failure exits 1 and never exposes a listener
  - Nothing is retried
  - Signals belong to the supervisor; uvicorn's own signal capture is disabled
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import socket
import sys
from typing import Callable, Iterable

import uvicorn

from ..api.pipeline import assemble_app
from ..api.routes import RouteGroup
from ..crosscutting.config import Settings, load_settings
from ..crosscutting.exceptions import (
    ConfigurationError,
    MissingConfigurationError,
    PortBindError,
    StartupError,
)
from ..crosscutting.logger import configure_logging, logger
from ..infrastructure.db import DataStoreConnector
from .listener import bind_listener
from .ports import PortFinder, PortPredicate, resolve_port
from .supervisor import LifecycleSupervisor, ShutdownReason, ShutdownSignal

_STARTUP_POLL_SECONDS = 0.01


class SupervisedServer(uvicorn.Server):
    """uvicorn server whose shutdown is driven by LifecycleSupervisor."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_server(app, settings: Settings, port: int) -> SupervisedServer:
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=port,
        lifespan="off",
        log_config=None,
        access_log=False,
        server_header=False,
        timeout_graceful_shutdown=math.ceil(settings.shutdown_grace_seconds),
    )
    return SupervisedServer(config)


async def _run_until_shutdown(
    server: SupervisedServer,
    sock: socket.socket,
    *,
    port: int,
    settings: Settings,
    supervisor: LifecycleSupervisor,
) -> bool:
    """
    Serve until a shutdown request, then drain. Returns False if draining failed.

    Raises:
        StartupError: the server stopped before it accepted connections
    """
    serve_task = asyncio.create_task(server.serve(sockets=[sock]))

    while (
        not server.started
        and not serve_task.done()
        and supervisor.shutdown_signal is None
    ):
        await asyncio.sleep(_STARTUP_POLL_SECONDS)

    if serve_task.done() and not server.started:
        sock.close()
        error = None if serve_task.cancelled() else serve_task.exception()
        raise StartupError(
            "ASGI server stopped before accepting connections", original_error=error
        )

    if server.started:
        supervisor.mark_accepting(port, settings.run_mode)
        waiter = asyncio.create_task(supervisor.wait_for_shutdown())
        done, _ = await asyncio.wait(
            {serve_task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        waiter.cancel()
        if serve_task in done and supervisor.shutdown_signal is None:
            error = None if serve_task.cancelled() else serve_task.exception()
            supervisor.request_shutdown(
                ShutdownSignal(
                    ShutdownReason.ASYNC_ERROR,
                    str(error) if error else "server stopped unexpectedly",
                )
            )

    supervisor.begin_drain()
    server.should_exit = True
    try:
        await serve_task
    except Exception:
        logger.error("server failed while draining", exc_info=True)
        return False
    return True


async def serve(
    settings: Settings,
    *,
    connector: DataStoreConnector | None = None,
    route_groups: Iterable[RouteGroup] | None = None,
    supervisor: LifecycleSupervisor | None = None,
    is_port_free: PortPredicate | None = None,
    find_free_port: PortFinder | None = None,
    bind: Callable[[str, int], socket.socket] = bind_listener,
) -> int:
    """
    Start the service and block until it has shut down.

    Returns:
        Exit status (0 after a signal, 1 after a bind failure or an async error)

    Raises:
        StartupError: store connection, pipeline assembly or port resolution failed
    """
    supervisor = supervisor or LifecycleSupervisor()
    connector = connector or DataStoreConnector.from_settings(settings)

    data_store = await connector.connect()
    try:
        app = assemble_app(settings, data_store, route_groups)
        port = await resolve_port(
            settings.preferred_port,
            host=settings.host,
            is_port_free=is_port_free,
            find_free_port=find_free_port,
        )

        try:
            sock = bind(settings.host, port)
        except PortBindError as exc:
            return supervisor.fail_to_bind(exc)
        supervisor.mark_bound(port)

        supervisor.install(asyncio.get_running_loop())
        try:
            drained = await _run_until_shutdown(
                build_server(app, settings, port),
                sock,
                port=port,
                settings=settings,
                supervisor=supervisor,
            )
        finally:
            supervisor.uninstall()
    finally:
        await data_store.close()

    exit_code = supervisor.mark_closed()
    return exit_code if drained else 1


def main() -> None:
    """Console entry point: `vidshare` / `python -m vidshare`."""
    try:
        settings = load_settings()
    except MissingConfigurationError as exc:
        logger.error(exc.message, extra={"missing_key": exc.key})
        sys.exit(1)
    except ConfigurationError as exc:
        logger.error(exc.message, extra={"error_code": exc.error_code})
        sys.exit(1)

    configure_logging(settings)

    try:
        exit_code = asyncio.run(serve(settings))
    except StartupError as exc:
        logger.error(
            exc.message,
            extra={"error_code": exc.error_code, "error_id": exc.error_id},
        )
        sys.exit(1)

    sys.exit(exit_code)
