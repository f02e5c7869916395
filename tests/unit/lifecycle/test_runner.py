"""
Name: Runner Tests (startup order, exit codes, graceful shutdown)

Responsibilities:
  - Missing configuration exits 1 before any store connection attempt
  - Store failure never reaches ACCEPTING and exposes no listener
  - Bind failure exits 1 and still closes the store
  - Signal-driven shutdown drains, closes the store and exits 0

Notes:
  - The full-cycle tests run a real uvicorn server on 127.0.0.1
"""

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from vidshare.crosscutting.exceptions import (
    DataStoreConnectionError,
    PipelineAssemblyError,
    PortBindError,
)
from vidshare.lifecycle.ports import ephemeral_port
from vidshare.lifecycle.runner import main, serve
from vidshare.lifecycle.supervisor import LifecycleSupervisor, ListenerState


class StubConnector:
    def __init__(self, store=None, error=None):
        self._store = store
        self._error = error
        self.connect_calls = 0

    async def connect(self):
        self.connect_calls += 1
        if self._error:
            raise self._error
        return self._store


async def _wait_for_state(supervisor, state, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while supervisor.state != state:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"supervisor never reached {state}")
        await asyncio.sleep(0.01)


@pytest.mark.unit
class TestMain:
    def test_missing_config_exits_1_before_connecting(self, monkeypatch):
        monkeypatch.delenv("DATA_STORE_URI", raising=False)
        monkeypatch.setenv("AUTH_SECRET", "s3cret")

        with patch("vidshare.lifecycle.runner.DataStoreConnector") as connector_cls, \
                patch("vidshare.lifecycle.runner.logger") as mock_logger:
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        connector_cls.assert_not_called()
        connector_cls.from_settings.assert_not_called()
        assert mock_logger.error.call_args.kwargs["extra"] == {
            "missing_key": "DATA_STORE_URI"
        }

    def test_startup_error_exits_1(self, monkeypatch):
        monkeypatch.setenv("DATA_STORE_URI", "postgresql://db.test/vidshare")
        monkeypatch.setenv("AUTH_SECRET", "s3cret")
        failing = AsyncMock(side_effect=DataStoreConnectionError("connection refused"))

        with patch("vidshare.lifecycle.runner.serve", failing), \
                patch("vidshare.lifecycle.runner.configure_logging"), \
                patch("vidshare.lifecycle.runner.logger") as mock_logger:
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        assert mock_logger.error.call_args.args[0] == "connection refused"

    def test_exit_code_from_serve(self, monkeypatch):
        monkeypatch.setenv("DATA_STORE_URI", "postgresql://db.test/vidshare")
        monkeypatch.setenv("AUTH_SECRET", "s3cret")

        with patch("vidshare.lifecycle.runner.serve", AsyncMock(return_value=0)), \
                patch("vidshare.lifecycle.runner.configure_logging"):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 0


@pytest.mark.unit
class TestServeStartupFailures:
    @pytest.mark.asyncio
    async def test_store_failure_never_reaches_accepting(self, settings):
        supervisor = LifecycleSupervisor()
        bind = MagicMock()
        connector = StubConnector(error=DataStoreConnectionError("unreachable"))

        with pytest.raises(DataStoreConnectionError):
            await serve(settings, connector=connector, supervisor=supervisor, bind=bind)

        assert supervisor.state == ListenerState.UNBOUND
        bind.assert_not_called()

    @pytest.mark.asyncio
    async def test_bind_failure_exits_1_and_closes_store(self, settings, fake_store):
        supervisor = LifecycleSupervisor()

        def bind(host, port):
            raise PortBindError(port, in_use=True)

        code = await serve(
            settings,
            connector=StubConnector(fake_store),
            supervisor=supervisor,
            is_port_free=lambda host, port: True,
            bind=bind,
        )

        assert code == 1
        assert supervisor.state == ListenerState.FAILED_TO_BIND
        assert fake_store.close_calls == 1

    @pytest.mark.asyncio
    async def test_pipeline_error_closes_store(self, settings, fake_store):
        with patch(
            "vidshare.lifecycle.runner.assemble_app",
            side_effect=PipelineAssemblyError("bad plan"),
        ):
            with pytest.raises(PipelineAssemblyError):
                await serve(settings, connector=StubConnector(fake_store))

        assert fake_store.close_calls == 1


@pytest.mark.unit
class TestServeLifecycle:
    @pytest.fixture
    def local_settings(self, make_settings):
        return make_settings(host="127.0.0.1", shutdown_grace_seconds=2)

    @pytest.mark.asyncio
    async def test_signal_drains_and_exits_0(self, local_settings, fake_store):
        supervisor = LifecycleSupervisor()
        task = asyncio.create_task(
            serve(
                local_settings,
                connector=StubConnector(fake_store),
                supervisor=supervisor,
                is_port_free=lambda host, port: False,
                find_free_port=ephemeral_port,
            )
        )
        await _wait_for_state(supervisor, ListenerState.ACCEPTING)

        async with httpx.AsyncClient() as client:
            res = await client.get(f"http://127.0.0.1:{supervisor.port}/readyz")
        assert res.status_code == 200

        supervisor.handle_signal(signal.SIGTERM)
        code = await asyncio.wait_for(task, timeout=10)

        assert code == 0
        assert supervisor.state == ListenerState.CLOSED
        assert fake_store.close_calls == 1

    @pytest.mark.asyncio
    async def test_async_error_exits_1(self, local_settings, fake_store):
        supervisor = LifecycleSupervisor()
        task = asyncio.create_task(
            serve(
                local_settings,
                connector=StubConnector(fake_store),
                supervisor=supervisor,
                is_port_free=lambda host, port: False,
                find_free_port=ephemeral_port,
            )
        )
        await _wait_for_state(supervisor, ListenerState.ACCEPTING)

        supervisor.handle_async_error(RuntimeError("unhandled rejection"))
        code = await asyncio.wait_for(task, timeout=10)

        assert code == 1
        assert fake_store.close_calls == 1
