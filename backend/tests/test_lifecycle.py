"""
Chirpline Backend — Startup, Shutdown and Database Connect Tests
==================================================================

What:  The server entry point and the application lifespan.
How:   Sockets are real (loopback, ephemeral ports); uvicorn and the
       database ping is mocked where a real one would block.

What we test:
    ✅ Bind failure exits with status 1 before the app is built
    ✅ Successful bind hands the listening socket to uvicorn
    ✅ Database connect is scheduled exactly once, never awaited inline
    ✅ Connect retries, then raises DatabaseError; a failure never stops
       the server
"""

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chirpline.database import Database
from chirpline.exceptions import DatabaseError
from chirpline.main import create_app, schedule_database_connect
from chirpline.server import EXIT_BIND_FAILURE, EXIT_STARTUP_FAILURE, bind_socket, main


@pytest.fixture
def occupied_port():
    """A loopback port that another socket is already listening on."""
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    yield holder.getsockname()[1]
    holder.close()


class TestBindSocket:

    def test_binds_and_listens(self):
        sock = bind_socket("127.0.0.1", 0)
        try:
            host, port = sock.getsockname()
            assert host == "127.0.0.1"
            assert port > 0
        finally:
            sock.close()

    def test_occupied_port_raises(self, occupied_port):
        with pytest.raises(OSError):
            bind_socket("127.0.0.1", occupied_port)


class TestServerMain:

    def setup_method(self):
        # Keep basicConfig(force=True) away from pytest's log capture
        self.logging_patch = patch("chirpline.server.setup_logging")
        self.logging_patch.start()

    def teardown_method(self):
        self.logging_patch.stop()

    def test_bind_failure_exits_1(self, make_settings, occupied_port):
        settings = make_settings(host="127.0.0.1", port=occupied_port)
        with patch("chirpline.server.create_app") as mock_create, \
             patch("chirpline.server.uvicorn.Server") as mock_server:
            with pytest.raises(SystemExit) as exc_info:
                main(settings)

        assert exc_info.value.code == EXIT_BIND_FAILURE == 1
        mock_create.assert_not_called()
        mock_server.assert_not_called()

    def test_invalid_configuration_exits_1(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        with patch("chirpline.server.bind_socket") as mock_bind:
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        mock_bind.assert_not_called()

    def test_runs_uvicorn_on_bound_socket(self, make_settings):
        settings = make_settings(host="127.0.0.1", port=5123)
        sock = MagicMock(spec=socket.socket)
        with patch("chirpline.server.bind_socket", return_value=sock) as mock_bind, \
             patch("chirpline.server.uvicorn.Config") as mock_config, \
             patch("chirpline.server.uvicorn.Server") as mock_server:
            mock_server.return_value.started = True
            main(settings)

        mock_bind.assert_called_once_with("127.0.0.1", 5123)
        app = mock_config.call_args.args[0]
        assert app.state.settings is settings
        assert mock_config.call_args.kwargs["access_log"] is False
        mock_server.return_value.run.assert_called_once_with(sockets=[sock])
        sock.close.assert_called_once()

    def test_startup_failure_exits_3(self, make_settings):
        sock = MagicMock(spec=socket.socket)
        with patch("chirpline.server.bind_socket", return_value=sock), \
             patch("chirpline.server.uvicorn.Config"), \
             patch("chirpline.server.uvicorn.Server") as mock_server:
            mock_server.return_value.started = False
            with pytest.raises(SystemExit) as exc_info:
                main(make_settings())

        assert exc_info.value.code == EXIT_STARTUP_FAILURE
        sock.close.assert_called_once()


class TestLifespan:

    @pytest.mark.asyncio
    async def test_connect_scheduled_once(self, make_settings):
        app = create_app(make_settings())
        with patch.object(Database, "connect", new_callable=AsyncMock) as mock_connect:
            async with app.router.lifespan_context(app):
                task = app.state.db_connect_task
                assert task is not None
                assert schedule_database_connect(app) is task
                await task

        mock_connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slow_connect_does_not_block_startup(self, make_settings):
        app = create_app(make_settings())
        started = asyncio.Event()

        async def never_finishes():
            started.set()
            await asyncio.Event().wait()

        with patch.object(Database, "connect", side_effect=never_finishes):
            async with app.router.lifespan_context(app):
                await asyncio.wait_for(started.wait(), timeout=1)
                task = app.state.db_connect_task
                assert not task.done()

        # Shutdown cancels the pending connect
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_connect_failure_is_logged_not_raised(self, make_settings, caplog):
        app = create_app(make_settings())
        failing = AsyncMock(side_effect=DatabaseError(context={"url": "sqlite"}))
        with patch.object(Database, "connect", failing):
            async with app.router.lifespan_context(app):
                task = app.state.db_connect_task
                with pytest.raises(DatabaseError):
                    await task

        assert "Database connect task failed" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_media_credentials_do_not_stop_startup(self, make_settings, caplog):
        app = create_app(make_settings())
        with patch.object(Database, "connect", new_callable=AsyncMock):
            async with app.router.lifespan_context(app):
                assert app.state.media.is_configured is False

        assert "CLOUDINARY_CLOUD_NAME" in caplog.text


class TestDatabaseConnect:

    @pytest.mark.asyncio
    async def test_sqlite_connect(self, make_settings):
        db = Database(make_settings())
        try:
            await db.connect()
            assert db.connected is True
        finally:
            await db.dispose()
        assert db.connected is False

    @pytest.mark.asyncio
    async def test_retries_then_raises(self, make_settings):
        db = Database(make_settings(db_connect_attempts=3))
        try:
            with patch.object(
                Database, "ping", new_callable=AsyncMock, side_effect=OSError("connection refused")
            ) as mock_ping:
                with pytest.raises(DatabaseError):
                    await db.connect()

            assert mock_ping.await_count == 3
            assert db.connected is False
        finally:
            await db.dispose()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, make_settings):
        db = Database(make_settings(db_connect_attempts=3))
        try:
            with patch.object(
                Database, "ping", new_callable=AsyncMock, side_effect=[OSError("starting"), None]
            ) as mock_ping:
                await db.connect()

            assert mock_ping.await_count == 2
            assert db.connected is True
        finally:
            await db.dispose()

    def test_password_hidden_in_display_url(self, make_settings):
        db = Database(make_settings(database_url="postgresql+asyncpg://chirp:s3cret@db:5432/chirpline"))
        assert "s3cret" not in db.display_url
        assert "db:5432" in db.display_url
