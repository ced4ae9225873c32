"""Unit tests for twinsync.storage: engine, sessions and commit wiring.

The unit conftest makes ``create_engine`` refuse; tests here either call
the real builder directly (it only constructs the pool, no connection)
or patch it with a mock engine.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import twinsync.storage as storage
from twinsync.realtime import ChangeBroadcaster
from twinsync.storage import create_engine as build_engine


def _session_mock() -> AsyncMock:
    session = AsyncMock()
    session.__aenter__.return_value = session
    return session


def _engine_mock(conn: AsyncMock) -> MagicMock:
    engine = MagicMock()
    engine.connect.return_value.__aenter__ = AsyncMock(return_value=conn)
    engine.connect.return_value.__aexit__ = AsyncMock(return_value=False)
    engine.dispose = AsyncMock()
    return engine


class TestCreateEngine:
    def test_pool_settings_applied(self, test_settings):
        with patch("twinsync.storage.create_async_engine") as mock_create:
            build_engine(test_settings)

        assert mock_create.call_args.args[0] == str(test_settings.database_url)
        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_size"] == test_settings.database_pool_size
        assert kwargs["max_overflow"] == test_settings.database_max_overflow
        assert kwargs["pool_recycle"] == test_settings.database_pool_recycle
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["echo"] is True  # debug=True in test settings


class TestGetEngine:
    def test_created_once(self, test_settings):
        engine = MagicMock()
        with patch("twinsync.storage.create_engine", return_value=engine) as mock_create:
            first = storage.get_engine(test_settings)
            second = storage.get_engine()

        assert first is second is engine
        mock_create.assert_called_once_with(test_settings)

    def test_session_factory_bound_to_engine(self, test_settings):
        engine = MagicMock()
        with (
            patch("twinsync.storage.create_engine", return_value=engine),
            patch("twinsync.storage.create_session_factory") as mock_factory,
        ):
            factory = storage.get_session_factory(test_settings)
            assert storage.get_session_factory() is factory

        mock_factory.assert_called_once_with(engine)


class TestSessionFactory:
    def test_rows_survive_commit(self):
        with patch("twinsync.storage.async_sessionmaker") as mock_maker:
            storage.create_session_factory(MagicMock())

        kwargs = mock_maker.call_args.kwargs
        assert kwargs["expire_on_commit"] is False
        assert kwargs["autoflush"] is False


class TestGetSession:
    async def test_yields_and_closes(self):
        session = _session_mock()
        with patch("twinsync.storage.get_session_factory", return_value=MagicMock(return_value=session)):
            async with storage.get_session() as yielded:
                assert yielded is session

        session.__aexit__.assert_awaited_once()

    async def test_closes_on_exception(self):
        session = _session_mock()
        with patch("twinsync.storage.get_session_factory", return_value=MagicMock(return_value=session)):
            with pytest.raises(ValueError):
                async with storage.get_session():
                    raise ValueError("boom")

        session.__aexit__.assert_awaited_once()

    async def test_unmocked_session_refused(self, test_settings):
        with (
            patch("twinsync.storage.get_settings", return_value=test_settings),
            pytest.raises(RuntimeError, match="database engine"),
        ):
            async with storage.get_session():
                pass


class TestInitDB:
    async def test_checks_connection_and_installs_hooks(self):
        conn = AsyncMock()
        broadcaster = ChangeBroadcaster()
        with (
            patch("twinsync.storage.get_engine", return_value=_engine_mock(conn)),
            patch("twinsync.storage.install_commit_hooks") as mock_install,
        ):
            await storage.init_db(broadcaster)

        conn.execute.assert_awaited_once()
        mock_install.assert_called_once_with(broadcaster)

    async def test_without_connection_check(self):
        with (
            patch("twinsync.storage.get_engine") as mock_get_engine,
            patch("twinsync.storage.install_commit_hooks") as mock_install,
        ):
            await storage.init_db(ChangeBroadcaster(), check_connection=False)

        mock_get_engine.assert_not_called()
        mock_install.assert_called_once()

    async def test_no_broadcaster_no_hooks(self):
        with (
            patch("twinsync.storage.get_engine", return_value=_engine_mock(AsyncMock())),
            patch("twinsync.storage.install_commit_hooks") as mock_install,
        ):
            await storage.init_db()

        mock_install.assert_not_called()


class TestCloseDB:
    async def test_disposes_engine_and_detaches_hooks(self, monkeypatch):
        engine = _engine_mock(AsyncMock())
        monkeypatch.setattr(storage, "_engine", engine)
        monkeypatch.setattr(storage, "_session_factory", MagicMock())

        with patch("twinsync.storage.uninstall_commit_hooks") as mock_uninstall:
            await storage.close_db()

        engine.dispose.assert_awaited_once()
        mock_uninstall.assert_called_once()
        assert storage._engine is None
        assert storage._session_factory is None

    async def test_without_engine(self):
        with patch("twinsync.storage.uninstall_commit_hooks") as mock_uninstall:
            await storage.close_db()

        mock_uninstall.assert_called_once()
