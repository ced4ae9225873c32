"""Unit-test fixtures: no real database, fresh rate limits.

Every path to a connection goes through ``twinsync.storage.create_engine``
(get_engine, get_session_factory, get_session, init_db), so refusing
there is enough to catch a unit test that forgot to mock its session.
Tests that need PostgreSQL live in ``tests/integration/``.
"""

import pytest

import twinsync.storage as _storage_mod


def _refuse_engine(settings=None):
    raise RuntimeError(
        "Unit test tried to open a database engine. "
        "Patch get_session where it is used, or move the test to tests/integration/."
    )


@pytest.fixture(autouse=True)
def _no_database(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(_storage_mod, "_engine", None)
    monkeypatch.setattr(_storage_mod, "_session_factory", None)
    monkeypatch.setattr(_storage_mod, "create_engine", _refuse_engine)


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Start every test with empty rate-limit counters."""
    from twinsync.api.rate_limit import limiter

    limiter.reset()
