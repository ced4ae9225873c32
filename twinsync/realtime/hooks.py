"""SQLAlchemy session hooks that feed the change broadcaster.

Changes to tracked tables are collected on ``after_flush`` into
``session.info`` and published on the outermost ``after_commit``.
Changes flushed inside a transaction or savepoint that is rolled back are
discarded, so subscribers only ever see committed rows.
"""

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, SessionTransaction

from twinsync.realtime.broadcaster import ChangeBroadcaster, ChangeType

logger = logging.getLogger(__name__)

TRACKED_TABLES = frozenset(
    {
        "connection_config",
        "sensor",
        "sensor_mapping",
        "sensor_reading",
        "sync_log",
    }
)

# Never published: the encrypted credential stays server-side
REDACTED_COLUMNS = frozenset({"credential_encrypted"})

_PENDING_KEY = "twinsync_pending_changes"

_installed: dict[str, Any] = {}


def _snapshot(obj: Any) -> dict[str, Any]:
    """Loaded column values of an instance, without triggering any load."""
    state = inspect(obj)
    values = state.dict
    return {
        attr.key: values[attr.key]
        for attr in state.mapper.column_attrs
        if attr.key in values and attr.key not in REDACTED_COLUMNS
    }


def _current_transaction(session: Session) -> SessionTransaction | None:
    return session.get_nested_transaction() or session.get_transaction()


def _within(txn: SessionTransaction | None, ancestor: SessionTransaction) -> bool:
    while txn is not None:
        if txn is ancestor:
            return True
        txn = txn.parent
    return False


def _after_flush(session: Session, flush_context: Any) -> None:
    txn = _current_transaction(session)
    pending = session.info.setdefault(_PENDING_KEY, [])
    for change_type, objects in (
        (ChangeType.INSERT, session.new),
        (ChangeType.UPDATE, session.dirty),
        (ChangeType.DELETE, session.deleted),
    ):
        for obj in objects:
            table = getattr(obj, "__tablename__", None)
            if table not in TRACKED_TABLES:
                continue
            if change_type == ChangeType.UPDATE and not session.is_modified(obj, include_collections=False):
                continue
            pending.append((txn, table, change_type, _snapshot(obj)))


def _after_soft_rollback(session: Session, previous_transaction: SessionTransaction) -> None:
    pending = session.info.get(_PENDING_KEY)
    if not pending:
        return
    session.info[_PENDING_KEY] = [
        entry for entry in pending if not _within(entry[0], previous_transaction)
    ]


def _after_transaction_end(session: Session, transaction: SessionTransaction) -> None:
    # A root transaction closed without commit (e.g. session.close())
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)


def _make_after_commit(broadcaster: ChangeBroadcaster):
    def _after_commit(session: Session) -> None:
        # Savepoint releases also fire after_commit; wait for the outermost one
        if session.in_nested_transaction():
            return
        pending = session.info.pop(_PENDING_KEY, None)
        if not pending:
            return
        broadcaster.publish_many((table, change_type, row) for _, table, change_type, row in pending)
        logger.debug("Published %d committed changes", len(pending))

    return _after_commit


def install_commit_hooks(broadcaster: ChangeBroadcaster) -> None:
    """Register the session listeners. Replaces any earlier installation."""
    uninstall_commit_hooks()
    after_commit = _make_after_commit(broadcaster)
    event.listen(Session, "after_flush", _after_flush)
    event.listen(Session, "after_soft_rollback", _after_soft_rollback)
    event.listen(Session, "after_commit", after_commit)
    event.listen(Session, "after_transaction_end", _after_transaction_end)
    _installed["after_commit"] = after_commit


def uninstall_commit_hooks() -> None:
    after_commit = _installed.pop("after_commit", None)
    if after_commit is None:
        return
    event.remove(Session, "after_flush", _after_flush)
    event.remove(Session, "after_soft_rollback", _after_soft_rollback)
    event.remove(Session, "after_commit", after_commit)
    event.remove(Session, "after_transaction_end", _after_transaction_end)
