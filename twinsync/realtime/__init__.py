"""Realtime fan-out of committed database changes."""

from twinsync.realtime.broadcaster import (
    ChangeBroadcaster,
    ChangeEvent,
    ChangeType,
    RowCache,
    Subscription,
    get_broadcaster,
    reset_broadcaster,
)
from twinsync.realtime.hooks import TRACKED_TABLES, install_commit_hooks, uninstall_commit_hooks

__all__ = [
    "TRACKED_TABLES",
    "ChangeBroadcaster",
    "ChangeEvent",
    "ChangeType",
    "RowCache",
    "Subscription",
    "get_broadcaster",
    "install_commit_hooks",
    "reset_broadcaster",
    "uninstall_commit_hooks",
]
