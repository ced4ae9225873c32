"""Shared FastAPI dependencies."""

from fastapi import Header

import twinsync.settings as _settings_mod


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Owner the request acts for (X-Owner-ID, else the configured default)."""
    owner_id = (x_owner_id or "").strip()
    return owner_id or _settings_mod.get_settings().default_owner_id
