"""CLI application setup using Typer.

Provides the command-line interface for twinsync operations.
"""

from twinsync.cli.main import app

__all__ = ["app"]
