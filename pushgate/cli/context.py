"""Shared plumbing for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from pushgate.config import Settings
from pushgate.core.release_manager import ReleaseManager
from pushgate.errors import PushgateError

console = Console()

# Loaded once per invocation by the app callback
_settings: Settings | None = None


def load_settings() -> Settings:
    """Read settings from the environment for this invocation."""
    global _settings
    _settings = Settings()
    return _settings


def current_settings() -> Settings:
    return _settings if _settings is not None else load_settings()


@contextmanager
def open_manager() -> Iterator[ReleaseManager]:
    """A ReleaseManager for one command.

    Business errors are printed and turned into exit code 1. Background
    diffing is finished before the command returns.
    """
    manager = ReleaseManager(current_settings())
    try:
        yield manager
    except PushgateError as exc:
        console.print(f"[bold red]{exc.code}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        manager.close()
