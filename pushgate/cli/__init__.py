"""Pushgate CLI: Typer-based command-line interface.

Provides the ``pushgate`` command with subcommands for managing
deployments, releasing, promoting and rolling back packages, inspecting
history and metrics, and running update checks.

All output uses Rich for formatted terminal display.
"""
