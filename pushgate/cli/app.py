"""Main Typer application: imports and registers all CLI commands.

Entry point: ``pushgate`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer

from pushgate.cli.commands.deployment import deployment_add_cmd, deployments_cmd
from pushgate.cli.commands.history import clear_history_cmd, history_cmd, metrics_cmd
from pushgate.cli.commands.release import (
    patch_cmd,
    promote_cmd,
    release_cmd,
    rollback_cmd,
)
from pushgate.cli.commands.update_check import update_check_cmd
from pushgate.cli.context import load_settings

app = typer.Typer(
    name="pushgate",
    help="Pushgate: over-the-air update releases, rollouts and update checks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging once per invocation."""
    settings = load_settings()
    level = "DEBUG" if verbose or settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register subcommands
app.command(name="deployment-add", help="Create a deployment.")(deployment_add_cmd)
app.command(name="deployments", help="List deployments.")(deployments_cmd)
app.command(name="release", help="Release a package to a deployment.")(release_cmd)
app.command(name="promote", help="Promote a release to another deployment.")(promote_cmd)
app.command(name="rollback", help="Roll a deployment back to an earlier release.")(rollback_cmd)
app.command(name="patch", help="Update release metadata or rollout.")(patch_cmd)
app.command(name="history", help="Show a deployment's release history.")(history_cmd)
app.command(name="clear-history", help="Delete a deployment's release history.")(clear_history_cmd)
app.command(name="update-check", help="Run a client update check.")(update_check_cmd)
app.command(name="metrics", help="Show deployment metrics.")(metrics_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
