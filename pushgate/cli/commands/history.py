"""``pushgate history|clear-history|metrics``."""

from __future__ import annotations

import typer
from rich.table import Table

from pushgate.cli.context import console, open_manager


def history_cmd(
    deployment: str = typer.Argument(..., help="Deployment name."),
) -> None:
    """Show a deployment's release history, oldest first."""
    with open_manager() as manager:
        history = manager.history(deployment)

    if not history:
        console.print(f"[dim]{deployment} has no releases.[/dim]")
        return

    table = Table(title=f"{deployment} history")
    table.add_column("Label", style="cyan")
    table.add_column("App Version", style="green")
    table.add_column("Method")
    table.add_column("Mandatory", justify="center")
    table.add_column("Rollout", justify="right")
    table.add_column("Diffs", justify="right")
    table.add_column("Description")

    for release in history:
        method = release.release_method.value
        if release.original_label:
            method += f" ({release.original_label})"
        status = "[red]disabled[/red] " if release.is_disabled else ""
        table.add_row(
            release.label,
            release.app_version,
            method,
            "yes" if release.is_mandatory else "",
            f"{release.rollout}%" if release.rollout is not None else "",
            str(len(release.diffs)),
            status + release.description,
        )
    console.print(table)


def clear_history_cmd(
    deployment: str = typer.Argument(..., help="Deployment name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every release of a deployment; labels restart at v1."""
    if not yes:
        typer.confirm(f"Clear the release history of {deployment}?", abort=True)
    with open_manager() as manager:
        manager.clear_history(deployment)
    console.print(f"[bold green]Cleared history of[/bold green] {deployment}")


def metrics_cmd(
    deployment: str = typer.Argument(..., help="Deployment name."),
) -> None:
    """Show per-release install metrics."""
    with open_manager() as manager:
        metrics = manager.metrics(deployment)

    if not metrics:
        console.print(f"[dim]No metrics for {deployment}.[/dim]")
        return

    table = Table(title=f"{deployment} metrics")
    table.add_column("Label", style="cyan")
    table.add_column("Active", justify="right")
    table.add_column("Downloaded", justify="right")
    table.add_column("Installed", justify="right")
    table.add_column("Failed", justify="right")
    for label, counts in metrics.items():
        table.add_row(
            label,
            str(counts.active),
            str(counts.downloaded),
            str(counts.installed),
            str(counts.failed),
        )
    console.print(table)
