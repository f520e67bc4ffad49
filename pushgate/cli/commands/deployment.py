"""``pushgate deployment-add`` and ``pushgate deployments``."""

from __future__ import annotations

import typer
from rich.table import Table

from pushgate.cli.context import console, open_manager


def deployment_add_cmd(
    name: str = typer.Argument(..., help="Deployment name, e.g. Staging."),
    key: str = typer.Option(
        None, "--key", "-k", help="Deployment key to use instead of a generated one."
    ),
) -> None:
    """Create a deployment and print its key."""
    with open_manager() as manager:
        deployment = manager.create_deployment(name, key)
    console.print(f"[bold green]Created deployment[/bold green] {deployment.name}")
    console.print(f"Key: [cyan]{deployment.key}[/cyan]", soft_wrap=True)


def deployments_cmd(
    show_keys: bool = typer.Option(
        False, "--keys", "-k", help="Show deployment keys."
    ),
) -> None:
    """List deployments and their current release."""
    with open_manager() as manager:
        rows = [(d, manager.ledger.get_history(d.id)) for d in manager.deployments()]

    if not rows:
        console.print("[dim]No deployments.[/dim]")
        return

    table = Table(title="Deployments")
    table.add_column("Name", style="cyan")
    if show_keys:
        table.add_column("Key", overflow="fold")
    table.add_column("Releases", justify="right")
    table.add_column("Current")
    table.add_column("App Version", style="green")

    for deployment, history in rows:
        head = history[-1] if history else None
        cells = [deployment.name]
        if show_keys:
            cells.append(deployment.key)
        cells += [
            str(len(history)),
            head.label if head else "-",
            head.app_version if head else "-",
        ]
        table.add_row(*cells)
    console.print(table)
