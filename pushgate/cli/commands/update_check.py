"""``pushgate update-check``: run a client update check locally.

Prints the response record a client would receive, as JSON.
"""

from __future__ import annotations

import json

import typer

from pushgate.cli.context import open_manager
from pushgate.models.acquisition import UpdateCheckRequest


def update_check_cmd(
    deployment_key: str = typer.Argument(..., help="Deployment key the client uses."),
    app_version: str = typer.Argument(..., help="Client binary version."),
    package_hash: str = typer.Option(None, "--package-hash", "-p"),
    label: str = typer.Option(None, "--label", "-l"),
    companion: bool = typer.Option(False, "--companion"),
    client_id: str = typer.Option(None, "--client-id", "-c"),
) -> None:
    """Ask what update a client would be offered."""
    request = UpdateCheckRequest(
        deployment_key=deployment_key,
        app_version=app_version,
        package_hash=package_hash,
        label=label,
        is_companion=companion,
        client_unique_id=client_id,
    )
    with open_manager() as manager:
        info = manager.check_update(request)
    typer.echo(json.dumps({"updateInfo": info.to_wire()}, indent=2))
