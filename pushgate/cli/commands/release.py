"""``pushgate release|promote|rollback|patch``: release management.

Every command resolves deployments by name and reports the resulting
release. Ledger conflicts (an unfinished rollout, identical content,
rollback to a different app version) exit with code 1.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel

from pushgate.cli.context import console, open_manager
from pushgate.models.release import (
    PromoteOverrides,
    Release,
    ReleaseDescriptor,
    ReleaseUpdate,
)


def _print_release(release: Release, title: str) -> None:
    lines = [
        f"Label:        [bold]{release.label}[/bold]",
        f"App version:  {release.app_version}",
        f"Package hash: {release.package_hash}",
        f"Size:         {release.size} bytes",
        f"Mandatory:    {'yes' if release.is_mandatory else 'no'}",
        f"Disabled:     {'yes' if release.is_disabled else 'no'}",
        f"Rollout:      {release.rollout if release.rollout is not None else 100}%",
        f"Method:       {release.release_method.value}",
    ]
    if release.original_label:
        origin = release.original_label
        if release.original_deployment:
            origin = f"{release.original_deployment}/{origin}"
        lines.append(f"Origin:       {origin}")
    if release.description:
        lines.append(f"Description:  {release.description}")
    console.print(Panel("\n".join(lines), title=title, border_style="green"))


def release_cmd(
    deployment: str = typer.Argument(..., help="Deployment to release to."),
    artifact: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Zip archive or single file to release."
    ),
    app_version: str = typer.Option(
        ..., "--app-version", "-t", help="Target binary version or semver range."
    ),
    description: str = typer.Option("", "--description", "-d"),
    mandatory: bool = typer.Option(False, "--mandatory", "-m"),
    disabled: bool = typer.Option(False, "--disabled", "-x"),
    rollout: Optional[int] = typer.Option(
        None, "--rollout", "-r", min=1, max=100, help="Percentage of clients to receive it."
    ),
) -> None:
    """Upload a package and commit it as the deployment's new release."""
    descriptor = ReleaseDescriptor(
        app_version=app_version,
        description=description,
        is_mandatory=mandatory,
        is_disabled=disabled,
        rollout=rollout,
    )
    with open_manager() as manager:
        release = manager.release(deployment, artifact, descriptor)
    _print_release(release, f"Released to {deployment}")


def promote_cmd(
    source: str = typer.Argument(..., help="Deployment to promote from."),
    destination: str = typer.Argument(..., help="Deployment to promote to."),
    label: str = typer.Option(None, "--label", "-l", help="Source release; latest if omitted."),
    description: str = typer.Option(None, "--description", "-d"),
    mandatory: Optional[bool] = typer.Option(None, "--mandatory/--no-mandatory"),
    disabled: Optional[bool] = typer.Option(None, "--disabled/--no-disabled"),
    rollout: Optional[int] = typer.Option(None, "--rollout", "-r", min=1, max=100),
    app_version: str = typer.Option(None, "--app-version", "-t"),
) -> None:
    """Copy a release from one deployment to another."""
    overrides = PromoteOverrides(
        label=label,
        description=description,
        is_mandatory=mandatory,
        is_disabled=disabled,
        rollout=rollout,
        app_version=app_version,
    )
    with open_manager() as manager:
        release = manager.promote(source, destination, overrides)
    _print_release(release, f"Promoted {source} to {destination}")


def rollback_cmd(
    deployment: str = typer.Argument(..., help="Deployment to roll back."),
    target_release: str = typer.Option(
        None, "--target-release", "-r", help="Label to roll back to; previous if omitted."
    ),
) -> None:
    """Re-release an earlier release's content as the new head."""
    with open_manager() as manager:
        release = manager.rollback(deployment, target_release)
    _print_release(release, f"Rolled back {deployment}")


def patch_cmd(
    deployment: str = typer.Argument(..., help="Deployment owning the release."),
    label: str = typer.Option(None, "--label", "-l", help="Release to patch; latest if omitted."),
    description: str = typer.Option(None, "--description", "-d"),
    mandatory: Optional[bool] = typer.Option(None, "--mandatory/--no-mandatory"),
    disabled: Optional[bool] = typer.Option(None, "--disabled/--no-disabled"),
    rollout: Optional[int] = typer.Option(
        None, "--rollout", "-r", min=1, max=100, help="New, higher rollout percentage."
    ),
    app_version: str = typer.Option(None, "--app-version", "-t"),
) -> None:
    """Update metadata of an existing release."""
    update = ReleaseUpdate(
        label=label,
        description=description,
        is_mandatory=mandatory,
        is_disabled=disabled,
        rollout=rollout,
        app_version=app_version,
    )
    with open_manager() as manager:
        release = manager.patch_release(deployment, update)
    if release is None:
        console.print("[yellow]Nothing to update.[/yellow]")
        return
    _print_release(release, f"Patched {deployment}")
