"""``deployforge upgrade``: manage the upgrade catalog."""

from __future__ import annotations

from pathlib import Path

import typer

from deployforge.cli.runtime import build_orchestrator, console, reporting

upgrade_app = typer.Typer(help="Register and inspect upgrades.", no_args_is_help=True)


@upgrade_app.command(name="register")
def register_cmd(
    directory: Path = typer.Argument(
        ..., exists=True, file_okay=False, help="Upgrade directory containing upgrade.json."
    ),
) -> None:
    """Register (or update) the upgrade in DIRECTORY, pinned to the current commit."""
    orchestrator = build_orchestrator()
    with reporting():
        upgrade = orchestrator.register_upgrade(directory)
        console.print(f"[green]+ registered upgrade[/green] [bold]{upgrade.name}[/bold]")
        console.print(f"    requires: {upgrade.from_}")
        console.print(f"    upgrades to: {upgrade.to}")
        console.print(f"    [italic]pinned to commit: {upgrade.commit}[/italic]")
        for index, phase in enumerate(upgrade.phases, start=1):
            console.print(f"    {index}. {phase.filename} ({phase.type.value})")


@upgrade_app.command(name="list")
def list_cmd() -> None:
    """List registered upgrades."""
    orchestrator = build_orchestrator()
    with reporting() as renderer:
        upgrades = orchestrator.list_upgrades()
        if not upgrades:
            console.print("[dim]No upgrades registered.[/dim]")
            return
        console.print(renderer.render_upgrades(upgrades))


@upgrade_app.command(name="path")
def path_cmd(
    from_version: str = typer.Option(..., "--from", help="Starting version."),
    to_version: str = typer.Option(..., "--to", help="Target version."),
) -> None:
    """Show the upgrades needed to go from one version to another."""
    orchestrator = build_orchestrator()
    with reporting() as renderer:
        route = orchestrator.resolve_upgrade_path(from_version, to_version)
        console.print(renderer.render_path(route, from_version, to_version))
