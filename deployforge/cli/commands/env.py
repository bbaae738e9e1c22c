"""``deployforge env``: create, inspect and parameterize environments."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.table import Table

from deployforge.cli.runtime import build_orchestrator, console, parse_arguments, reporting

env_app = typer.Typer(help="Create and inspect environments.", no_args_is_help=True)


def _read_json_object(path: Path, param_hint: str) -> dict[str, Any]:
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Could not read {path}: {exc}", param_hint=param_hint) from exc
    if not isinstance(loaded, dict):
        raise typer.BadParameter(f"{path} must contain a JSON object", param_hint=param_hint)
    return loaded


@env_app.command(name="new")
def new_cmd(
    name: str = typer.Argument(..., help="Environment name (letters, digits, '-')."),
    chain_id: int = typer.Option(..., "--chain-id", help="Chain the environment deploys to."),
) -> None:
    """Create a new environment at version 0.0.0."""
    orchestrator = build_orchestrator()
    with reporting():
        orchestrator.create_environment(name, chain_id)
        console.print(f"[green]+ created environment[/green] {name}")


@env_app.command(name="list")
def list_cmd() -> None:
    """List environments."""
    orchestrator = build_orchestrator()
    with reporting() as renderer:
        console.print(renderer.render_environments(orchestrator.list_environments()))


@env_app.command(name="show")
def show_cmd(
    name: str = typer.Argument(..., help="Environment to show."),
    variables: bool = typer.Option(
        False, "--vars", help="Also print the DF_* variables scripts will see."
    ),
) -> None:
    """Show an environment's version and deployed contracts."""
    orchestrator = build_orchestrator()
    with reporting() as renderer:
        console.print(renderer.render_environment(orchestrator.show_environment(name)))
        if variables:
            table = Table(title="Injected environment")
            table.add_column("Variable", style="cyan")
            table.add_column("Value")
            for key, value in sorted(orchestrator.environment_variables(name).items()):
                table.add_row(key, value)
            console.print(table)


@env_app.command(name="set")
def set_cmd(
    name: str = typer.Argument(..., help="Environment to update."),
    pairs: list[str] = typer.Argument(None, help="Parameters as NAME=VALUE."),
    file: Optional[Path] = typer.Option(
        None, "--file", "-f", help="JSON object of parameters to apply."
    ),
    replace: bool = typer.Option(
        False, "--replace", help="Replace every parameter instead of merging."
    ),
) -> None:
    """Set deploy parameters, validated against the environment's schema."""
    values: dict[str, Any] = _read_json_object(file, "--file") if file is not None else {}
    values.update(parse_arguments(pairs or [], param_hint="NAME=VALUE"))
    if not values and not replace:
        raise typer.BadParameter("Nothing to set; pass NAME=VALUE pairs or --file.")

    orchestrator = build_orchestrator()
    with reporting():
        updated = orchestrator.set_parameters(name, values, replace=replace)
        console.print(f"[green]+ updated parameters[/green] for {name} ({len(updated)} set)")


@env_app.command(name="schema")
def schema_cmd(
    name: str = typer.Argument(..., help="Environment to update."),
    file: Path = typer.Argument(..., help="JSON Schema for the deploy parameters."),
) -> None:
    """Replace the JSON Schema that deploy parameters are validated against."""
    schema = _read_json_object(file, "FILE")
    orchestrator = build_orchestrator()
    with reporting():
        orchestrator.set_parameter_schema(name, schema)
        console.print(f"[green]+ updated parameter schema[/green] for {name}")
