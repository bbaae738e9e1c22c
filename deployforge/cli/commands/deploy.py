"""``deployforge deploy``: start, resume, cancel and inspect deploys."""

from __future__ import annotations

from typing import Optional

import typer

from deployforge.cli.runtime import (
    build_options,
    build_orchestrator,
    console,
    parse_arguments,
    reporting,
)
from deployforge.core.errors import DeployInProgressError

deploy_app = typer.Typer(help="Run, resume and cancel deploys.", no_args_is_help=True)


@deploy_app.command(name="run")
def run_cmd(
    env: str = typer.Option(..., "--env", "-e", help="Environment to deploy to."),
    upgrade: Optional[str] = typer.Option(None, "--upgrade", "-u", help="Upgrade to apply."),
    to: Optional[str] = typer.Option(
        None, "--to", help="Target version; the first upgrade on the path is applied."
    ),
    resume: bool = typer.Option(False, "--resume", help="Continue the deploy in progress."),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Halt instead of waiting for missing input."
    ),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="JSON-RPC endpoint."),
    safe_url: Optional[str] = typer.Option(None, "--safe-url", help="Safe transaction service."),
    fork: bool = typer.Option(False, "--fork", help="Tell scripts the RPC endpoint is a fork."),
    signing_strategy: Optional[str] = typer.Option(
        None, "--signing-strategy", help="Only use the signing strategy with this id."
    ),
    arg: list[str] = typer.Option(
        [], "--arg", "-a", help="Script argument as NAME=VALUE (repeatable)."
    ),
    skip_tests: bool = typer.Option(False, "--skip-tests", help="Skip pre-signing tests."),
) -> None:
    """Start a new deploy, or resume the one in progress."""
    options = build_options(
        rpc_url=rpc_url,
        safe_url=safe_url,
        fork=fork,
        non_interactive=non_interactive,
        signing_strategy=signing_strategy,
        arguments=parse_arguments(arg),
        run_tests=not skip_tests,
    )
    orchestrator = build_orchestrator(options)

    with reporting() as renderer:
        active = orchestrator.status(env)
        if active is not None:
            if upgrade or to or not resume:
                raise DeployInProgressError(env, active.name)
            console.print(f"Resuming [bold]{active.name}[/bold] (began at {active.start_time})")
        else:
            if resume:
                console.print("[dim]Nothing to resume.[/dim]")
                return
            if not upgrade and not to:
                raise typer.BadParameter("Pass --upgrade or --to to start a deploy.")
            created = orchestrator.start_deploy(env, upgrade, target_version=to)
            if created is None:
                console.print(f"[green]{env} is already at {to}.[/green]")
                return
            console.print(f"[green]+ created deploy[/green] {created.name}")

        renderer.print_deploy(orchestrator.run(env))


@deploy_app.command(name="cancel")
def cancel_cmd(
    env: str = typer.Option(..., "--env", "-e", help="Environment whose deploy to cancel."),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="JSON-RPC endpoint."),
    safe_url: Optional[str] = typer.Option(None, "--safe-url", help="Safe transaction service."),
) -> None:
    """Cancel the deploy in progress, voiding any outstanding multisig proposal."""
    orchestrator = build_orchestrator(build_options(rpc_url=rpc_url, safe_url=safe_url))
    with reporting() as renderer:
        cancelled = orchestrator.cancel(env)
        console.print(f"Cancelled [bold]{cancelled.name}[/bold].")
        renderer.print_deploy(cancelled)


@deploy_app.command(name="status")
def status_cmd(
    env: str = typer.Option(..., "--env", "-e", help="Environment to inspect."),
) -> None:
    """Show the deploy in progress, segment by segment."""
    orchestrator = build_orchestrator()
    with reporting() as renderer:
        active = orchestrator.status(env)
        if active is None:
            console.print("No deploy in progress.")
            return
        renderer.print_deploy(active)
