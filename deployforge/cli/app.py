"""Main Typer application: registers the command groups.

Entry point: ``deployforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from deployforge.cli.commands.deploy import deploy_app
from deployforge.cli.commands.env import env_app
from deployforge.cli.commands.upgrade import upgrade_app
from deployforge.cli.runtime import console
from deployforge.config import config

app = typer.Typer(
    name="deployforge",
    help="Deployforge: resumable, multi-signer contract deploys.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.add_typer(deploy_app, name="deploy")
app.add_typer(upgrade_app, name="upgrade")
app.add_typer(env_app, name="env")


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging once per invocation."""
    logging.basicConfig(
        level="DEBUG" if verbose else config.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
