"""Rich terminal renderer for deploys, environments and the upgrade catalog.

Color scheme
------------
- green     : segment done / deploy complete
- yellow    : active segment
- dim       : pending segment
- red       : failed
- magenta   : cancelled
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deployforge.models.deploy import Deploy, DeployPhase, SegmentType
from deployforge.models.environment import EnvironmentManifest
from deployforge.models.upgrade import Upgrade

# ---------------------------------------------------------------------------
# Phase -> Rich style mapping
# ---------------------------------------------------------------------------

_PHASE_STYLES: dict[DeployPhase, str] = {
    DeployPhase.NONE: "dim",
    DeployPhase.COMPLETE: "bold green",
    DeployPhase.FAILED: "bold red",
    DeployPhase.CANCELLED: "bold magenta",
}

_SEGMENT_PHASES: dict[SegmentType, list[DeployPhase]] = {
    SegmentType.EOA: [DeployPhase.EOA_START, DeployPhase.EOA_WAIT_CONFIRM],
    SegmentType.MULTISIG: [
        DeployPhase.MULTISIG_START,
        DeployPhase.MULTISIG_WAIT_SIGNERS,
        DeployPhase.MULTISIG_EXECUTE,
        DeployPhase.MULTISIG_WAIT_CONFIRM,
    ],
    SegmentType.SCRIPT: [DeployPhase.SCRIPT_RUN],
}


def _phase_label(phase: DeployPhase | str) -> str:
    value = phase.value if isinstance(phase, DeployPhase) else str(phase)
    return value or "<not started>"


class DeployRenderer:
    """Renders deploy records and catalog views as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def render_deploy(self, deploy: Deploy) -> Panel:
        """Render a deploy as a Panel listing every segment and its phases."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=5, justify="right")
        table.add_column("Script", min_width=25)
        table.add_column("Type", width=9)
        table.add_column("Phases", min_width=30)

        phase = deploy.phase
        finished = phase in (DeployPhase.COMPLETE, DeployPhase.FAILED, DeployPhase.CANCELLED)

        for segment in deploy.segments:
            if segment.id < deploy.segment_id or (finished and phase == DeployPhase.COMPLETE):
                style, marks = "green", "done"
            elif segment.id == deploy.segment_id and not finished:
                style, marks = "bold yellow", self._phase_track(segment.type, phase)
            elif segment.id == deploy.segment_id:
                style, marks = _PHASE_STYLES.get(DeployPhase(phase), ""), _phase_label(phase)
            else:
                style, marks = "dim", "pending"
            table.add_row(
                str(segment.id + 1),
                f"[{style}]{segment.filename}[/{style}]",
                segment.type.value,
                marks,
            )

        summary_parts = [
            f"[bold]Env:[/bold] {deploy.env}",
            f"[bold]Upgrade:[/bold] {deploy.upgrade}",
            f"[bold]Phase:[/bold] {_phase_label(phase)}",
            f"[bold]Started:[/bold] {deploy.start_time}",
        ]
        if deploy.end_time:
            summary_parts.append(f"[bold]Ended:[/bold] {deploy.end_time}")

        body: list = [table, Text("")]
        metadata = deploy.current_metadata
        if metadata is not None and not finished:
            details = "\n".join(
                f"  {key} => {value}"
                for key, value in metadata.to_document().items()
                if key != "type"
            )
            body.extend([Text.from_markup(f"[italic]{details}[/italic]"), Text("")])
        body.append(Text.from_markup("  |  ".join(summary_parts)))

        return Panel(
            Group(*body),
            title=f"[bold]Deploy {deploy.name}[/bold]",
            border_style=_PHASE_STYLES.get(DeployPhase(phase), "blue") if finished else "blue",
            padding=(1, 2),
        )

    @staticmethod
    def _phase_track(segment_type: SegmentType, current: DeployPhase | str) -> str:
        phases = _SEGMENT_PHASES.get(segment_type, [])
        try:
            position = phases.index(DeployPhase(current))
        except ValueError:
            position = -1
        marks = []
        for index, phase in enumerate(phases):
            if index < position:
                marks.append(f"[green]{phase.value}[/green]")
            elif index == position:
                marks.append(f"[reverse]{phase.value}[/reverse]")
            else:
                marks.append(f"[dim]{phase.value}[/dim]")
        return " > ".join(marks)

    # ------------------------------------------------------------------
    # Environments and upgrades
    # ------------------------------------------------------------------

    def render_environment(self, manifest: EnvironmentManifest) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Contract", style="cyan")
        table.add_column("Address")
        table.add_column("Last updated in", style="dim")

        for name, contract in sorted(manifest.contracts.static.items()):
            origin = contract.last_updated_in.name if contract.last_updated_in else "-"
            table.add_row(name, contract.address, origin)
        for contract in manifest.contracts.instances:
            origin = contract.last_updated_in.name if contract.last_updated_in else "-"
            table.add_row(f"{contract.contract} (instance)", contract.address, origin)

        summary = "  |  ".join(
            [
                f"[bold]Chain:[/bold] {manifest.chain_id}",
                f"[bold]Version:[/bold] {manifest.deployed_version}",
                f"[bold]Commit:[/bold] {manifest.latest_deployed_commit or '-'}",
            ]
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]Environment {manifest.id}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def render_environments(self, manifests: list[EnvironmentManifest]) -> Table:
        table = Table(title="Environments")
        table.add_column("Name", style="cyan")
        table.add_column("Chain", justify="right")
        table.add_column("Version", style="green")
        for manifest in manifests:
            table.add_row(manifest.id, str(manifest.chain_id), manifest.deployed_version)
        return table

    def render_upgrades(self, upgrades: list[Upgrade]) -> Table:
        table = Table(title="Registered Upgrades")
        table.add_column("Name", style="cyan")
        table.add_column("From")
        table.add_column("To", style="green")
        table.add_column("Phases", justify="right")
        table.add_column("Commit", style="dim")
        for upgrade in upgrades:
            table.add_row(
                upgrade.name, upgrade.from_, upgrade.to, str(len(upgrade.phases)), upgrade.commit[:12]
            )
        return table

    def render_path(self, route: list[str], from_version: str, to_version: str) -> Panel:
        if route:
            steps = "\n".join(f"{index}. {name}" for index, name in enumerate(route, start=1))
        else:
            steps = "[dim]Already at the target version.[/dim]"
        return Panel(
            steps,
            title=f"[bold]{from_version} -> {to_version}[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_deploy(self, deploy: Deploy) -> None:
        self.console.print(self.render_deploy(deploy))

    def print_failure(self, title: str, message: str, *, style: str = "red") -> None:
        """Print an error or waiting notice as a bordered panel."""
        self.console.print(
            Panel(message, title=f"[bold]{title}[/bold]", border_style=style, padding=(1, 2))
        )
