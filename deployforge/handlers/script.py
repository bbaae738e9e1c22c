"""Script segments: run an arbitrary script with the environment injected."""

from __future__ import annotations

import logging
import os
from typing import ClassVar

from deployforge.collaborators.options import StrategyOptions
from deployforge.core.document_store import Document, Transaction
from deployforge.core.environment import injectable_environment
from deployforge.core.errors import HaltDeployError
from deployforge.core.paths import canonical_paths
from deployforge.core.phase_machine import advance, advance_segment
from deployforge.handlers.base import PhaseHandler
from deployforge.models.deploy import Deploy, ScriptArgument, SegmentType

logger = logging.getLogger(__name__)


def resolve_arguments(
    record: Deploy, arguments: list[ScriptArgument], options: StrategyOptions
) -> tuple[list[str], dict[str, str]]:
    """Split a segment's declared arguments into CLI args and env vars.

    Values come from ``options.arguments`` first, then from a process
    environment variable of the same name.
    """
    args: list[str] = []
    env: dict[str, str] = {}
    missing: list[str] = []

    for argument in arguments:
        value = options.arguments.get(argument.name)
        if value is None:
            value = os.environ.get(argument.name)
        if value is None:
            missing.append(argument.name)
            continue
        if argument.pass_by == "env":
            env[argument.name] = value
        else:
            args.extend([f"--{argument.name}", value])

    if missing:
        hint = "pass them with --arg NAME=VALUE" if options.non_interactive else "provide them"
        raise HaltDeployError(
            record, f"Missing value(s) for script argument(s) {', '.join(missing)}; {hint}."
        )
    return args, env


class ScriptHandler(PhaseHandler):
    segment_type: ClassVar[SegmentType] = SegmentType.SCRIPT

    def execute(
        self, deploy: Document[Deploy], txn: Transaction, options: StrategyOptions
    ) -> None:
        record = deploy.data
        script = self.script_path(record)
        if not script.exists():
            logger.warning("Script %s is missing; skipping segment %d", script, record.segment_id)
            advance_segment(record)
            self.save_and_commit(deploy, txn, f"[skip] {script.name} not found")
            return

        if options.script_runner is None:
            raise HaltDeployError(record, "This phase needs a script runner.")

        segment = record.current_segment
        declared = (segment.arguments if segment is not None else None) or []
        args, argument_env = resolve_arguments(record, declared, options)
        env = {
            **options.default_env(),
            **injectable_environment(txn, record.env, record),
            **argument_env,
        }

        result = options.script_runner.run(script, args, env)
        run = txn.get_document(
            canonical_paths.script_run(record.env, record.name, record.segment_id), optional=True
        )
        run.data = result
        run.save()

        if not result.success:
            self.save_and_commit(deploy, txn, f"[fail] Ran script {script.name}")
            raise HaltDeployError(
                record, f"Script {script.name} exited with code {result.exit_code}."
            )

        advance(record)
        self.save_and_commit(deploy, txn, f"[pass] Ran script {script.name}")
