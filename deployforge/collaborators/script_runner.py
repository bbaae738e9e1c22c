"""Subprocess-backed ``ScriptRunner``."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from deployforge.models.runs import ScriptRun

logger = logging.getLogger(__name__)


def parse_structured_output(stdout: str) -> dict[str, Any] | None:
    """Extract a JSON object from script output.

    Accepts either an entire stdout that is one JSON object or a final
    line that is; anything else yields ``None``.
    """
    text = stdout.strip()
    if not text:
        return None
    candidates = [text, text.splitlines()[-1]]
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class SubprocessScriptRunner:
    """Runs scripts as child processes.

    Parameters
    ----------
    cwd:
        Working directory for every script (usually the repository root).
    timeout_seconds:
        Kill a script that runs longer than this. ``None`` waits forever.
    test_args:
        Arguments appended when running a script's tests.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        *,
        timeout_seconds: float | None = None,
        test_args: Sequence[str] = ("--test",),
    ) -> None:
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.test_args = list(test_args)

    def _execute(self, command: list[str], env: dict[str, str]) -> ScriptRun:
        logger.info("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                cwd=self.cwd,
                env={**os.environ, **env},
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("%s timed out after %ss", command[0], self.timeout_seconds)
            return ScriptRun(
                success=False,
                exit_code=-1,
                stdout=exc.stdout if isinstance(exc.stdout, str) else "",
                stderr=f"Timed out after {self.timeout_seconds}s",
            )
        except OSError as exc:
            logger.error("Could not start %s: %s", command[0], exc)
            return ScriptRun(success=False, exit_code=127, stderr=str(exc))

        return ScriptRun(
            success=completed.returncode == 0,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            structured_output=parse_structured_output(completed.stdout),
        )

    def run(self, script: Path, args: list[str], env: dict[str, str]) -> ScriptRun:
        return self._execute([str(script), *args], env)

    def test(self, script: Path, env: dict[str, str]) -> ScriptRun:
        return self._execute([str(script), *self.test_args], env)
