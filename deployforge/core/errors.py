"""Deploy-level error signals.

``HaltDeployError`` and ``PauseDeployError`` are the two conditions a phase
step propagates to stop the driver loop. Both carry the deploy they apply
to and the exact command that resumes it, since every step is re-entrant
from persisted state alone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deployforge.models.deploy import Deploy


def resume_command(env: str) -> str:
    return f"deployforge deploy run --resume --env {env}"


class DeployError(RuntimeError):
    """Base class for errors tied to a specific deploy."""

    def __init__(self, deploy: Deploy, message: str) -> None:
        self.deploy = deploy
        self.reason = message
        super().__init__(message)

    @property
    def resume_command(self) -> str:
        return resume_command(self.deploy.env)


class HaltDeployError(DeployError):
    """The current step cannot make progress; operator action is required."""

    def __str__(self) -> str:
        return f"{self.reason} Fix the problem, then resume with: {self.resume_command}"


class PauseDeployError(DeployError):
    """The step is waiting on an external party; re-run later to continue."""

    def __str__(self) -> str:
        return f"{self.reason} Re-run to continue: {self.resume_command}"


class UnknownPhaseError(DeployError):
    """The deploy is in a phase the engine does not recognise."""


class DeployInProgressError(RuntimeError):
    """Another deploy already holds the environment's in-progress pointer."""

    def __init__(self, env: str, active: str) -> None:
        self.env = env
        self.active = active
        super().__init__(
            f"Deploy {active!r} is already in progress for {env!r}. "
            f"Resume it with: {resume_command(env)}"
        )


class NoActiveDeployError(RuntimeError):
    """No deploy is in progress for the environment."""

    def __init__(self, env: str) -> None:
        self.env = env
        super().__init__(f"No active deploy for environment {env!r}.")


class DeployNotCancellableError(DeployError):
    """The deploy's current phase does not allow cancellation."""


class DeployAlreadyFinalizedError(DeployError):
    """The deploy already reached a terminal phase."""

    def __str__(self) -> str:
        return f"{self.reason} Resume with {self.resume_command} to clear it out."


class LockHeldError(RuntimeError):
    """The environment's deploy lock is held by someone else."""

    def __init__(self, env: str, holder: str | None, description: str | None) -> None:
        self.env = env
        self.holder = holder
        self.description = description
        super().__init__(
            f"Environment {env!r} is locked by {holder}"
            + (f" ({description})" if description else "")
            + ". Try again once their deploy step finishes."
        )


class UnknownEnvironmentError(RuntimeError):
    def __init__(self, env: str) -> None:
        self.env = env
        super().__init__(f"No such environment: {env!r}")


class EnvironmentExistsError(RuntimeError):
    def __init__(self, env: str) -> None:
        self.env = env
        super().__init__(f"Environment {env!r} already exists")


class UnknownUpgradeError(RuntimeError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No upgrade registered as {name!r}")


class InvalidUpgradeError(ValueError):
    """An upgrade directory or manifest is malformed."""


class InvalidParametersError(ValueError):
    """Environment parameters (or their schema) failed JSON Schema validation."""

    def __init__(self, env: str, problems: list[str]) -> None:
        self.env = env
        self.problems = problems
        details = "\n".join(f"  * {problem}" for problem in problems)
        super().__init__(f"Parameters for {env!r} were not saved:\n{details}")
