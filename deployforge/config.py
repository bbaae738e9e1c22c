"""Runtime configuration, env-driven.

Centralized config using pydantic-settings. Reads from a .env file and
DEPLOYFORGE_* environment variables.
"""

from __future__ import annotations

import getpass
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_operator() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "deployforge"


class DeployforgeConfig(BaseSettings):
    """Configuration with environment variable overrides.

    Examples
    --------
    Point at a local checkout of the metadata repository::

        export DEPLOYFORGE_METADATA_BACKEND=git
        export DEPLOYFORGE_METADATA_PATH=/srv/deploy-metadata

    Or at GitHub via a .env file::

        DEPLOYFORGE_METADATA_BACKEND=github
        DEPLOYFORGE_GITHUB_OWNER=acme
        DEPLOYFORGE_GITHUB_REPO=deploy-metadata
        DEPLOYFORGE_GITHUB_TOKEN=ghp_...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Metadata store
    metadata_backend: Literal["local", "git", "github"] = "local"
    metadata_path: Path = Path(".deployforge/metadata")
    git_ref: str = "refs/heads/main"
    github_owner: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    github_token: str = ""
    github_api_url: str = "https://api.github.com"

    # Upgrade scripts live under <migration_directory>/<upgrade name>/
    migration_directory: Path = Path("upgrades")

    # Execution
    lock_ttl_seconds: int = 300
    confirm_max_attempts: int = 5
    confirm_delay_seconds: float = 5.0
    operator: str = ""

    # Collaborator endpoints
    rpc_url: str = ""
    safe_service_url: str = ""
    safe_queue_url: str = ""
    script_timeout_seconds: float | None = None

    @property
    def is_remote(self) -> bool:
        """Whether commits go to a shared host rather than a local directory."""
        return self.metadata_backend == "github"

    @property
    def holder(self) -> str:
        """Identity written into the deploy lock."""
        return self.operator or _default_operator()


# Module-level singleton: import as `from deployforge.config import config`
config = DeployforgeConfig()
