"""Tests for runtime config — env-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from deployforge.config import DeployforgeConfig


class TestDeployforgeConfig:
    def test_defaults(self):
        config = DeployforgeConfig(_env_file=None)
        assert config.metadata_backend == "local"
        assert config.metadata_path == Path(".deployforge/metadata")
        assert config.migration_directory == Path("upgrades")
        assert config.lock_ttl_seconds == 300
        assert config.confirm_max_attempts == 5

    def test_local_backend_is_not_remote(self):
        assert DeployforgeConfig(_env_file=None).is_remote is False

    def test_github_backend_is_remote(self):
        assert DeployforgeConfig(_env_file=None, metadata_backend="github").is_remote is True

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            DeployforgeConfig(_env_file=None, metadata_backend="s3")

    def test_prefixed_environment_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DEPLOYFORGE_METADATA_BACKEND", "git")
        monkeypatch.setenv("DEPLOYFORGE_LOCK_TTL_SECONDS", "60")
        config = DeployforgeConfig(_env_file=None)
        assert config.metadata_backend == "git"
        assert config.lock_ttl_seconds == 60

    def test_holder_prefers_operator(self):
        assert DeployforgeConfig(_env_file=None, operator="ci-bot").holder == "ci-bot"

    def test_holder_falls_back_to_login(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("getpass.getuser", lambda: "alice")
        assert DeployforgeConfig(_env_file=None).holder == "alice"
