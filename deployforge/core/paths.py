"""Canonical document paths inside the metadata store."""

from __future__ import annotations

from pathlib import Path


class CanonicalPaths:
    """Builds every store path the engine reads or writes."""

    # Environment-level documents
    def environment_dir(self, env: str) -> str:
        return f"environment/{env}"

    def environment_manifest(self, env: str) -> str:
        return f"environment/{env}/manifest.json"

    def deploys_manifest(self, env: str) -> str:
        return f"environment/{env}/deploys/deploys.json"

    def deploy_lock(self, env: str) -> str:
        return f"environment/{env}/lock.json"

    def all_environments(self) -> str:
        return "environment"

    # Per-environment parameters
    def deploy_parameters(self, env: str) -> str:
        return f"deploys/{env}/parameters.json"

    def deploy_parameters_schema(self, env: str) -> str:
        return f"deploys/{env}/parameters.schema.json"

    # Per-deploy documents
    def deploy_dir(self, env: str, name: str) -> str:
        return f"deploys/{env}/{name}"

    def deploy_status(self, env: str, name: str) -> str:
        return f"deploys/{env}/{name}/deploy.json"

    def deployed_contracts(self, env: str, name: str) -> str:
        return f"deploys/{env}/{name}/deployed-contracts.json"

    def state_mutations(self, env: str, name: str) -> str:
        return f"deploys/{env}/{name}/mutations.json"

    # Per-segment evidence
    def segment_file(self, env: str, name: str, segment_id: int, filename: str) -> str:
        return f"deploys/{env}/{name}/{segment_id}/{filename}"

    def test_run(self, env: str, name: str, segment_id: int) -> str:
        return self.segment_file(env, name, segment_id, "test.json")

    def eoa_run(self, env: str, name: str, segment_id: int) -> str:
        return self.segment_file(env, name, segment_id, "eoa.run.json")

    def multisig_run(self, env: str, name: str, segment_id: int) -> str:
        return self.segment_file(env, name, segment_id, "multisig.run.json")

    def multisig_transaction(self, env: str, name: str, segment_id: int) -> str:
        return self.segment_file(env, name, segment_id, "multisig.transaction.json")

    def script_run(self, env: str, name: str, segment_id: int) -> str:
        return self.segment_file(env, name, segment_id, "script.run.json")

    # Upgrade catalog
    def all_upgrades(self) -> str:
        return "upgrade"

    def upgrade_manifest(self, upgrade: str) -> str:
        return f"upgrade/{upgrade}/manifest.json"

    # Local filesystem (not store paths)
    @staticmethod
    def script_location(upgrade_path: str, filename: str) -> Path:
        return Path(upgrade_path) / filename


canonical_paths = CanonicalPaths()
