"""Tests for the DF_* environment-variable view of an environment."""

from __future__ import annotations

import pytest
from conftest import ENV

from deployforge.core.environment import (
    contracts_to_variables,
    injectable_environment,
    normalize_name,
    parameters_to_variables,
)
from deployforge.core.errors import UnknownEnvironmentError
from deployforge.core.paths import canonical_paths
from deployforge.models.deploy import Deploy
from deployforge.models.environment import (
    DeployedContract,
    DeployedContractsManifest,
    DeployStateMutations,
    Mutation,
)


class TestConversions:
    @pytest.mark.parametrize(
        "name,expected",
        [("owner", "OWNER"), ("fee-recipient", "FEE_RECIPIENT"), ("My.Token v2", "MY_TOKEN_V2")],
    )
    def test_normalize_name(self, name, expected):
        assert normalize_name(name) == expected

    def test_scalar_parameters(self):
        assert parameters_to_variables({"count": 3, "enabled": True, "unset": None}) == {
            "DF_ENV_COUNT": "3",
            "DF_ENV_ENABLED": "true",
            "DF_ENV_UNSET": "",
        }

    def test_structured_parameters_are_rejected(self):
        with pytest.raises(ValueError, match="roles"):
            parameters_to_variables({"roles": ["admin"]})

    def test_contracts_export_singletons_and_indexed_instances(self):
        variables = contracts_to_variables(
            {"Vault": DeployedContract(contract="Vault", address="0xvault")},
            [
                DeployedContract(contract="Pool", address="0xp0", singleton=False),
                DeployedContract(contract="Pool", address="0xp1", singleton=False),
            ],
        )
        assert variables == {
            "DF_DEPLOYED_VAULT": "0xvault",
            "DF_DEPLOYED_POOL_0": "0xp0",
            "DF_DEPLOYED_POOL_1": "0xp1",
        }


class TestInjectableEnvironment:
    def test_environment_only(self, seeded_store):
        variables = injectable_environment(seeded_store.begin(), ENV)
        assert variables["DF_ENV"] == ENV
        assert variables["DF_ENV_VERSION"] == "1.0.0"
        assert variables["DF_ENV_OWNER"] == "0xowner"
        assert variables["DF_DEPLOY_TO_VERSION"] == ""

    def test_deploy_view_overlays_pending_results(self, seeded_store):
        deploy = Deploy(name="d1", env=ENV, upgrade="v2")
        txn = seeded_store.begin()
        mutations = txn.get_document(
            canonical_paths.state_mutations(ENV, "d1"), DeployStateMutations, optional=True
        )
        mutations.data.mutations.append(Mutation(name="owner", prev="0xowner", next="0xnew"))
        contracts = txn.get_document(
            canonical_paths.deployed_contracts(ENV, "d1"), DeployedContractsManifest, optional=True
        )
        contracts.data.contracts.append(DeployedContract(contract="Vault", address="0xvault"))

        variables = injectable_environment(txn, ENV, deploy)

        assert variables["DF_ENV_OWNER"] == "0xnew"
        assert variables["DF_DEPLOYED_VAULT"] == "0xvault"
        assert variables["DF_DEPLOY_FROM_VERSION"] == "^1.0.0"
        assert variables["DF_DEPLOY_TO_VERSION"] == "2.0.0"

    def test_unknown_environment(self, seeded_store):
        with pytest.raises(UnknownEnvironmentError):
            injectable_environment(seeded_store.begin(), "mainnet")
