"""Environment-variable view of an environment for scripts and signers.

Scripts run by a deploy see the environment's parameters, its deployed
contract addresses, and (for an in-progress deploy) the mutations and
contracts recorded so far, all as ``DF_*`` variables.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Any

from deployforge.core.document_store import Transaction
from deployforge.core.errors import UnknownEnvironmentError
from deployforge.core.paths import canonical_paths
from deployforge.models.deploy import Deploy
from deployforge.models.environment import (
    DeployedContract,
    DeployedContractsManifest,
    DeployStateMutations,
    EnvironmentManifest,
)
from deployforge.models.upgrade import Upgrade

ENV_PREFIX = "DF_ENV"
DEPLOYED_PREFIX = "DF_DEPLOYED"


def normalize_name(name: str) -> str:
    """Turn a parameter or contract name into an env-var-safe suffix."""
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").upper()


def parameter_variable(name: str) -> str:
    return f"{ENV_PREFIX}_{normalize_name(name)}"


def parameters_to_variables(parameters: dict[str, Any]) -> dict[str, str]:
    variables = {}
    for key, value in parameters.items():
        if isinstance(value, (dict, list)):
            raise ValueError(f"Parameter {key!r} is not a scalar and cannot be exported")
        if isinstance(value, bool):
            value = "true" if value else "false"
        variables[parameter_variable(key)] = "" if value is None else str(value)
    return variables


def contracts_to_variables(
    statics: dict[str, DeployedContract], instances: list[DeployedContract]
) -> dict[str, str]:
    """Export singletons by name and instances by name plus per-contract index."""
    variables = {
        f"{DEPLOYED_PREFIX}_{normalize_name(name)}": contract.address
        for name, contract in statics.items()
    }
    counters: dict[str, int] = defaultdict(int)
    for instance in instances:
        index = counters[instance.contract]
        counters[instance.contract] += 1
        variables[f"{DEPLOYED_PREFIX}_{normalize_name(instance.contract)}_{index}"] = instance.address
    return variables


def injectable_environment(
    txn: Transaction, env: str, deploy: Deploy | None = None
) -> dict[str, str]:
    """Build the ``DF_*`` variables for ``env``.

    With ``deploy`` the view includes that deploy's pending mutations and
    contracts, which is what a later segment of the same deploy expects to
    see.
    """
    manifest_doc = txn.get_document(
        canonical_paths.environment_manifest(env), EnvironmentManifest, optional=True
    )
    manifest: EnvironmentManifest = manifest_doc.data
    if not manifest.id:
        raise UnknownEnvironmentError(env)

    parameters = dict(
        txn.get_document(canonical_paths.deploy_parameters(env), optional=True).data or {}
    )
    statics = dict(manifest.contracts.static)
    instances = list(manifest.contracts.instances)
    from_version = to_version = ""

    if deploy is not None:
        mutations: DeployStateMutations = txn.get_document(
            canonical_paths.state_mutations(env, deploy.name), DeployStateMutations, optional=True
        ).data
        parameters.update({mutation.name: mutation.next for mutation in mutations.mutations})

        contracts: DeployedContractsManifest = txn.get_document(
            canonical_paths.deployed_contracts(env, deploy.name),
            DeployedContractsManifest,
            optional=True,
        ).data
        for contract in contracts.contracts:
            if contract.singleton:
                statics[contract.contract] = contract
            else:
                instances.append(contract)

        upgrade_doc = txn.get_document(
            canonical_paths.upgrade_manifest(deploy.upgrade), Upgrade, optional=True
        )
        if upgrade_doc.exists:
            from_version, to_version = upgrade_doc.data.from_, upgrade_doc.data.to

    return {
        ENV_PREFIX: env,
        f"{ENV_PREFIX}_COMMIT": manifest.latest_deployed_commit,
        f"{ENV_PREFIX}_VERSION": manifest.deployed_version,
        "DF_DEPLOY_FROM_VERSION": from_version,
        "DF_DEPLOY_TO_VERSION": to_version,
        **parameters_to_variables(parameters),
        **contracts_to_variables(statics, instances),
    }
