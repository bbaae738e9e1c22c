"""Environment manifest and deploy evidence models."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from deployforge.models.deploy import DocumentModel


class LastUpdatedIn(DocumentModel):
    """Which deploy step last touched a contract record."""

    name: str
    phase: str
    segment: int
    signer: str = ""


class DeployedContract(DocumentModel):
    """A contract deployed by a segment.

    ``singleton`` contracts are tracked once per environment, keyed by
    contract name. Non-singletons accumulate as instances.
    """

    contract: str
    address: str
    singleton: bool = True
    last_updated_in: LastUpdatedIn | None = None


class EnvironmentContracts(DocumentModel):
    static: dict[str, DeployedContract] = {}
    instances: list[DeployedContract] = []


class EnvironmentManifest(DocumentModel):
    """The persisted state of a named deployment target.

    An empty ``id`` means the manifest was never initialized (or was
    corrupted); finalization refuses to proceed in that case.
    """

    id: str = ""
    chain_id: int = 0
    deployed_version: str = "0.0.0"
    latest_deployed_commit: str = ""
    contracts: EnvironmentContracts = Field(default_factory=EnvironmentContracts)


class DeployedContractsManifest(DocumentModel):
    contracts: list[DeployedContract] = []


class Mutation(DocumentModel):
    """A change to one environment parameter produced by a segment."""

    name: str
    prev: Any = None
    next: Any = None
    internal_type: str | None = None


class DeployStateMutations(DocumentModel):
    mutations: list[Mutation] = []
