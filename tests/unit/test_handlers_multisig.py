"""Tests for the multisig segment handler."""

from __future__ import annotations

import pytest
from conftest import ENV

from deployforge.core.errors import HaltDeployError, PauseDeployError
from deployforge.core.paths import canonical_paths
from deployforge.handlers import MultisigHandler
from deployforge.models.deploy import Deploy, DeployPhase, MultisigMetadata, Segment, SegmentType
from deployforge.models.runs import (
    ImmediateExecution,
    MultisigTransactionStatus,
    ScriptRun,
    SigningResult,
)

NAME = "2026-01-01-00-00-v2"
SCRIPT = "3-transfer.multisig.sh"


@pytest.fixture
def handler() -> MultisigHandler:
    return MultisigHandler()


@pytest.fixture
def make_multisig_deploy(make_deploy):
    """Deploy with a single multisig segment, optionally carrying a live proposal."""

    def _factory(phase: DeployPhase, *, proposal: str | None = "0xproposal", confirmed: bool = False):
        metadata = []
        if phase != DeployPhase.MULTISIG_START:
            metadata = [
                MultisigMetadata(
                    signer="0xsigner",
                    signer_type="fake.multisig",
                    multisig="0xsafe",
                    gnosis_transaction_hash=proposal,
                    confirmed=confirmed,
                )
            ]
        return make_deploy(
            phase,
            0,
            segments=[Segment(id=0, type=SegmentType.MULTISIG, filename=SCRIPT)],
            metadata=metadata,
        )

    return _factory


def _saved(read_committed) -> Deploy:
    return read_committed(canonical_paths.deploy_status(ENV, NAME), Deploy)


class TestStart:
    def test_tests_then_proposal(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed,
        runner, multisig_signer, git_host,
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))

        handler.run_step(doc, txn, make_options())

        saved = _saved(read_committed)
        assert saved.phase == DeployPhase.MULTISIG_WAIT_SIGNERS
        metadata = saved.metadata[0]
        assert isinstance(metadata, MultisigMetadata)
        assert metadata.signer_type == "fake.multisig"
        assert metadata.multisig == "0xsafe"
        assert metadata.gnosis_transaction_hash == "0xproposal"
        assert runner.test_calls == [SCRIPT]
        assert multisig_signer.requests == [SCRIPT]
        assert read_committed(canonical_paths.test_run(ENV, NAME, 0), ScriptRun).success
        assert read_committed(canonical_paths.multisig_run(ENV, NAME, 0), SigningResult).multisig == "0xsafe"
        assert git_host.commit_messages[-1] == f"[deploy {NAME}] multisig proposal 0xproposal"

    def test_failing_tests_halt_before_signing(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed,
        runner, multisig_signer, git_host,
    ):
        runner.test_results[SCRIPT] = ScriptRun(success=False, exit_code=1, stderr="assertion")
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))

        with pytest.raises(HaltDeployError, match="Tests for"):
            handler.run_step(doc, txn, make_options())

        assert multisig_signer.requests == []
        assert git_host.commit_messages[-1] == f"[deploy {NAME}] [fail] tests for {SCRIPT}"
        assert read_committed(canonical_paths.test_run(ENV, NAME, 0), ScriptRun).success is False
        assert _saved(read_committed).phase == DeployPhase.MULTISIG_START

    def test_tests_can_be_skipped(
        self, handler, make_multisig_deploy, open_deploy, make_options, runner
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))
        handler.run_step(doc, txn, make_options(run_tests=False))
        assert runner.test_calls == []

    def test_immediate_execution_finishes_the_segment(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, multisig_signer
    ):
        multisig_signer.result = SigningResult(
            signer="0xsigner",
            multisig="0xsafe",
            proposal_hash="0xproposal",
            immediate_execution=ImmediateExecution(success=True, transaction="0xexec"),
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))

        handler.run_step(doc, txn, make_options())

        saved = _saved(read_committed)
        assert saved.phase == DeployPhase.COMPLETE
        assert saved.metadata[0].confirmed is True
        assert saved.metadata[0].immediate_execution_hash == "0xexec"

    def test_failed_immediate_execution_halts(
        self, handler, make_multisig_deploy, open_deploy, make_options, multisig_signer
    ):
        multisig_signer.result = SigningResult(
            signer="0xsigner", immediate_execution=ImmediateExecution(success=False)
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))
        with pytest.raises(HaltDeployError, match="immediately"):
            handler.run_step(doc, txn, make_options())

    def test_no_proposal_skips_the_segment(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, multisig_signer
    ):
        multisig_signer.result = SigningResult(signer="0xsigner")
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_START))

        handler.run_step(doc, txn, make_options())

        assert _saved(read_committed).phase == DeployPhase.COMPLETE


class TestWaitSigners:
    def test_pauses_until_quorum(
        self, handler, make_multisig_deploy, open_deploy, make_options, multisig_service
    ):
        multisig_service.status = MultisigTransactionStatus(
            proposal_hash="0xproposal",
            confirmations=1,
            confirmations_required=2,
            share_url="https://safe.example/tx/0xproposal",
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_SIGNERS))

        with pytest.raises(PauseDeployError) as excinfo:
            handler.run_step(doc, txn, make_options())
        assert "1/2" in str(excinfo.value)
        assert "https://safe.example/tx/0xproposal" in str(excinfo.value)
        assert multisig_service.queries == ["0xproposal"]

    def test_quorum_moves_to_execute(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, multisig_service
    ):
        multisig_service.status = MultisigTransactionStatus(
            proposal_hash="0xproposal", confirmations=2, confirmations_required=2
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_SIGNERS))

        handler.run_step(doc, txn, make_options())

        assert _saved(read_committed).phase == DeployPhase.MULTISIG_EXECUTE

    def test_needs_a_multisig_service(
        self, handler, make_multisig_deploy, open_deploy, make_options
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_SIGNERS))
        with pytest.raises(HaltDeployError, match="--safe-url"):
            handler.run_step(doc, txn, make_options(multisig_service=None))

    def test_needs_a_proposal_hash(
        self, handler, make_multisig_deploy, open_deploy, make_options
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_SIGNERS, proposal=None))
        with pytest.raises(HaltDeployError, match="proposal hash"):
            handler.run_step(doc, txn, make_options())


class TestExecute:
    def test_unexecuted_proposal_pauses_and_records_status(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, git_host
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_EXECUTE))

        with pytest.raises(PauseDeployError, match="executed"):
            handler.run_step(doc, txn, make_options())

        evidence = read_committed(
            canonical_paths.multisig_transaction(ENV, NAME, 0), MultisigTransactionStatus
        )
        assert evidence.is_executed is False
        assert git_host.commit_messages[-1] == f"[deploy {NAME}] multisig awaiting execution"
        assert _saved(read_committed).phase == DeployPhase.MULTISIG_EXECUTE

    def test_executed_proposal_moves_to_confirm(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, multisig_service
    ):
        multisig_service.status = MultisigTransactionStatus(
            proposal_hash="0xproposal", is_executed=True, is_successful=True, transaction_hash="0xexec"
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_EXECUTE))

        handler.run_step(doc, txn, make_options())

        assert _saved(read_committed).phase == DeployPhase.MULTISIG_WAIT_CONFIRM

    def test_failed_execution_fails_the_deploy(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, multisig_service
    ):
        multisig_service.status = MultisigTransactionStatus(
            proposal_hash="0xproposal", is_executed=True, is_successful=False, transaction_hash="0xexec"
        )
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_EXECUTE))

        with pytest.raises(HaltDeployError, match="reverted"):
            handler.run_step(doc, txn, make_options())
        assert _saved(read_committed).phase == DeployPhase.FAILED


class TestWaitConfirm:
    @pytest.fixture
    def executed(self, seeded_store):
        txn = seeded_store.begin()
        document = txn.get_document(canonical_paths.multisig_transaction(ENV, NAME, 0), optional=True)
        document.data = MultisigTransactionStatus(
            proposal_hash="0xproposal", is_executed=True, is_successful=True, transaction_hash="0xexec"
        )
        document.save()
        txn.commit("executed")

    def test_mined_execution_completes_the_segment(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, chain, executed
    ):
        chain.mine("0xexec")
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_CONFIRM))

        handler.run_step(doc, txn, make_options())

        saved = _saved(read_committed)
        assert saved.phase == DeployPhase.COMPLETE
        assert saved.metadata[0].confirmed is True

    def test_reverted_execution_fails_the_deploy(
        self, handler, make_multisig_deploy, open_deploy, make_options, read_committed, chain, executed
    ):
        chain.mine("0xexec", status="reverted")
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_CONFIRM))

        with pytest.raises(HaltDeployError, match="0xexec"):
            handler.run_step(doc, txn, make_options())
        assert _saved(read_committed).phase == DeployPhase.FAILED

    def test_missing_execution_record_halts(
        self, handler, make_multisig_deploy, open_deploy, make_options
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_CONFIRM))
        with pytest.raises(HaltDeployError, match="No executed multisig transaction"):
            handler.run_step(doc, txn, make_options())


class TestCancel:
    def test_voids_a_live_proposal(
        self, handler, make_multisig_deploy, open_deploy, make_options, multisig_signer
    ):
        txn, doc = open_deploy(make_multisig_deploy(DeployPhase.MULTISIG_WAIT_SIGNERS))

        handler.cancel(doc, txn, make_options())

        assert multisig_signer.cancellations == [NAME]
        assert doc.data.metadata[0].cancellation_transaction_hash == "0xcancel"
        assert doc.dirty

    @pytest.mark.parametrize(
        "phase,proposal,confirmed",
        [
            (DeployPhase.MULTISIG_START, "0xproposal", False),
            (DeployPhase.MULTISIG_EXECUTE, None, False),
            (DeployPhase.MULTISIG_WAIT_CONFIRM, "0xproposal", True),
            (DeployPhase.MULTISIG_WAIT_CONFIRM, "0xproposal", False),
        ],
    )
    def test_nothing_to_void(
        self, handler, make_multisig_deploy, open_deploy, make_options, multisig_signer,
        phase, proposal, confirmed,
    ):
        txn, doc = open_deploy(make_multisig_deploy(phase, proposal=proposal, confirmed=confirmed))

        handler.cancel(doc, txn, make_options())

        assert multisig_signer.cancellations == []
        assert not doc.dirty
