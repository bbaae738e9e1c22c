"""Tests for the default collaborator implementations."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from conftest import FakeScriptRunner, FakeSigner

from deployforge.collaborators import (
    JsonRpcChainClient,
    SafeTransactionService,
    ScriptSigningStrategy,
    SessionCache,
    StrategyOptions,
    SubprocessScriptRunner,
)
from deployforge.collaborators.chain import ChainRPCError
from deployforge.collaborators.safe import MultisigServiceError
from deployforge.collaborators.script_runner import parse_structured_output
from deployforge.collaborators.signing import SigningError
from deployforge.models.deploy import Deploy, Segment, SegmentType
from deployforge.models.runs import ScriptRun


def _deploy(tmp_path: Path) -> Deploy:
    return Deploy(
        name="d1",
        env="testnet",
        upgrade="v2",
        chain_id=5,
        upgrade_path=str(tmp_path),
        segment_id=0,
        segments=[Segment(id=0, type=SegmentType.MULTISIG, filename="1-a.sh")],
    )


# ---------------------------------------------------------------------------
# Script runner
# ---------------------------------------------------------------------------


class TestParseStructuredOutput:
    def test_whole_output(self):
        assert parse_structured_output('{\n  "signer": "0xa"\n}\n') == {"signer": "0xa"}

    def test_last_line(self):
        assert parse_structured_output('compiling...\n{"signer": "0xa"}') == {"signer": "0xa"}

    @pytest.mark.parametrize("stdout", ["", "plain text", "[1, 2]"])
    def test_no_object(self, stdout):
        assert parse_structured_output(stdout) is None


class TestSubprocessScriptRunner:
    @pytest.fixture
    def script(self, tmp_path: Path) -> Path:
        path = tmp_path / "1-a.sh"
        path.write_text(
            '#!/bin/sh\necho "args=$*"\necho "{\\"env\\": \\"$DF_ENV\\"}"\n', encoding="utf-8"
        )
        path.chmod(0o755)
        return path

    def test_run_captures_output(self, script: Path):
        run = SubprocessScriptRunner().run(script, ["--sign"], {"DF_ENV": "testnet"})
        assert run.success
        assert "args=--sign" in run.stdout
        assert run.structured_output == {"env": "testnet"}

    def test_test_mode_passes_test_args(self, script: Path):
        run = SubprocessScriptRunner(test_args=("--check",)).test(script, {})
        assert "args=--check" in run.stdout

    def test_nonzero_exit(self, tmp_path: Path):
        path = tmp_path / "fail.sh"
        path.write_text("#!/bin/sh\necho nope >&2\nexit 4\n", encoding="utf-8")
        path.chmod(0o755)
        run = SubprocessScriptRunner().run(path, [], {})
        assert (run.success, run.exit_code) == (False, 4)
        assert "nope" in run.stderr

    def test_missing_executable(self, tmp_path: Path):
        run = SubprocessScriptRunner().run(tmp_path / "ghost.sh", [], {})
        assert (run.success, run.exit_code) == (False, 127)

    def test_timeout(self, tmp_path: Path):
        path = tmp_path / "slow.sh"
        path.write_text("#!/bin/sh\nexec sleep 5\n", encoding="utf-8")
        path.chmod(0o755)
        run = SubprocessScriptRunner(timeout_seconds=0.2).run(path, [], {})
        assert run.success is False
        assert "Timed out" in run.stderr


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


class TestScriptSigningStrategy:
    def test_request_new_parses_the_signing_result(self, tmp_path: Path):
        runner = FakeScriptRunner()
        output = {"signer": "0xa", "proposalHash": "0xp", "multisig": "0xsafe"}
        runner.results["1-a.sh"] = ScriptRun(success=True, structured_output=output)
        strategy = ScriptSigningStrategy(runner, "script.multisig", mode="multisig", env={"KEY": "ref"})

        result = strategy.request_new(tmp_path / "1-a.sh", _deploy(tmp_path))

        assert (result.signer, result.proposal_hash, result.multisig) == ("0xa", "0xp", "0xsafe")
        assert result.raw_output == output
        name, args, env = runner.calls[0]
        assert args == ["--sign"]
        assert env == {
            "KEY": "ref",
            "DF_SIGNING_MODE": "multisig",
            "DF_DEPLOY_NAME": "d1",
            "DF_DEPLOY_SEGMENT": "0",
            "DF_CHAIN_ID": "5",
        }

    @pytest.mark.parametrize(
        "run,message",
        [
            (ScriptRun(success=False, exit_code=2, stderr="bad key"), "bad key"),
            (ScriptRun(success=True, stdout="done"), "did not print"),
            (ScriptRun(success=True, structured_output={"transactions": "0x1"}), "invalid"),
        ],
    )
    def test_request_new_failures(self, tmp_path: Path, run: ScriptRun, message: str):
        runner = FakeScriptRunner()
        runner.results["1-a.sh"] = run
        with pytest.raises(SigningError, match=message):
            ScriptSigningStrategy(runner).request_new(tmp_path / "1-a.sh", _deploy(tmp_path))

    def test_cancel_returns_cancellation_hash(self, tmp_path: Path):
        runner = FakeScriptRunner()
        runner.results["1-a.sh"] = ScriptRun(
            success=True, structured_output={"cancellationTransactionHash": "0xc"}
        )
        assert ScriptSigningStrategy(runner).cancel(_deploy(tmp_path)) == "0xc"
        assert runner.calls[0][1] == ["--cancel"]

    def test_cancel_failure(self, tmp_path: Path):
        runner = FakeScriptRunner()
        runner.results["1-a.sh"] = ScriptRun(success=False, stderr="rpc down")
        with pytest.raises(SigningError, match="rpc down"):
            ScriptSigningStrategy(runner).cancel(_deploy(tmp_path))


# ---------------------------------------------------------------------------
# HTTP collaborators
# ---------------------------------------------------------------------------


class TestJsonRpcChainClient:
    def test_mined_receipt(self):
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert payload["method"] == "eth_getTransactionReceipt"
            assert payload["params"] == ["0xtx"]
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": payload["id"],
                      "result": {"transactionHash": "0xtx", "status": "0x1", "blockNumber": "0x10"}},
            )

        client = JsonRpcChainClient("http://rpc.test", transport=httpx.MockTransport(handler))
        receipt = client.get_transaction_receipt("0xtx")
        assert (receipt.status, receipt.block_number) == ("success", 16)

    def test_reverted_receipt(self):
        client = JsonRpcChainClient(
            "http://rpc.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"result": {"status": "0x0"}})
            ),
        )
        receipt = client.get_transaction_receipt("0xtx")
        assert (receipt.transaction_hash, receipt.status, receipt.block_number) == ("0xtx", "reverted", None)

    def test_pending_transaction(self):
        client = JsonRpcChainClient(
            "http://rpc.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"result": None})),
        )
        assert client.get_transaction_receipt("0xtx") is None

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"error": {"code": -32000, "message": "boom"}}),
            httpx.Response(502, text="bad gateway"),
        ],
    )
    def test_errors(self, response: httpx.Response):
        client = JsonRpcChainClient(
            "http://rpc.test", transport=httpx.MockTransport(lambda request: response)
        )
        with pytest.raises(ChainRPCError):
            client.get_transaction_receipt("0xtx")


class TestSafeTransactionService:
    def test_proposal_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/multisig-transactions/0xp/"
            return httpx.Response(
                200,
                json={
                    "safe": "0xsafe",
                    "confirmations": [{"owner": "0x1"}, {"owner": "0x2"}],
                    "confirmationsRequired": 2,
                    "isExecuted": True,
                    "isSuccessful": True,
                    "transactionHash": "0xexec",
                },
            )

        service = SafeTransactionService(
            "https://safe.test/",
            queue_url="https://app.safe.test/transactions/queue?safe={safe}",
            transport=httpx.MockTransport(handler),
        )
        status = service.get_transaction("0xp")
        assert status.has_quorum
        assert (status.is_executed, status.transaction_hash) == (True, "0xexec")
        assert status.share_url == "https://app.safe.test/transactions/queue?safe=0xsafe"

    def test_unknown_proposal(self):
        service = SafeTransactionService(
            "https://safe.test", transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )
        with pytest.raises(MultisigServiceError, match="0xp"):
            service.get_transaction("0xp")


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestStrategyOptions:
    def test_signer_for_respects_preselected_strategy(self):
        signer = FakeSigner("ledger")
        options = StrategyOptions(signers={SegmentType.EOA: signer})
        assert options.signer_for(SegmentType.EOA) is signer
        assert options.signer_for(SegmentType.MULTISIG) is None

        options = StrategyOptions(signers={SegmentType.EOA: signer}, signing_mode="keystore")
        assert options.signer_for(SegmentType.EOA) is None

    def test_session_cache(self):
        cache = SessionCache()
        calls = []
        assert cache.get_or_set("rpc", lambda: calls.append(1) or "http://rpc") == "http://rpc"
        assert cache.get_or_set("rpc", lambda: calls.append(1) or "other") == "http://rpc"
        assert calls == [1]
        assert "rpc" in cache
        cache.clear()
        assert cache.get("rpc") is None

    def test_chain_client_is_built_once_per_url(self):
        built = []

        def factory(url: str) -> JsonRpcChainClient:
            built.append(url)
            return JsonRpcChainClient(url)

        options = StrategyOptions(rpc_url="http://rpc.test", chain_factory=factory)
        assert options.chain_client() is options.chain_client()
        assert built == ["http://rpc.test"]
        assert "chain:http://rpc.test" in options.cache

    def test_explicit_clients_win_over_factories(self):
        chain, service = object(), object()
        options = StrategyOptions(
            chain=chain,
            multisig_service=service,
            rpc_url="http://rpc.test",
            safe_url="https://safe.test",
            chain_factory=lambda url: pytest.fail("chain factory used"),
            multisig_factory=lambda url: pytest.fail("multisig factory used"),
        )
        assert options.chain_client() is chain
        assert options.multisig_client() is service

    def test_no_url_means_no_client(self):
        options = StrategyOptions(chain_factory=JsonRpcChainClient, multisig_factory=SafeTransactionService)
        assert options.chain_client() is None
        assert options.multisig_client() is None

    def test_multisig_client_is_cached(self):
        options = StrategyOptions(safe_url="https://safe.test", multisig_factory=SafeTransactionService)
        service = options.multisig_client()
        assert isinstance(service, SafeTransactionService)
        assert options.multisig_client() is service

    def test_default_env(self):
        assert StrategyOptions().default_env() == {}
        options = StrategyOptions(rpc_url="http://rpc.test", fork=True)
        assert options.default_env() == {"DF_RPC_URL": "http://rpc.test", "DF_FORK": "1"}
