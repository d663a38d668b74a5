"""Tests for the stub and external-command proof systems."""

from __future__ import annotations

import hashlib
import json
import subprocess
import sys
from pathlib import Path
from unittest import mock

import pytest

from mori.shielded.builder import build_deposit, build_swap, build_withdrawal
from mori.shielded.errors import PredicateUnsatisfiable, ProverFailed
from mori.shielded.proof_system import (
    PROVER_TIMEOUT_SECONDS,
    _STUB_DOMAIN,
    CommandProofSystem,
    Proof,
    StubProofSystem,
    _witness_input,
)

from conftest import SECRET, USDC, WETH

FAKE_PROVER = """
import json, sys
inp, proof, public = sys.argv[1:4]
data = json.load(open(inp))
keys = ["amount", "currencyAddress", "oldRoot", "newRoot", "nullifier", "commitment"]
json.dump({"pi_a": ["1", "2"], "protocol": "groth16"}, open(proof, "w"))
json.dump([data[k] for k in keys], open(public, "w"))
"""

FAKE_VERIFIER = """
import json, sys
proof = json.load(open(sys.argv[1]))
print("OK" if proof.get("protocol") == "groth16" else "INVALID")
"""


@pytest.fixture
def deposit(tree):
    transition, _ = build_deposit(tree, currency=USDC, amount=100, secret=SECRET, target_index=0)
    return transition


@pytest.fixture
def command_prover(tmp_path: Path) -> CommandProofSystem:
    prover = tmp_path / "prover.py"
    verifier = tmp_path / "verifier.py"
    prover.write_text(FAKE_PROVER, encoding="utf-8")
    verifier.write_text(FAKE_VERIFIER, encoding="utf-8")
    return CommandProofSystem(
        f"{sys.executable} {prover} {{input}} {{proof}} {{public}}",
        f"{sys.executable} {verifier} {{proof}} {{public}}",
        circuits_dir=tmp_path / "circuits",
        work_dir=tmp_path / "work",
    )


class TestStubProofSystem:
    def test_prove_then_verify(self, deposit) -> None:
        stub = StubProofSystem()
        proof = stub.prove(deposit)
        assert proof.predicate_id == "deposit"
        assert stub.verify(proof, deposit.public_signals())

    def test_other_signals_are_rejected(self, deposit, tree) -> None:
        stub = StubProofSystem()
        other, _ = build_deposit(tree, currency=USDC, amount=101, secret=SECRET, target_index=0)
        assert not stub.verify(stub.prove(deposit), other.public_signals())

    def test_tampered_payload_is_rejected(self, deposit) -> None:
        stub = StubProofSystem()
        proof = stub.prove(deposit)
        forged = Proof(proof.predicate_id, proof.public_signals, "0" * 64, proof.prover)
        assert not stub.verify(forged, deposit.public_signals())

    def test_relabelled_predicate_is_rejected(self, deposit) -> None:
        stub = StubProofSystem()
        proof = stub.prove(deposit)
        relabelled = Proof("withdrawal", proof.public_signals, proof.payload, proof.prover)
        assert not stub.verify(relabelled, deposit.public_signals())

    def test_keyed_stub_needs_the_same_key(self, deposit) -> None:
        proof = StubProofSystem(key=b"ledger-key").prove(deposit)
        assert StubProofSystem(key=b"ledger-key").verify(proof, deposit.public_signals())
        assert not StubProofSystem(key=b"other-key").verify(proof, deposit.public_signals())
        assert not StubProofSystem().verify(proof, deposit.public_signals())

    def test_unkeyed_instances_do_not_share_proofs(self, deposit) -> None:
        proof = StubProofSystem().prove(deposit)
        assert not StubProofSystem().verify(proof, deposit.public_signals())

    def test_plain_digest_is_not_a_proof(self, deposit) -> None:
        stub = StubProofSystem()
        signals = deposit.public_signals()
        message = _STUB_DOMAIN + json.dumps(["deposit", list(signals)], separators=(",", ":")).encode("utf-8")
        forged = Proof("deposit", signals, hashlib.sha256(message).hexdigest(), "stub")
        assert not stub.verify(forged, signals)

    def test_refuses_unsatisfiable_transition(self, funded) -> None:
        tree, note = funded
        overdraw, _ = build_withdrawal(tree, note=note, amount=101, secret=SECRET, target_index=1)
        with pytest.raises(PredicateUnsatisfiable):
            StubProofSystem().prove(overdraw)

    def test_proof_json_roundtrip(self, deposit) -> None:
        proof = StubProofSystem().prove(deposit)
        assert Proof.from_json(proof.to_json()) == proof


class TestWitnessInput:
    def test_deposit_input_keys(self, deposit) -> None:
        data = _witness_input(deposit)
        assert data["currencyAddress"] == str(int(USDC, 16))
        assert data["userSecret"] == str(SECRET)
        assert len(data["newPathElements"]) == 4

    def test_swap_input_is_prefixed_per_leg(self, funded) -> None:
        tree, note = funded
        swap, _, _ = build_swap(
            tree, note=note, withdrawal_amount=10, deposit_currency=WETH,
            deposit_amount=1, secret=SECRET, withdrawal_index=1,
        )
        data = _witness_input(swap)
        assert data["intermediateTokenRoot"] == str(swap.intermediate_root)
        assert data["withdrawalAmount"] == "10"
        assert data["depositCurrencyAddress"] == str(int(WETH, 16))
        assert "withdrawalUserSecret" not in data
        assert data["userSecret"] == str(SECRET)


class TestCommandProofSystem:
    def test_prove_and_verify_through_commands(self, command_prover, deposit) -> None:
        proof = command_prover.prove(deposit)
        assert proof.prover == "command"
        assert proof.public_signals == deposit.public_signals()
        assert command_prover.verify(proof, deposit.public_signals())

    def test_verifier_rejection(self, command_prover, deposit) -> None:
        proof = command_prover.prove(deposit)
        forged = Proof(proof.predicate_id, proof.public_signals, '{"protocol": "plonk"}', proof.prover)
        assert not command_prover.verify(forged, deposit.public_signals())

    def test_checks_predicate_before_running(self, command_prover, funded) -> None:
        tree, note = funded
        overdraw, _ = build_withdrawal(tree, note=note, amount=101, secret=SECRET, target_index=1)
        with mock.patch("subprocess.run") as mock_run:
            with pytest.raises(PredicateUnsatisfiable):
                command_prover.prove(overdraw)
        mock_run.assert_not_called()

    def test_timeout_is_passed_and_reported(self, command_prover, deposit) -> None:
        with mock.patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="prover", timeout=PROVER_TIMEOUT_SECONDS)
            with pytest.raises(ProverFailed):
                command_prover.prove(deposit)
        assert mock_run.call_args.kwargs["timeout"] == PROVER_TIMEOUT_SECONDS

    def test_missing_binary(self, tmp_path, deposit) -> None:
        system = CommandProofSystem(str(tmp_path / "no-such-prover"), "true", work_dir=tmp_path)
        with pytest.raises(ProverFailed):
            system.prove(deposit)

    def test_failing_prover(self, tmp_path, deposit) -> None:
        failing = tmp_path / "fail.py"
        failing.write_text("import sys; sys.exit(3)", encoding="utf-8")
        system = CommandProofSystem(f"{sys.executable} {failing}", "true", work_dir=tmp_path)
        with pytest.raises(ProverFailed):
            system.prove(deposit)

    def test_prover_with_wrong_signals(self, tmp_path, deposit) -> None:
        script = tmp_path / "liar.py"
        script.write_text(
            "import json, sys\n"
            "json.dump({}, open(sys.argv[2], 'w'))\n"
            "json.dump(['1'], open(sys.argv[3], 'w'))\n",
            encoding="utf-8",
        )
        system = CommandProofSystem(f"{sys.executable} {script} {{input}} {{proof}} {{public}}", "true")
        with pytest.raises(ProverFailed):
            system.prove(deposit)

    def test_foreign_proof_is_not_sent_to_verifier(self, command_prover, deposit) -> None:
        stub_proof = StubProofSystem().prove(deposit)
        with mock.patch("subprocess.run") as mock_run:
            assert not command_prover.verify(stub_proof, deposit.public_signals())
        mock_run.assert_not_called()
