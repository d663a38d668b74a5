"""Proof system capability: prove and verify transitions.

The ledger core never looks inside a proof; it only needs
``prove(transition) -> Proof`` and ``verify(proof, public_signals) -> bool``.
Two implementations are provided:

- ``StubProofSystem``: evaluates the predicate locally and emits an
  HMAC-SHA-256 digest binding predicate id and public signals. The key is
  random per instance unless one is configured, so only the holder of the
  key can mint proofs. Not zero knowledge; for development and tests.
- ``CommandProofSystem``: hands the witness to an external prover binary
  (e.g. a snarkjs wrapper) and verifies with an external verifier binary.

Both refuse to prove an unsatisfiable transition: ``PredicateUnsatisfiable``
is raised before any proving work starts.

Dependencies: hashlib, hmac, json, secrets, subprocess
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

from mori.shielded.errors import ProverFailed
from mori.shielded.hashing import FieldHasher
from mori.shielded.transitions import SwapTransition, Transition, check_transition, require

logger = logging.getLogger(__name__)

AnyTransition = Union[Transition, SwapTransition]

# Security constants
MAX_PROOF_SIZE_BYTES = 512 * 1024
PROVER_TIMEOUT_SECONDS = 300

_STUB_DOMAIN = b"MORI_STUB_PROOF_V1\x00"


@dataclass(frozen=True)
class Proof:
    """Opaque proof plus the public signals it was produced for."""

    predicate_id: str
    public_signals: Tuple[str, ...]
    payload: str
    prover: str = "stub"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicate_id": self.predicate_id,
            "public_signals": list(self.public_signals),
            "payload": self.payload,
            "prover": self.prover,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proof":
        return cls(
            predicate_id=str(data["predicate_id"]),
            public_signals=tuple(str(s) for s in data["public_signals"]),
            payload=str(data["payload"]),
            prover=str(data.get("prover", "stub")),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "Proof":
        return cls.from_dict(json.loads(text))


class ProofSystem(Protocol):
    name: str

    def prove(self, transition: AnyTransition) -> Proof:
        ...

    def verify(self, proof: Proof, public_signals: Sequence[str]) -> bool:
        ...


def _check_before_proving(transition: AnyTransition, hasher: Optional[FieldHasher]) -> None:
    report = require(check_transition(transition, hasher))
    logger.debug("Predicate satisfied", extra={"context": {"predicate": report.predicate}})


class StubProofSystem:
    """Digest-binding stub prover."""

    name = "stub"

    def __init__(self, hasher: Optional[FieldHasher] = None, key: Optional[bytes] = None):
        """
        Args:
            hasher: Hash used when evaluating predicates
            key: HMAC key shared by every process that verifies these proofs;
                a fresh random key is drawn when omitted
        """
        self._hasher = hasher
        self._key = key or secrets.token_bytes(32)

    def _digest(self, predicate_id: str, public_signals: Sequence[str]) -> str:
        message = _STUB_DOMAIN + json.dumps(
            [predicate_id, list(public_signals)], separators=(",", ":")
        ).encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def prove(self, transition: AnyTransition) -> Proof:
        _check_before_proving(transition, self._hasher)
        signals = transition.public_signals()
        return Proof(
            predicate_id=transition.predicate_id,
            public_signals=signals,
            payload=self._digest(transition.predicate_id, signals),
            prover=self.name,
        )

    def verify(self, proof: Proof, public_signals: Sequence[str]) -> bool:
        if proof.prover != self.name:
            return False
        if tuple(public_signals) != proof.public_signals:
            return False
        expected = self._digest(proof.predicate_id, proof.public_signals)
        return hmac.compare_digest(expected, proof.payload)


def _witness_input(transition: AnyTransition) -> Dict[str, Any]:
    """Flat circuit input: public inputs and witness as decimal strings."""
    if isinstance(transition, SwapTransition):
        data: Dict[str, Any] = {
            "oldRoot": str(transition.old_root),
            "intermediateTokenRoot": str(transition.intermediate_root),
            "newRoot": str(transition.new_root),
            "userSecret": str(transition.withdrawal.witness.secret),
        }
        for prefix, leg in (("withdrawal", transition.withdrawal), ("deposit", transition.deposit)):
            leg_input = {**leg.public.to_dict(), **leg.witness.to_dict()}
            for key in ("oldRoot", "newRoot", "userSecret"):
                leg_input.pop(key)
            for key, value in leg_input.items():
                data[prefix + key[0].upper() + key[1:]] = value
        return data
    return {**transition.public.to_dict(), **transition.witness.to_dict()}


class CommandProofSystem:
    """External prover/verifier invoked through command templates.

    Templates are formatted with ``{circuit}``, ``{input}``, ``{proof}`` and
    ``{public}`` and split with ``shlex``; no shell is involved. The prover
    must write ``proof.json`` and ``public.json``; the verifier must exit 0
    and print ``OK``.
    """

    name = "command"

    def __init__(
        self,
        prover_command: str,
        verifier_command: str,
        *,
        circuits_dir: Union[str, Path] = "circuits",
        work_dir: Optional[Union[str, Path]] = None,
        timeout_seconds: int = PROVER_TIMEOUT_SECONDS,
        hasher: Optional[FieldHasher] = None,
    ):
        self.prover_command = prover_command
        self.verifier_command = verifier_command
        self.circuits_dir = Path(circuits_dir)
        self.work_dir = Path(work_dir) if work_dir is not None else None
        self.timeout_seconds = timeout_seconds
        self._hasher = hasher

    def _ensure_work_dir(self) -> None:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)

    def _run(self, template: str, **paths: Path) -> subprocess.CompletedProcess:
        cmd_parts = shlex.split(template.format(**{k: str(v) for k, v in paths.items()}))
        try:
            return subprocess.run(cmd_parts, capture_output=True, check=True, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            raise ProverFailed("External prover timed out", f"{cmd_parts[0]} exceeded {self.timeout_seconds}s") from exc
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.decode(errors="replace")[:500] if exc.stderr else ""
            raise ProverFailed("External prover failed", f"{cmd_parts[0]} exited {exc.returncode}: {stderr}") from exc
        except OSError as exc:
            raise ProverFailed("External prover unavailable", f"{cmd_parts[0]}: {exc}") from exc

    def _read_bounded(self, path: Path) -> str:
        if not path.exists():
            raise ProverFailed("External prover produced no output", f"missing {path}")
        if path.stat().st_size > MAX_PROOF_SIZE_BYTES:
            raise ProverFailed("External prover output too large", f"{path} exceeds {MAX_PROOF_SIZE_BYTES} bytes")
        return path.read_text(encoding="utf-8")

    def prove(self, transition: AnyTransition) -> Proof:
        _check_before_proving(transition, self._hasher)
        self._ensure_work_dir()

        with tempfile.TemporaryDirectory(dir=self.work_dir) as tmp:
            tmp_dir = Path(tmp)
            input_path = tmp_dir / "input.json"
            proof_path = tmp_dir / "proof.json"
            public_path = tmp_dir / "public.json"
            input_path.write_text(json.dumps(_witness_input(transition)), encoding="utf-8")

            logger.info("Running external prover", extra={"context": {"predicate": transition.predicate_id}})
            self._run(
                self.prover_command,
                circuit=self.circuits_dir / transition.predicate_id,
                input=input_path,
                proof=proof_path,
                public=public_path,
            )
            payload = self._read_bounded(proof_path)
            try:
                signals = tuple(str(s) for s in json.loads(self._read_bounded(public_path)))
            except (json.JSONDecodeError, TypeError) as exc:
                raise ProverFailed("External prover wrote malformed public signals", str(exc)) from exc

        if signals != transition.public_signals():
            raise ProverFailed(
                "External prover public signals differ from the transition",
                f"expected {len(transition.public_signals())} signals, got {len(signals)}",
            )
        return Proof(predicate_id=transition.predicate_id, public_signals=signals, payload=payload, prover=self.name)

    def verify(self, proof: Proof, public_signals: Sequence[str]) -> bool:
        if proof.prover != self.name or tuple(public_signals) != proof.public_signals:
            return False
        self._ensure_work_dir()
        with tempfile.TemporaryDirectory(dir=self.work_dir) as tmp:
            tmp_dir = Path(tmp)
            proof_path = tmp_dir / "proof.json"
            public_path = tmp_dir / "public.json"
            proof_path.write_text(proof.payload, encoding="utf-8")
            public_path.write_text(json.dumps(list(public_signals)), encoding="utf-8")
            try:
                result = self._run(
                    self.verifier_command,
                    circuit=self.circuits_dir / proof.predicate_id,
                    input=public_path,
                    proof=proof_path,
                    public=public_path,
                )
            except ProverFailed as exc:
                logger.warning("External verifier failed: %s", exc.user_message)
                return False
        return "OK" in result.stdout.decode(errors="replace")
