"""Shared pytest fixtures for the shielded ledger tests.

Provides a small depth-4 tree, a persisted empty-tree artifact, the stub
prover and ledgers with or without an initial deposit.
"""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

import pytest

from mori.shielded.builder import build_deposit
from mori.shielded.commitment import Note
from mori.shielded.hashing import FieldHasher, get_default_hasher
from mori.shielded.ledger import ShieldedLedger
from mori.shielded.merkle_tree import SparseMerkleTree
from mori.shielded.precompute import clear_cache, write_empty_tree
from mori.shielded.proof_system import StubProofSystem

TEST_DEPTH = 4

# Token addresses as they arrive from the chain
USDC = "0x1000000000000000000000000000000000000001"
WETH = "0x2000000000000000000000000000000000000002"

SECRET = 0x5EC2E7
OTHER_SECRET = 0xBADBEEF


@pytest.fixture(autouse=True)
def _fresh_artifact_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def hasher() -> FieldHasher:
    return get_default_hasher()


@pytest.fixture
def tree() -> SparseMerkleTree:
    return SparseMerkleTree.empty(TEST_DEPTH)


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    return write_empty_tree(TEST_DEPTH, tmp_path / "empty_tree.json")


@pytest.fixture
def prover() -> StubProofSystem:
    return StubProofSystem()


@pytest.fixture
def ledger(prover: StubProofSystem) -> ShieldedLedger:
    return ShieldedLedger(SparseMerkleTree.empty(TEST_DEPTH), prover)


@pytest.fixture
def funded(tree: SparseMerkleTree) -> Tuple[SparseMerkleTree, Note]:
    """Tree holding one bootstrap deposit of 100 USDC at leaf 0."""
    transition, note = build_deposit(tree, currency=USDC, amount=100, secret=SECRET, target_index=0)
    tree.update_leaf(0, transition.public.commitment)
    return tree, note


@pytest.fixture
def funded_ledger(ledger: ShieldedLedger, prover: StubProofSystem) -> Tuple[ShieldedLedger, Note]:
    """Ledger that has accepted one bootstrap deposit of 100 USDC."""
    transition, note = build_deposit(
        ledger.snapshot(), currency=USDC, amount=100, secret=SECRET, target_index=ledger.next_free_index()
    )
    ledger.submit_deposit(transition, prover.prove(transition))
    return ledger, note
