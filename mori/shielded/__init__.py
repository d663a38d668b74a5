"""Mori shielded ledger core.

Sparse Merkle tree, commitment scheme, Deposit/Withdrawal/Swap predicates,
the proof system seam and the ledger that gates tree updates on proofs.
"""

from .field import FIELD_MODULUS, to_field
from .hashing import FieldHasher, Sha256FieldHasher, get_default_hasher
from .errors import (
    ArtifactInvalid,
    ArtifactMissing,
    ErrorCode,
    IndexOutOfRange,
    NullifierAlreadySpent,
    PredicateUnsatisfiable,
    ProofRejected,
    ProverFailed,
    RootMismatch,
    ShieldedError,
    StaleRoot,
    SwapShortfall,
    TreeFull,
)
from .merkle_tree import MerklePath, SparseMerkleTree, TreeSnapshot, compute_root, verify_path
from .precompute import build_empty_tree, load_empty_tree, write_empty_tree
from .commitment import BOOTSTRAP_NULLIFIER, Note, commit, nullifier
from .transitions import (
    PredicateErrorCode,
    PredicateReport,
    PublicInputs,
    SwapTransition,
    Transition,
    TransitionKind,
    Witness,
    check_deposit,
    check_swap,
    check_transition,
    check_withdrawal,
)
from .builder import build_deposit, build_swap, build_withdrawal
from .proof_system import CommandProofSystem, Proof, ProofSystem, StubProofSystem
from .ledger import Receipt, RootUpdated, ShieldedLedger, TransitionProcessed

__all__ = [
    "FIELD_MODULUS",
    "to_field",
    "FieldHasher",
    "Sha256FieldHasher",
    "get_default_hasher",
    "ArtifactInvalid",
    "ArtifactMissing",
    "ErrorCode",
    "IndexOutOfRange",
    "NullifierAlreadySpent",
    "PredicateUnsatisfiable",
    "ProofRejected",
    "ProverFailed",
    "RootMismatch",
    "ShieldedError",
    "StaleRoot",
    "SwapShortfall",
    "TreeFull",
    "MerklePath",
    "SparseMerkleTree",
    "TreeSnapshot",
    "compute_root",
    "verify_path",
    "build_empty_tree",
    "load_empty_tree",
    "write_empty_tree",
    "BOOTSTRAP_NULLIFIER",
    "Note",
    "commit",
    "nullifier",
    "PredicateErrorCode",
    "PredicateReport",
    "PublicInputs",
    "SwapTransition",
    "Transition",
    "TransitionKind",
    "Witness",
    "check_deposit",
    "check_swap",
    "check_transition",
    "check_withdrawal",
    "build_deposit",
    "build_swap",
    "build_withdrawal",
    "CommandProofSystem",
    "Proof",
    "ProofSystem",
    "StubProofSystem",
    "Receipt",
    "RootUpdated",
    "ShieldedLedger",
    "TransitionProcessed",
]
