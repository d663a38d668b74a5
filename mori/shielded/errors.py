"""Error types for the shielded ledger.

Errors carry a safe user-facing message and, optionally, internal details
that are only ever logged. The ``code`` attribute is a stable string that
callers (and JSON consumers) can switch on.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from mori.shielded.transitions import PredicateReport

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Error codes for shielded ledger operations.

    Using str as base class allows JSON serialization.
    """

    INTERNAL = "internal"

    # Caller errors
    INDEX_OUT_OF_RANGE = "index_out_of_range"
    PREDICATE_UNSATISFIABLE = "predicate_unsatisfiable"

    # Ledger admission
    NULLIFIER_ALREADY_SPENT = "nullifier_already_spent"
    STALE_ROOT = "stale_root"
    PROOF_REJECTED = "proof_rejected"
    ROOT_MISMATCH = "root_mismatch"
    TREE_FULL = "tree_full"
    SWAP_SHORTFALL = "swap_shortfall"

    # Startup / resources
    ARTIFACT_MISSING = "artifact_missing"
    ARTIFACT_INVALID = "artifact_invalid"
    PROVER_FAILED = "prover_failed"


class ShieldedError(Exception):
    """Base class for errors that don't leak internal details."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, user_message: str, internal_details: Optional[str] = None, **context: Any):
        """
        Args:
            user_message: Safe message to show to users
            internal_details: Internal details for logging only
            **context: Structured, non-secret fields (roots, indices)
        """
        super().__init__(user_message)
        self.user_message = user_message
        self.internal_details = internal_details
        self.context = context

        if internal_details:
            logger.warning(
                "%s internal: %s", type(self).__name__, internal_details,
                extra={"context": {"code": self.code.value, **context}},
            )

    def to_dict(self) -> dict[str, Any]:
        return {"error_code": self.code.value, "message": self.user_message, "details": dict(self.context)}


class IndexOutOfRange(ShieldedError, IndexError):
    code = ErrorCode.INDEX_OUT_OF_RANGE

    def __init__(self, index: int, capacity: int):
        super().__init__(
            f"Leaf index {index} outside [0, {capacity})",
            index=index,
            capacity=capacity,
        )
        self.index = index
        self.capacity = capacity


class PredicateUnsatisfiable(ShieldedError):
    """No witness satisfies the transition's rules; the proof cannot exist."""

    code = ErrorCode.PREDICATE_UNSATISFIABLE

    def __init__(self, report: "PredicateReport"):
        super().__init__(
            f"{report.predicate} predicate unsatisfiable: {report.message}",
            predicate=report.predicate,
            reason=report.error_code.value,
        )
        self.report = report


class NullifierAlreadySpent(ShieldedError):
    code = ErrorCode.NULLIFIER_ALREADY_SPENT

    def __init__(self, nullifier: int):
        super().__init__("Nullifier has already been spent", nullifier=str(nullifier))
        self.nullifier = nullifier


class StaleRoot(ShieldedError):
    """Submitted old root is no longer the canonical root; rebuild and resubmit."""

    code = ErrorCode.STALE_ROOT

    def __init__(self, submitted: int, current: int):
        super().__init__(
            "Transition was built against a stale root",
            submitted=str(submitted),
            current=str(current),
        )
        self.submitted = submitted
        self.current = current


class ProofRejected(ShieldedError):
    code = ErrorCode.PROOF_REJECTED


class RootMismatch(ShieldedError):
    """Writing the commitment at the free index does not yield the claimed root."""

    code = ErrorCode.ROOT_MISMATCH

    def __init__(self, claimed: int, computed: int, leaf_index: int):
        super().__init__(
            "New root does not match the ledger's tree update",
            claimed=str(claimed),
            computed=str(computed),
            leaf_index=leaf_index,
        )


class TreeFull(ShieldedError):
    code = ErrorCode.TREE_FULL


class SwapShortfall(ShieldedError):
    code = ErrorCode.SWAP_SHORTFALL

    def __init__(self, amount_out: int, required: int):
        super().__init__(
            "Swap execution returned less than the deposit leg requires",
            amount_out=amount_out,
            required=required,
        )


class ArtifactMissing(ShieldedError):
    """The precomputed empty-tree file is absent (fatal at startup)."""

    code = ErrorCode.ARTIFACT_MISSING

    def __init__(self, path: str):
        super().__init__("Precomputed empty tree not found", f"missing artifact at {path}", path=path)
        self.path = path


class ArtifactInvalid(ShieldedError):
    code = ErrorCode.ARTIFACT_INVALID


class ProverFailed(ShieldedError):
    code = ErrorCode.PROVER_FAILED
