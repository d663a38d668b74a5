"""State transition predicates: Deposit, Withdrawal and Swap.

A transition is valid iff its private witness satisfies the predicate for its
public inputs. The proof system enforces this in zero knowledge; this module
is the reference evaluation of the same rules, used by provers before they
start and by tests.

Every transition writes its new commitment into a fresh, empty leaf (the
ledger's next free index). The new path therefore proves two things: the
target slot holds the empty leaf under the old root, and holds the new
commitment under the new root. The spent commitment stays in the tree; only
its nullifier is published.

Swap is not a predicate of its own: it is a withdrawal leg and a deposit leg,
each checked by its own predicate, chained by root equality.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from mori.shielded.commitment import BOOTSTRAP_NULLIFIER, commit, nullifier
from mori.shielded.errors import PredicateUnsatisfiable
from mori.shielded.field import is_canonical, to_decimal
from mori.shielded.hashing import FieldHasher, get_default_hasher
from mori.shielded.merkle_tree import MerklePath, compute_root

# Width of the range check on amounts and balances
MAX_AMOUNT_BITS = 252
MAX_AMOUNT = (1 << MAX_AMOUNT_BITS) - 1


class TransitionKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    SWAP = "swap"


class PredicateErrorCode(str, Enum):
    """Why a witness fails a predicate.

    Using str as base class allows JSON serialization.
    """

    OK = "ok"

    # Malformed inputs
    NOT_A_FIELD_ELEMENT = "not_a_field_element"
    PATH_DEPTH_MISMATCH = "path_depth_mismatch"
    KIND_MISMATCH = "kind_mismatch"

    # Arithmetic constraints
    AMOUNT_NOT_POSITIVE = "amount_not_positive"
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"
    BALANCE_OUT_OF_RANGE = "balance_out_of_range"
    INSUFFICIENT_BALANCE = "insufficient_balance"

    # Hash / tree constraints
    NULLIFIER_MISMATCH = "nullifier_mismatch"
    OLD_ROOT_MISMATCH = "old_root_mismatch"
    TARGET_SLOT_OCCUPIED = "target_slot_occupied"
    NEW_ROOT_MISMATCH = "new_root_mismatch"
    COMMITMENT_MISMATCH = "commitment_mismatch"

    # Swap composition
    LEG_CHAIN_BROKEN = "leg_chain_broken"
    SECRET_MISMATCH = "secret_mismatch"


@dataclass(frozen=True)
class PredicateReport:
    """Structured predicate outcome.

    Examples:
        >>> report = PredicateReport.ok("deposit")
        >>> bool(report)
        True
    """

    predicate: str
    success: bool
    error_code: PredicateErrorCode
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, predicate: str, message: str = "Predicate satisfied", **details: Any) -> "PredicateReport":
        return cls(predicate=predicate, success=True, error_code=PredicateErrorCode.OK, message=message, details=details)

    @classmethod
    def fail(cls, predicate: str, code: PredicateErrorCode, message: str, **details: Any) -> "PredicateReport":
        return cls(predicate=predicate, success=False, error_code=code, message=message, details=details)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicate": self.predicate,
            "success": self.success,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


def require(report: PredicateReport) -> PredicateReport:
    """Return ``report`` if satisfied, else raise ``PredicateUnsatisfiable``."""
    if not report:
        raise PredicateUnsatisfiable(report)
    return report


@dataclass(frozen=True)
class PublicInputs:
    """Public side of a deposit- or withdrawal-shaped transition.

    ``commitment`` is the new leaf the ledger writes at its free index; the
    ledger recomputes the new root from it.
    """

    currency: int
    amount: int
    old_root: int
    new_root: int
    nullifier: int
    commitment: int

    def public_signals(self) -> Tuple[str, ...]:
        return (
            to_decimal(self.amount),
            to_decimal(self.currency),
            to_decimal(self.old_root),
            to_decimal(self.new_root),
            to_decimal(self.nullifier),
            to_decimal(self.commitment),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "amount": to_decimal(self.amount),
            "currencyAddress": to_decimal(self.currency),
            "oldRoot": to_decimal(self.old_root),
            "newRoot": to_decimal(self.new_root),
            "nullifier": to_decimal(self.nullifier),
            "commitment": to_decimal(self.commitment),
        }


@dataclass(frozen=True)
class Witness:
    """Private side of a transition. Never logged or serialised by the ledger."""

    secret: int
    old_randomness: int
    new_randomness: int
    current_balance: int
    old_path: MerklePath
    new_path: MerklePath

    def to_dict(self) -> Dict[str, Any]:
        old_path = self.old_path.to_dict()
        new_path = self.new_path.to_dict()
        return {
            "userSecret": to_decimal(self.secret),
            "oldRandomness": to_decimal(self.old_randomness),
            "newRandomness": to_decimal(self.new_randomness),
            "currentBalance": to_decimal(self.current_balance),
            "oldPathElements": old_path["pathElements"],
            "oldPathIndices": old_path["pathIndices"],
            "newPathElements": new_path["pathElements"],
            "newPathIndices": new_path["pathIndices"],
        }

    def __repr__(self) -> str:
        return f"Witness(depth={self.old_path.depth}, redacted)"


@dataclass(frozen=True)
class Transition:
    """A deposit or withdrawal: kind, public inputs and witness."""

    kind: TransitionKind
    public: PublicInputs
    witness: Witness

    @property
    def predicate_id(self) -> str:
        return self.kind.value

    def public_signals(self) -> Tuple[str, ...]:
        return self.public.public_signals()


@dataclass(frozen=True)
class SwapTransition:
    """Withdrawal of currency A chained into a deposit of currency B.

    The deposit leg's old root must be exactly the withdrawal leg's new root.
    """

    withdrawal: Transition
    deposit: Transition
    kind: TransitionKind = TransitionKind.SWAP

    @property
    def predicate_id(self) -> str:
        return self.kind.value

    @property
    def old_root(self) -> int:
        return self.withdrawal.public.old_root

    @property
    def intermediate_root(self) -> int:
        return self.withdrawal.public.new_root

    @property
    def new_root(self) -> int:
        return self.deposit.public.new_root

    def public_signals(self) -> Tuple[str, ...]:
        return self.withdrawal.public_signals() + self.deposit.public_signals()


def _check_fields(name: str, public: PublicInputs, witness: Witness) -> Optional[PredicateReport]:
    values = {
        "currency": public.currency,
        "amount": public.amount,
        "old_root": public.old_root,
        "new_root": public.new_root,
        "nullifier": public.nullifier,
        "commitment": public.commitment,
        "secret": witness.secret,
        "old_randomness": witness.old_randomness,
        "new_randomness": witness.new_randomness,
        "current_balance": witness.current_balance,
    }
    for label, value in values.items():
        if not is_canonical(value):
            return PredicateReport.fail(
                name, PredicateErrorCode.NOT_A_FIELD_ELEMENT, f"{label} is not a canonical field element", field=label
            )
    for path_name, path in (("old_path", witness.old_path), ("new_path", witness.new_path)):
        if not all(is_canonical(s) for s in path.siblings):
            return PredicateReport.fail(
                name, PredicateErrorCode.NOT_A_FIELD_ELEMENT, f"{path_name} has a non-field sibling", field=path_name
            )
    if witness.old_path.depth != witness.new_path.depth or witness.old_path.depth == 0:
        return PredicateReport.fail(
            name,
            PredicateErrorCode.PATH_DEPTH_MISMATCH,
            "Old and new paths must have the same non-zero depth",
            old_depth=witness.old_path.depth,
            new_depth=witness.new_path.depth,
        )
    return None


def _check_new_leaf(
    name: str,
    public: PublicInputs,
    witness: Witness,
    new_balance: int,
    h: FieldHasher,
) -> PredicateReport:
    new_leaf = commit(public.currency, new_balance, witness.new_randomness, h)
    if new_leaf != public.commitment:
        return PredicateReport.fail(name, PredicateErrorCode.COMMITMENT_MISMATCH, "Commitment does not open to the new balance")
    if compute_root(h.empty_leaf(), witness.new_path, h) != public.old_root:
        return PredicateReport.fail(
            name,
            PredicateErrorCode.TARGET_SLOT_OCCUPIED,
            "New path does not prove an empty target slot under the old root",
            target_index=witness.new_path.index,
        )
    if compute_root(new_leaf, witness.new_path, h) != public.new_root:
        return PredicateReport.fail(name, PredicateErrorCode.NEW_ROOT_MISMATCH, "New leaf does not reconstruct the new root")
    return PredicateReport.ok(name, target_index=witness.new_path.index)


def check_deposit(
    public: PublicInputs,
    witness: Witness,
    hasher: Optional[FieldHasher] = None,
) -> PredicateReport:
    """Evaluate the Deposit predicate.

    Rules:
        1. old_leaf = commit(currency, current_balance, old_randomness)
        2. nullifier = 0 if current_balance == 0 else H(secret, old_leaf)
        3. unless bootstrapping, old_path proves old_leaf under old_root
        4. new_leaf = commit(currency, current_balance + amount, new_randomness)
        5. new_path proves the empty slot under old_root and new_leaf under new_root
        6. amount > 0
    """
    name = TransitionKind.DEPOSIT.value
    h = hasher or get_default_hasher()

    malformed = _check_fields(name, public, witness)
    if malformed is not None:
        return malformed

    if public.amount == 0:
        return PredicateReport.fail(name, PredicateErrorCode.AMOUNT_NOT_POSITIVE, "Deposit amount must be positive")
    if public.amount > MAX_AMOUNT:
        return PredicateReport.fail(name, PredicateErrorCode.AMOUNT_OUT_OF_RANGE, "Deposit amount exceeds range")
    if witness.current_balance > MAX_AMOUNT:
        return PredicateReport.fail(name, PredicateErrorCode.BALANCE_OUT_OF_RANGE, "Current balance exceeds range")
    new_balance = witness.current_balance + public.amount
    if new_balance > MAX_AMOUNT:
        return PredicateReport.fail(name, PredicateErrorCode.BALANCE_OUT_OF_RANGE, "Resulting balance exceeds range")

    old_leaf = commit(public.currency, witness.current_balance, witness.old_randomness, h)
    bootstrap = witness.current_balance == 0
    expected_nullifier = BOOTSTRAP_NULLIFIER if bootstrap else nullifier(witness.secret, old_leaf, h)
    if public.nullifier != expected_nullifier:
        return PredicateReport.fail(
            name, PredicateErrorCode.NULLIFIER_MISMATCH, "Nullifier does not match the spent commitment", bootstrap=bootstrap
        )

    if not bootstrap and compute_root(old_leaf, witness.old_path, h) != public.old_root:
        return PredicateReport.fail(name, PredicateErrorCode.OLD_ROOT_MISMATCH, "Old leaf is not included under the old root")

    report = _check_new_leaf(name, public, witness, new_balance, h)
    if report:
        return PredicateReport.ok(name, bootstrap=bootstrap, **report.details)
    return report


def check_withdrawal(
    public: PublicInputs,
    witness: Witness,
    hasher: Optional[FieldHasher] = None,
) -> PredicateReport:
    """Evaluate the Withdrawal predicate.

    Rules:
        1. old_leaf = commit(currency, current_balance, old_randomness);
           nullifier = H(secret, old_leaf)
        2. old_path proves old_leaf under old_root
        3. amount <= current_balance (no witness exists otherwise)
        4. new_leaf = commit(currency, current_balance - amount, new_randomness);
           new_path proves the empty slot under old_root and new_leaf under new_root
    """
    name = TransitionKind.WITHDRAWAL.value
    h = hasher or get_default_hasher()

    malformed = _check_fields(name, public, witness)
    if malformed is not None:
        return malformed

    if public.amount > MAX_AMOUNT:
        return PredicateReport.fail(name, PredicateErrorCode.AMOUNT_OUT_OF_RANGE, "Withdrawal amount exceeds range")
    if witness.current_balance > MAX_AMOUNT:
        return PredicateReport.fail(name, PredicateErrorCode.BALANCE_OUT_OF_RANGE, "Current balance exceeds range")
    if public.amount > witness.current_balance:
        return PredicateReport.fail(
            name, PredicateErrorCode.INSUFFICIENT_BALANCE, "Withdrawal amount exceeds the committed balance"
        )

    old_leaf = commit(public.currency, witness.current_balance, witness.old_randomness, h)
    if public.nullifier != nullifier(witness.secret, old_leaf, h):
        return PredicateReport.fail(name, PredicateErrorCode.NULLIFIER_MISMATCH, "Nullifier does not match the spent commitment")

    if compute_root(old_leaf, witness.old_path, h) != public.old_root:
        return PredicateReport.fail(name, PredicateErrorCode.OLD_ROOT_MISMATCH, "Old leaf is not included under the old root")

    return _check_new_leaf(name, public, witness, witness.current_balance - public.amount, h)


def check_swap(swap: SwapTransition, hasher: Optional[FieldHasher] = None) -> PredicateReport:
    """Evaluate both legs of a swap and their chaining.

    The withdrawal leg is checked first: if it is unsatisfiable, the swap is,
    whatever the deposit leg says.
    """
    name = TransitionKind.SWAP.value

    if swap.withdrawal.kind is not TransitionKind.WITHDRAWAL or swap.deposit.kind is not TransitionKind.DEPOSIT:
        return PredicateReport.fail(name, PredicateErrorCode.KIND_MISMATCH, "Swap legs must be a withdrawal then a deposit")

    first = check_withdrawal(swap.withdrawal.public, swap.withdrawal.witness, hasher)
    if not first:
        return PredicateReport.fail(name, first.error_code, f"Withdrawal leg: {first.message}", leg="withdrawal", **first.details)

    second = check_deposit(swap.deposit.public, swap.deposit.witness, hasher)
    if not second:
        return PredicateReport.fail(name, second.error_code, f"Deposit leg: {second.message}", leg="deposit", **second.details)

    if swap.deposit.public.old_root != swap.withdrawal.public.new_root:
        return PredicateReport.fail(
            name, PredicateErrorCode.LEG_CHAIN_BROKEN, "Deposit leg does not start from the withdrawal leg's root"
        )
    if swap.deposit.witness.secret != swap.withdrawal.witness.secret:
        return PredicateReport.fail(name, PredicateErrorCode.SECRET_MISMATCH, "Swap legs must share the same secret")

    return PredicateReport.ok(
        name,
        withdrawal_index=first.details.get("target_index"),
        deposit_index=second.details.get("target_index"),
    )


def check_transition(transition: Transition | SwapTransition, hasher: Optional[FieldHasher] = None) -> PredicateReport:
    """Dispatch on the transition kind."""
    if isinstance(transition, SwapTransition):
        return check_swap(transition, hasher)
    if transition.kind is TransitionKind.DEPOSIT:
        return check_deposit(transition.public, transition.witness, hasher)
    if transition.kind is TransitionKind.WITHDRAWAL:
        return check_withdrawal(transition.public, transition.witness, hasher)
    return PredicateReport.fail(
        transition.kind.value, PredicateErrorCode.KIND_MISMATCH, f"Unknown transition kind {transition.kind!r}"
    )
