"""Shielded ledger: canonical root, spent nullifiers and the free-leaf counter.

Admission order for every submission:
    1. proof verifies against the transition's public signals
    2. old root equals the canonical root (no historical window)
    3. nullifier(s) unseen (the bootstrap nullifier is never recorded)
    4. a free leaf is available
    5. writing the commitment at the free index yields the claimed new root
Only then is the tree updated, the nullifier marked spent, the counter
advanced and the events recorded. A rejected submission changes nothing.

Subscribers are called after the lock is released, so they may read the
ledger. A failing subscriber is logged and does not undo the transition.

Writers are serialised by one lock; readers that need a stable view across
several calls take a ``snapshot()``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol, Set, Tuple, Union

from mori.shielded.commitment import is_bootstrap_nullifier
from mori.shielded.errors import NullifierAlreadySpent, ProofRejected, RootMismatch, StaleRoot, SwapShortfall, TreeFull
from mori.shielded.merkle_tree import SparseMerkleTree, TreeSnapshot, compute_root
from mori.shielded.proof_system import Proof, ProofSystem
from mori.shielded.transitions import SwapTransition, Transition, TransitionKind

if TYPE_CHECKING:
    from mori.config import MoriConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootUpdated:
    old_root: int
    new_root: int


@dataclass(frozen=True)
class TransitionProcessed:
    kind: TransitionKind
    nullifier: int
    leaf_index: int
    commitment: int
    currency: int
    amount: int


LedgerEvent = Union[RootUpdated, TransitionProcessed]


@dataclass(frozen=True)
class Receipt:
    """Outcome of an accepted submission."""

    kind: TransitionKind
    old_root: int
    new_root: int
    leaf_indices: Tuple[int, ...]
    amount_out: Optional[int] = None


class SwapExecutor(Protocol):
    """Converts ``amount_in`` of one currency into the other; returns amount out."""

    def __call__(self, currency_in: int, currency_out: int, amount_in: int) -> int:
        ...


class ShieldedLedger:
    """In-memory ledger gating tree updates on proofs and nullifiers."""

    def __init__(
        self,
        tree: SparseMerkleTree,
        proof_system: ProofSystem,
        *,
        swap_executor: Optional[SwapExecutor] = None,
    ):
        self._tree = tree
        self._proof_system = proof_system
        self._swap_executor = swap_executor
        self._spent: Set[int] = set()
        self._next_index = 0
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[LedgerEvent], None]] = []
        self.events: List[LedgerEvent] = []

    @classmethod
    def from_config(
        cls,
        config: "MoriConfig",
        *,
        proof_system: Optional[ProofSystem] = None,
        swap_executor: Optional[SwapExecutor] = None,
    ) -> "ShieldedLedger":
        """Ledger seeded from the configured empty-tree artifact.

        Raises:
            ArtifactMissing: If ``tree.artifact_path`` is set but absent
        """
        from mori.config import build_proof_system, build_tree

        tree = build_tree(config.tree)
        if proof_system is None:
            proof_system = build_proof_system(config.prover, config.tree.hasher)
        return cls(tree, proof_system, swap_executor=swap_executor)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        return self._tree.depth

    def root(self) -> int:
        return self._tree.root()

    def next_free_index(self) -> int:
        return self._next_index

    def is_spent(self, nullifier: int) -> bool:
        return nullifier in self._spent

    def snapshot(self) -> TreeSnapshot:
        with self._lock:
            return self._tree.snapshot()

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        self._subscribers.append(callback)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit(self, transition: Union[Transition, SwapTransition], proof: Proof) -> Receipt:
        if isinstance(transition, SwapTransition):
            return self.submit_swap(transition, proof)
        if transition.kind is TransitionKind.DEPOSIT:
            return self.submit_deposit(transition, proof)
        return self.submit_withdrawal(transition, proof)

    def submit_deposit(self, transition: Transition, proof: Proof) -> Receipt:
        return self._submit_single(TransitionKind.DEPOSIT, transition, proof)

    def submit_withdrawal(self, transition: Transition, proof: Proof) -> Receipt:
        return self._submit_single(TransitionKind.WITHDRAWAL, transition, proof)

    def submit_swap(self, swap: SwapTransition, proof: Proof) -> Receipt:
        """Apply both legs of a swap atomically."""
        with self._lock:
            self._check_proof(swap, proof)
            self._check_root(swap.old_root)

            nullifiers = [swap.withdrawal.public.nullifier, swap.deposit.public.nullifier]
            for value in nullifiers:
                self._check_nullifier(value)
            if not is_bootstrap_nullifier(nullifiers[1]) and nullifiers[0] == nullifiers[1]:
                raise NullifierAlreadySpent(nullifiers[1])

            first, second = self._reserve(2)
            work = self._tree.fork()
            for leg, index in ((swap.withdrawal, first), (swap.deposit, second)):
                self._check_new_root(work, leg, index)
                work.update_leaf(index, leg.public.commitment)

            amount_out = None
            if self._swap_executor is not None:
                amount_out = self._swap_executor(
                    swap.withdrawal.public.currency,
                    swap.deposit.public.currency,
                    swap.withdrawal.public.amount,
                )
                if amount_out < swap.deposit.public.amount:
                    raise SwapShortfall(amount_out, swap.deposit.public.amount)

            old_root = self._tree.root()
            self._tree = work
            self._commit_state(nullifiers, 2)

            events = self._leg_events(swap.withdrawal, first) + self._leg_events(swap.deposit, second)
            self.events.extend(events)
            logger.info(
                "Accepted swap",
                extra={"context": {"leaf_indices": [first, second], "new_root": str(work.root())}},
            )
            receipt = Receipt(
                kind=TransitionKind.SWAP,
                old_root=old_root,
                new_root=work.root(),
                leaf_indices=(first, second),
                amount_out=amount_out,
            )

        self._deliver(events)
        return receipt

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit_single(self, kind: TransitionKind, transition: Transition, proof: Proof) -> Receipt:
        if transition.kind is not kind:
            raise ValueError(f"Expected a {kind.value} transition, got {transition.kind.value}")

        with self._lock:
            self._check_proof(transition, proof)
            self._check_root(transition.public.old_root)
            self._check_nullifier(transition.public.nullifier)
            (index,) = self._reserve(1)
            self._check_new_root(self._tree, transition, index)

            old_root = self._tree.root()
            new_root, _ = self._tree.update_leaf(index, transition.public.commitment)
            self._commit_state([transition.public.nullifier], 1)

            events = self._leg_events(transition, index)
            self.events.extend(events)
            logger.info(
                "Accepted %s", kind.value,
                extra={"context": {"leaf_index": index, "new_root": str(new_root)}},
            )
            receipt = Receipt(kind=kind, old_root=old_root, new_root=new_root, leaf_indices=(index,))

        self._deliver(events)
        return receipt

    def _check_proof(self, transition: Union[Transition, SwapTransition], proof: Proof) -> None:
        if proof.predicate_id != transition.predicate_id:
            raise ProofRejected(
                "Proof is for a different predicate",
                f"proof predicate {proof.predicate_id!r}, transition {transition.predicate_id!r}",
            )
        if not self._proof_system.verify(proof, transition.public_signals()):
            raise ProofRejected("Proof verification failed", predicate=transition.predicate_id)

    def _check_root(self, old_root: int) -> None:
        current = self._tree.root()
        if old_root != current:
            logger.warning("Rejected stale transition", extra={"context": {"current_root": str(current)}})
            raise StaleRoot(old_root, current)

    def _check_nullifier(self, value: int) -> None:
        if not is_bootstrap_nullifier(value) and value in self._spent:
            logger.warning("Rejected double spend")
            raise NullifierAlreadySpent(value)

    def _reserve(self, count: int) -> Tuple[int, ...]:
        if self._next_index + count > self._tree.capacity:
            raise TreeFull("No free leaves left in the tree", capacity=self._tree.capacity)
        return tuple(range(self._next_index, self._next_index + count))

    @staticmethod
    def _check_new_root(tree: SparseMerkleTree, leg: Transition, index: int) -> None:
        computed = compute_root(leg.public.commitment, tree.path(index), tree.hasher)
        if computed != leg.public.new_root:
            raise RootMismatch(leg.public.new_root, computed, index)

    def _commit_state(self, nullifiers: List[int], leaves_used: int) -> None:
        for value in nullifiers:
            if not is_bootstrap_nullifier(value):
                self._spent.add(value)
        self._next_index += leaves_used

    @staticmethod
    def _leg_events(leg: Transition, index: int) -> List[LedgerEvent]:
        public = leg.public
        return [
            RootUpdated(old_root=public.old_root, new_root=public.new_root),
            TransitionProcessed(
                kind=leg.kind,
                nullifier=public.nullifier,
                leaf_index=index,
                commitment=public.commitment,
                currency=public.currency,
                amount=public.amount,
            ),
        ]

    def _deliver(self, events: List[LedgerEvent]) -> None:
        """Notify subscribers outside the lock; the transition is already committed."""
        for event in events:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "Ledger subscriber failed",
                        extra={"context": {"event": type(event).__name__}},
                    )
