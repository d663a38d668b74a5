"""Client-side assembly of transitions.

Reads roots and paths from a tree view (the live tree or a snapshot), derives
leaf values and nullifiers, and returns a ``Transition`` ready for a prover
together with the ``Note`` the client must keep to spend the new commitment.

The view is never mutated. New commitments go into ``target_index``, which
should be the ledger's ``next_free_index()`` at submission time; if another
transition lands first the ledger rejects this one as stale and it must be
rebuilt.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

from mori.shielded.commitment import Note, commit, deposit_nullifier, fresh_randomness, nullifier
from mori.shielded.field import FIELD_MODULUS, FieldLike, to_field
from mori.shielded.merkle_tree import SparseMerkleTree, TreeSnapshot, compute_root
from mori.shielded.transitions import PublicInputs, SwapTransition, Transition, TransitionKind, Witness

logger = logging.getLogger(__name__)

TreeView = Union[SparseMerkleTree, TreeSnapshot]


def _require_empty_slot(view: TreeView, index: int) -> None:
    if view.leaf(index) != view.hasher.empty_leaf():
        raise ValueError(f"Target leaf {index} is already occupied")


def _require_note_in_tree(view: TreeView, note: Note) -> None:
    if view.leaf(note.leaf_index) != note.commitment(view.hasher):
        raise ValueError(f"Note does not match leaf {note.leaf_index} of the tree")


def build_deposit(
    view: TreeView,
    *,
    currency: FieldLike,
    amount: int,
    secret: FieldLike,
    target_index: int,
    note: Optional[Note] = None,
    new_randomness: Optional[FieldLike] = None,
) -> Tuple[Transition, Note]:
    """Build a deposit of ``amount`` into a new commitment at ``target_index``.

    Without a ``note`` this is a first-ever deposit: current balance 0, the
    bootstrap nullifier, and the target slot's own path as the old path.
    With a note it tops up that commitment and nullifies it.

    Raises:
        IndexOutOfRange: If an index is outside the tree
        ValueError: If the target slot is occupied, the note is not in the
            tree, or the note's currency differs
    """
    h = view.hasher
    currency_fe = to_field(currency)
    secret_fe = to_field(secret)
    _require_empty_slot(view, target_index)

    if note is None:
        current_balance = 0
        old_randomness = 0
        old_path = view.path(target_index)
    else:
        if note.currency != currency_fe:
            raise ValueError("Deposit currency differs from the note's currency")
        _require_note_in_tree(view, note)
        current_balance = note.balance
        old_randomness = note.randomness
        old_path = view.path(note.leaf_index)

    old_leaf = commit(currency_fe, current_balance, old_randomness, h)
    randomness = to_field(new_randomness) if new_randomness is not None else fresh_randomness()
    new_balance = current_balance + amount
    new_leaf = commit(currency_fe, new_balance, randomness, h)

    # Only the target leaf changes, so its siblings are the same before and after
    new_path = view.path(target_index)
    new_root = compute_root(new_leaf, new_path, h)

    public = PublicInputs(
        currency=currency_fe,
        amount=amount,
        old_root=view.root(),
        new_root=new_root,
        nullifier=deposit_nullifier(secret_fe, old_leaf, current_balance, h),
        commitment=new_leaf,
    )
    witness = Witness(
        secret=secret_fe,
        old_randomness=old_randomness,
        new_randomness=randomness,
        current_balance=current_balance,
        old_path=old_path,
        new_path=new_path,
    )
    logger.debug(
        "Built deposit",
        extra={"context": {"target_index": target_index, "bootstrap": note is None}},
    )
    return (
        Transition(TransitionKind.DEPOSIT, public, witness),
        Note(currency=currency_fe, balance=new_balance, randomness=randomness, leaf_index=target_index),
    )


def build_withdrawal(
    view: TreeView,
    *,
    note: Note,
    amount: int,
    secret: FieldLike,
    target_index: int,
    new_randomness: Optional[FieldLike] = None,
) -> Tuple[Transition, Note]:
    """Build a withdrawal of ``amount`` from ``note``; the change goes to ``target_index``.

    The remaining balance is computed in the field, as a witness generator
    would: withdrawing more than the balance still yields a transition, one
    that the predicate rejects and no prover can prove.
    """
    h = view.hasher
    secret_fe = to_field(secret)
    _require_empty_slot(view, target_index)
    _require_note_in_tree(view, note)

    old_leaf = note.commitment(h)
    randomness = to_field(new_randomness) if new_randomness is not None else fresh_randomness()
    new_balance = (note.balance - amount) % FIELD_MODULUS
    new_leaf = commit(note.currency, new_balance, randomness, h)

    new_path = view.path(target_index)
    public = PublicInputs(
        currency=note.currency,
        amount=amount,
        old_root=view.root(),
        new_root=compute_root(new_leaf, new_path, h),
        nullifier=nullifier(secret_fe, old_leaf, h),
        commitment=new_leaf,
    )
    witness = Witness(
        secret=secret_fe,
        old_randomness=note.randomness,
        new_randomness=randomness,
        current_balance=note.balance,
        old_path=view.path(note.leaf_index),
        new_path=new_path,
    )
    logger.debug("Built withdrawal", extra={"context": {"target_index": target_index}})
    return (
        Transition(TransitionKind.WITHDRAWAL, public, witness),
        Note(currency=note.currency, balance=new_balance, randomness=randomness, leaf_index=target_index),
    )


def build_swap(
    view: TreeView,
    *,
    note: Note,
    withdrawal_amount: int,
    deposit_currency: FieldLike,
    deposit_amount: int,
    secret: FieldLike,
    withdrawal_index: int,
    deposit_index: Optional[int] = None,
    deposit_note: Optional[Note] = None,
    withdrawal_randomness: Optional[FieldLike] = None,
    deposit_randomness: Optional[FieldLike] = None,
) -> Tuple[SwapTransition, Note, Note]:
    """Build a swap: withdraw from ``note``, then deposit the proceeds.

    ``deposit_amount`` is the expected conversion output; the predicate does
    not check the rate. The deposit leg is built against the intermediate
    tree, which has the withdrawal's change commitment written in.

    Returns:
        Tuple of (swap, change note in the old currency, note in the new currency)
    """
    withdrawal, change_note = build_withdrawal(
        view,
        note=note,
        amount=withdrawal_amount,
        secret=secret,
        target_index=withdrawal_index,
        new_randomness=withdrawal_randomness,
    )

    intermediate = view.fork()
    intermediate.update_leaf(withdrawal_index, withdrawal.public.commitment)

    deposit, proceeds_note = build_deposit(
        intermediate,
        currency=deposit_currency,
        amount=deposit_amount,
        secret=secret,
        target_index=withdrawal_index + 1 if deposit_index is None else deposit_index,
        note=deposit_note,
        new_randomness=deposit_randomness,
    )
    return SwapTransition(withdrawal=withdrawal, deposit=deposit), change_note, proceeds_note
