from __future__ import annotations

from mori.shielded.commitment import (
    BOOTSTRAP_NULLIFIER,
    Note,
    commit,
    deposit_nullifier,
    fresh_randomness,
    fresh_secret,
    is_bootstrap_nullifier,
    nullifier,
)
from mori.shielded.field import FIELD_MODULUS

from conftest import SECRET, USDC, WETH


def test_commit_is_hash_of_three_fields(hasher) -> None:
    assert commit(USDC, 100, 7) == hasher.hash(int(USDC, 16), 100, 7)


def test_commit_hides_behind_randomness() -> None:
    assert commit(USDC, 100, 1) != commit(USDC, 100, 2)


def test_commit_binds_currency_and_balance() -> None:
    assert commit(USDC, 100, 1) != commit(WETH, 100, 1)
    assert commit(USDC, 100, 1) != commit(USDC, 101, 1)


def test_nullifier_binds_secret_and_commitment(hasher) -> None:
    c = commit(USDC, 100, 1)
    assert nullifier(SECRET, c) == hasher.hash(SECRET, c)
    assert nullifier(SECRET, c) != nullifier(SECRET + 1, c)
    assert nullifier(SECRET, c) != nullifier(SECRET, c + 1)


def test_deposit_nullifier_bootstraps_on_zero_balance() -> None:
    c = commit(USDC, 0, 0)
    assert deposit_nullifier(SECRET, c, 0) == BOOTSTRAP_NULLIFIER
    assert is_bootstrap_nullifier(deposit_nullifier(SECRET, c, 0))


def test_deposit_nullifier_spends_existing_balance() -> None:
    c = commit(USDC, 5, 9)
    assert deposit_nullifier(SECRET, c, 5) == nullifier(SECRET, c)
    assert not is_bootstrap_nullifier(nullifier(SECRET, c))


def test_fresh_values_are_nonzero_field_elements() -> None:
    for _ in range(20):
        assert 0 < fresh_randomness() < FIELD_MODULUS
        assert 0 < fresh_secret() < FIELD_MODULUS
    assert fresh_randomness() != fresh_randomness()


def test_note_commitment_and_repr() -> None:
    note = Note(currency=int(USDC, 16), balance=100, randomness=123456789, leaf_index=3)
    assert note.commitment() == commit(USDC, 100, 123456789)
    assert "123456789" not in repr(note)
    assert "leaf_index=3" in repr(note)
