"""Commitments and nullifiers for shielded balances.

A commitment hides (currency, balance, randomness) in one field element; a
nullifier is the one-time spend tag of a commitment under the owner's secret.

    commitment = H(currency, balance, randomness)
    nullifier  = H(secret, old_commitment)

Hiding rests on the entropy of ``randomness``; binding of a nullifier to its
owner rests on the secrecy of ``secret``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from mori.shielded.field import FIELD_MODULUS, FieldLike, to_field
from mori.shielded.hashing import FieldHasher, get_default_hasher

# Nullifier published by a first-ever deposit, when there is no prior
# commitment to nullify. A hash output equal to 0 would be indistinguishable
# from it; see DESIGN.md.
BOOTSTRAP_NULLIFIER = 0


def commit(
    currency: FieldLike,
    balance: FieldLike,
    randomness: FieldLike,
    hasher: Optional[FieldHasher] = None,
) -> int:
    h = hasher or get_default_hasher()
    return h.hash(to_field(currency), to_field(balance), to_field(randomness))


def nullifier(secret: FieldLike, old_commitment: FieldLike, hasher: Optional[FieldHasher] = None) -> int:
    h = hasher or get_default_hasher()
    return h.hash(to_field(secret), to_field(old_commitment))


def deposit_nullifier(
    secret: FieldLike,
    old_commitment: FieldLike,
    current_balance: int,
    hasher: Optional[FieldHasher] = None,
) -> int:
    """Nullifier a deposit publishes: the bootstrap constant for a zero balance."""
    if current_balance == 0:
        return BOOTSTRAP_NULLIFIER
    return nullifier(secret, old_commitment, hasher)


def is_bootstrap_nullifier(value: FieldLike) -> bool:
    return to_field(value) == BOOTSTRAP_NULLIFIER


def fresh_randomness() -> int:
    """Uniform non-zero field element for blinding a commitment."""
    return secrets.randbelow(FIELD_MODULUS - 1) + 1


def fresh_secret() -> int:
    return secrets.randbelow(FIELD_MODULUS - 1) + 1


@dataclass(frozen=True)
class Note:
    """What a client keeps to spend a commitment later.

    Attributes:
        currency: Currency identifier (e.g. token address) as a field element
        balance: Hidden balance committed to
        randomness: Blinding factor of the commitment
        leaf_index: Where the ledger wrote the commitment
    """

    currency: int
    balance: int
    randomness: int
    leaf_index: int

    def commitment(self, hasher: Optional[FieldHasher] = None) -> int:
        return commit(self.currency, self.balance, self.randomness, hasher)

    def __repr__(self) -> str:
        # randomness stays out of logs
        return f"Note(currency={self.currency}, balance={self.balance}, leaf_index={self.leaf_index})"
