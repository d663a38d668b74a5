"""Field-native hash function used for tree nodes, commitments and nullifiers.

The ledger treats H as an external, collision-resistant map from a small
tuple of field elements to one field element. ``FieldHasher`` is that seam;
``Sha256FieldHasher`` is the in-tree implementation.

Security Properties:
- Collision resistance: relies on SHA-256 collision resistance; the output
  is reduced mod p, which costs under two bits of the 256-bit digest
- Domain separation: the arity is bound into the preimage so H(a, b) can
  never equal H(a, b, c) for any inputs
- Canonical encoding: each input is a fixed-width 32-byte big-endian word
"""

from __future__ import annotations

import hashlib
from typing import Protocol

from mori.shielded.field import FIELD_MODULUS, to_bytes, to_field

MIN_ARITY = 1
MAX_ARITY = 3

# Domain prefix: version tag followed by one arity byte
_DOMAIN_PREFIX = b"MORI_H_V1\x00"


class FieldHasher(Protocol):
    """Fixed-arity hash over field elements."""

    name: str

    def hash(self, *inputs: int) -> int:
        """Hash 1..3 canonical field elements to one field element."""
        ...

    def empty_leaf(self) -> int:
        """Canonical empty-leaf value H(0)."""
        ...


class Sha256FieldHasher:
    """SHA-256 based field hash, domain separated by arity."""

    name = "sha256-bn254"

    def __init__(self) -> None:
        self._empty_leaf = self.hash(0)

    def hash(self, *inputs: int) -> int:
        if not MIN_ARITY <= len(inputs) <= MAX_ARITY:
            raise ValueError(
                f"Hash arity must be between {MIN_ARITY} and {MAX_ARITY}, got {len(inputs)}"
            )
        hasher = hashlib.sha256()
        hasher.update(_DOMAIN_PREFIX)
        hasher.update(len(inputs).to_bytes(1, "big"))
        for value in inputs:
            hasher.update(to_bytes(to_field(value)))
        return int.from_bytes(hasher.digest(), "big") % FIELD_MODULUS

    def empty_leaf(self) -> int:
        return self._empty_leaf

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


_default_hasher: FieldHasher | None = None


def get_default_hasher() -> FieldHasher:
    """Process-wide default hasher instance."""
    global _default_hasher
    if _default_hasher is None:
        _default_hasher = Sha256FieldHasher()
    return _default_hasher


_HASHERS = {Sha256FieldHasher.name: Sha256FieldHasher}


def available_hashers() -> tuple[str, ...]:
    return tuple(sorted(_HASHERS))


def get_hasher(name: str) -> FieldHasher:
    """Hasher registered under ``name``; the default instance for the default name.

    Raises:
        ValueError: If no hasher is registered under ``name``
    """
    default = get_default_hasher()
    if name == default.name:
        return default
    try:
        return _HASHERS[name]()
    except KeyError:
        raise ValueError(f"Unknown hasher {name!r}; available: {', '.join(available_hashers())}") from None
