"""Mori: shielded balance ledger over a sparse Merkle tree."""

__version__ = "0.1.0"
