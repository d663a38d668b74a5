"""BN254 scalar field helpers.

Every value that flows through the tree, the commitment scheme and the
transition predicates is an element of the BN254 scalar field, the field the
circuits and the on-chain hasher operate over. Values are plain Python ints in
``[0, FIELD_MODULUS)``; this module converts the external representations
(decimal strings, ``0x`` hex strings, 20-byte addresses) into that form.
"""

from __future__ import annotations

from typing import Union

from py_ecc.bn128 import curve_order

FIELD_MODULUS: int = curve_order

# Bytes needed for a canonical big-endian encoding of one element
FIELD_BYTES = 32

FieldLike = Union[int, str, bytes]


def to_field(value: FieldLike) -> int:
    """Canonicalise ``value`` into a field element.

    Accepts ints, decimal strings, ``0x`` hex strings (addresses included) and
    raw big-endian bytes. Values at or above the modulus are reduced, matching
    how the circuit witness generator treats oversized inputs.

    Raises:
        ValueError: If the value is negative, empty, or not a number.
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not field elements")

    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Field elements must be non-negative, got {value}")
        return value % FIELD_MODULUS

    if isinstance(value, (bytes, bytearray)):
        if not value:
            raise ValueError("Empty byte string is not a field element")
        return int.from_bytes(value, "big") % FIELD_MODULUS

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty string is not a field element")
        try:
            if text.lower().startswith("0x"):
                parsed = int(text, 16)
            else:
                parsed = int(text, 10)
        except ValueError as exc:
            raise ValueError(f"Not a field element: {value!r}") from exc
        return to_field(parsed)

    raise ValueError(f"Unsupported field element type: {type(value).__name__}")


def is_canonical(value: object) -> bool:
    """True if ``value`` is already an int in ``[0, FIELD_MODULUS)``."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_MODULUS


def to_bytes(element: int) -> bytes:
    """Big-endian 32-byte encoding of a canonical element."""
    if not is_canonical(element):
        raise ValueError(f"Not a canonical field element: {element!r}")
    return element.to_bytes(FIELD_BYTES, "big")


def to_decimal(element: int) -> str:
    """Decimal string form used by the artifact and public signals."""
    return str(to_field(element))


def to_hex(element: int) -> str:
    return "0x" + to_bytes(to_field(element)).hex()
