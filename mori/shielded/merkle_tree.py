"""Fixed-depth sparse Merkle tree over field elements.

The tree is held as a level arena: ``levels[0]`` has 2^D leaves and
``levels[D]`` holds the single root. A leaf update rewrites exactly the D
ancestors on the leaf's root-ward path in place; nothing else is touched and
the full tree is never rehashed. Fresh trees are seeded from the precomputed
empty-tree artifact.

Complexity:
- root(): O(1)
- path(i): O(D)
- update_leaf(i, v): O(D) hash operations
- snapshot() / fork(): O(2^D) copy, no hashing
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from mori.shielded.errors import IndexOutOfRange
from mori.shielded.field import FieldLike, to_decimal, to_field
from mori.shielded.hashing import FieldHasher, get_default_hasher


@dataclass(frozen=True)
class MerklePath:
    """Authentication path for one leaf.

    Attributes:
        siblings: Sibling value at each level, leaf level first
        directions: 0 if the node on the path is a left child, 1 if right
    """

    siblings: Tuple[int, ...]
    directions: Tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.siblings) != len(self.directions):
            raise ValueError(
                f"Path has {len(self.siblings)} siblings but {len(self.directions)} direction bits"
            )
        if any(bit not in (0, 1) for bit in self.directions):
            raise ValueError("Direction bits must be 0 or 1")

    @property
    def depth(self) -> int:
        return len(self.siblings)

    @property
    def index(self) -> int:
        """Leaf index encoded by the direction bits (least significant first)."""
        return sum(bit << level for level, bit in enumerate(self.directions))

    def compute_root(self, leaf: FieldLike, hasher: Optional[FieldHasher] = None) -> int:
        return compute_root(leaf, self, hasher)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pathElements": [to_decimal(s) for s in self.siblings],
            "pathIndices": list(self.directions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerklePath":
        return cls(
            siblings=tuple(to_field(s) for s in data["pathElements"]),
            directions=tuple(int(b) for b in data["pathIndices"]),
        )


def compute_root(leaf: FieldLike, path: MerklePath, hasher: Optional[FieldHasher] = None) -> int:
    """Fold ``path`` over ``leaf`` and return the resulting root."""
    h = hasher or get_default_hasher()
    node = to_field(leaf)
    for sibling, bit in zip(path.siblings, path.directions):
        if bit:
            node = h.hash(sibling, node)
        else:
            node = h.hash(node, sibling)
    return node


def verify_path(
    leaf: FieldLike,
    path: MerklePath,
    root: FieldLike,
    hasher: Optional[FieldHasher] = None,
) -> bool:
    """True if ``leaf`` sits under ``root`` along ``path``."""
    return compute_root(leaf, path, hasher) == to_field(root)


def _validate_levels(levels: Sequence[Sequence[int]]) -> int:
    """Check arena shape and return the depth."""
    if len(levels) < 2:
        raise ValueError("A tree needs at least one level below the root")
    depth = len(levels) - 1
    for d, level in enumerate(levels):
        expected = 1 << (depth - d)
        if len(level) != expected:
            raise ValueError(f"Level {d} has width {len(level)}, expected {expected}")
    return depth


class _LevelView:
    """Read-only queries shared by the live tree and its snapshots."""

    _levels: Sequence[Sequence[int]]
    _depth: int
    _hasher: FieldHasher

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def capacity(self) -> int:
        return 1 << self._depth

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    def _check_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.capacity:
            raise IndexOutOfRange(index, self.capacity)

    def root(self) -> int:
        return self._levels[self._depth][0]

    def leaf(self, index: int) -> int:
        self._check_index(index)
        return self._levels[0][index]

    def path(self, index: int) -> MerklePath:
        """Sibling values and direction bits for leaf ``index``.

        Raises:
            IndexOutOfRange: If index is not in [0, 2^D)
        """
        self._check_index(index)
        siblings: List[int] = []
        directions: List[int] = []
        current = index
        for d in range(self._depth):
            siblings.append(self._levels[d][current ^ 1])
            directions.append(current & 1)
            current >>= 1
        return MerklePath(siblings=tuple(siblings), directions=tuple(directions))

    def level(self, d: int) -> Tuple[int, ...]:
        if not 0 <= d <= self._depth:
            raise ValueError(f"Level {d} outside [0, {self._depth}]")
        return tuple(self._levels[d])


class TreeSnapshot(_LevelView):
    """Immutable view of a tree at one version.

    Provers and concurrent readers hold a snapshot so they never observe a
    half-applied update.
    """

    def __init__(self, levels: Sequence[Sequence[int]], hasher: FieldHasher, version: int):
        self._levels = tuple(tuple(level) for level in levels)
        self._depth = len(self._levels) - 1
        self._hasher = hasher
        self.version = version

    def fork(self) -> "SparseMerkleTree":
        """Mutable tree starting from this snapshot."""
        tree = SparseMerkleTree(self._levels, self._hasher)
        tree._version = self.version
        return tree

    def __repr__(self) -> str:
        return f"TreeSnapshot(depth={self._depth}, version={self.version}, root={self.root()})"


class SparseMerkleTree(_LevelView):
    """Mutable fixed-depth Merkle tree; single writer per instance.

    Invariants:
        - levels[d + 1][j] == H(levels[d][2j], levels[d][2j + 1]) for all d, j
        - update_leaf either applies the whole ancestor chain or nothing
    """

    def __init__(self, levels: Sequence[Sequence[int]], hasher: Optional[FieldHasher] = None):
        self._depth = _validate_levels(levels)
        self._levels: List[List[int]] = [list(level) for level in levels]
        self._hasher = hasher or get_default_hasher()
        self._version = 0

    @classmethod
    def from_artifact(
        cls,
        path: Union[str, Path],
        hasher: Optional[FieldHasher] = None,
        depth: Optional[int] = None,
    ) -> "SparseMerkleTree":
        """Seed a fresh tree from the persisted empty-tree artifact.

        Raises:
            ArtifactMissing: If the file does not exist
            ArtifactInvalid: If the file is malformed or of the wrong depth
        """
        from mori.shielded.precompute import load_empty_tree

        h = hasher or get_default_hasher()
        return cls(load_empty_tree(path, depth=depth, hasher=h), h)

    @classmethod
    def empty(cls, depth: int, hasher: Optional[FieldHasher] = None) -> "SparseMerkleTree":
        """In-memory empty tree, built once per (depth, hasher) and cached."""
        from mori.shielded.precompute import cached_empty_tree

        h = hasher or get_default_hasher()
        return cls(cached_empty_tree(depth, h), h)

    @property
    def version(self) -> int:
        """Number of updates applied since construction."""
        return self._version

    def update_leaf(self, index: int, value: FieldLike) -> Tuple[int, MerklePath]:
        """Replace leaf ``index`` and recompute its D ancestors.

        Returns:
            Tuple of (new_root, path for index in the updated tree)

        Raises:
            IndexOutOfRange: If index is not in [0, 2^D)
        """
        self._check_index(index)
        node = to_field(value)

        # Compute the whole chain before writing so a failure leaves no partial update
        chain = [node]
        current = index
        for d in range(self._depth):
            sibling = self._levels[d][current ^ 1]
            if current & 1:
                node = self._hasher.hash(sibling, node)
            else:
                node = self._hasher.hash(node, sibling)
            chain.append(node)
            current >>= 1

        current = index
        for d, value_at_level in enumerate(chain):
            self._levels[d][current] = value_at_level
            current >>= 1
        self._version += 1

        return self.root(), self.path(index)

    def snapshot(self) -> TreeSnapshot:
        return TreeSnapshot(self._levels, self._hasher, self._version)

    def fork(self) -> "SparseMerkleTree":
        """Independent mutable copy sharing no state with this tree."""
        clone = SparseMerkleTree.__new__(SparseMerkleTree)
        clone._depth = self._depth
        clone._levels = [list(level) for level in self._levels]
        clone._hasher = self._hasher
        clone._version = self._version
        return clone

    def __repr__(self) -> str:
        return f"SparseMerkleTree(depth={self._depth}, version={self._version}, root={self.root()})"
