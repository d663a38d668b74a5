"""Precomputed empty-tree bootstrap.

Builds the canonical all-empty tree once, persists it, and serves it to every
fresh ``SparseMerkleTree`` so instances never pay O(2^D) hashing at startup.

Artifact format (JSON):
    [
        ["<leaf 0>", ..., "<leaf 2^D - 1>"],   # level 0, width 2^D
        ...,
        ["<root>"]                              # level D, width 1
    ]

Values are decimal strings on write; decimal or ``0x`` hex strings are
accepted on load.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from mori.shielded.errors import ArtifactInvalid, ArtifactMissing
from mori.shielded.field import to_decimal, to_field
from mori.shielded.hashing import FieldHasher, get_default_hasher

logger = logging.getLogger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 26  # 2^27 arena entries is the practical memory ceiling

Levels = Tuple[Tuple[int, ...], ...]

_cache_lock = threading.Lock()
_artifact_cache: Dict[Tuple[str, int, int, str], Levels] = {}
_memory_cache: Dict[Tuple[int, str], Levels] = {}


def _check_depth(depth: int) -> None:
    if not MIN_DEPTH <= depth <= MAX_DEPTH:
        raise ValueError(f"Tree depth must be between {MIN_DEPTH} and {MAX_DEPTH}, got {depth}")


def empty_subtree_roots(depth: int, hasher: Optional[FieldHasher] = None) -> List[int]:
    """Value of an empty node at each level, leaf level first (D + 1 entries)."""
    _check_depth(depth)
    h = hasher or get_default_hasher()
    zeros = [h.empty_leaf()]
    for _ in range(depth):
        zeros.append(h.hash(zeros[-1], zeros[-1]))
    return zeros


def build_empty_tree(depth: int, hasher: Optional[FieldHasher] = None) -> List[List[int]]:
    """Build the all-empty tree bottom-up.

    Every node of a level has the same value, so each level costs one hash;
    the arena is still materialised at full width.
    """
    zeros = empty_subtree_roots(depth, hasher)
    logger.info("Building empty tree", extra={"context": {"depth": depth}})
    return [[zeros[d]] * (1 << (depth - d)) for d in range(depth + 1)]


def cached_empty_tree(depth: int, hasher: Optional[FieldHasher] = None) -> Levels:
    """In-memory empty tree, built at most once per (depth, hasher)."""
    h = hasher or get_default_hasher()
    key = (depth, h.name)
    with _cache_lock:
        levels = _memory_cache.get(key)
        if levels is None:
            levels = tuple(tuple(level) for level in build_empty_tree(depth, h))
            _memory_cache[key] = levels
    return levels


def save_empty_tree(levels: Sequence[Sequence[int]], path: Union[str, Path]) -> Path:
    """Persist levels as JSON, level 0 first."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = [[to_decimal(v) for v in level] for level in levels]
    tmp = out.with_name(out.name + ".tmp")
    tmp.write_text(json.dumps(payload), encoding="utf-8")
    tmp.replace(out)
    logger.info(
        "Saved empty tree artifact",
        extra={"context": {"path": str(out), "depth": len(levels) - 1}},
    )
    return out


def write_empty_tree(
    depth: int,
    path: Union[str, Path],
    hasher: Optional[FieldHasher] = None,
) -> Path:
    """Build and persist the empty tree of ``depth`` in one step."""
    return save_empty_tree(build_empty_tree(depth, hasher), path)


def _parse_levels(raw: object, source: str) -> Levels:
    if not isinstance(raw, list) or len(raw) < MIN_DEPTH + 1:
        raise ArtifactInvalid("Empty tree artifact is malformed", f"{source}: top level is not a list of levels")
    depth = len(raw) - 1
    if depth > MAX_DEPTH:
        raise ArtifactInvalid("Empty tree artifact is too deep", f"{source}: depth {depth} > {MAX_DEPTH}")

    parsed: List[Tuple[int, ...]] = []
    for d, level in enumerate(raw):
        expected = 1 << (depth - d)
        if not isinstance(level, list) or len(level) != expected:
            width = len(level) if isinstance(level, list) else None
            raise ArtifactInvalid(
                "Empty tree artifact has the wrong shape",
                f"{source}: level {d} width {width}, expected {expected}",
            )
        try:
            parsed.append(tuple(to_field(v) for v in level))
        except ValueError as exc:
            raise ArtifactInvalid(
                "Empty tree artifact contains a non-field value",
                f"{source}: level {d}: {exc}",
            ) from exc
    return tuple(parsed)


def verify_empty_tree(levels: Sequence[Sequence[int]], hasher: Optional[FieldHasher] = None) -> bool:
    """Full O(2^D) check of the node invariant and the empty-leaf value."""
    h = hasher or get_default_hasher()
    depth = len(levels) - 1
    if any(v != h.empty_leaf() for v in levels[0]):
        return False
    for d in range(depth):
        below, above = levels[d], levels[d + 1]
        for j, value in enumerate(above):
            if value != h.hash(below[2 * j], below[2 * j + 1]):
                return False
    return True


def _check_uniform(levels: Levels, hasher: FieldHasher, source: str) -> None:
    zeros = empty_subtree_roots(len(levels) - 1, hasher)
    for d, level in enumerate(levels):
        for j, value in enumerate(level):
            if value != zeros[d]:
                raise ArtifactInvalid(
                    "Empty tree artifact is not the empty tree for the configured hash function",
                    f"{source}: level {d} node {j} is not the empty value under {hasher.name}",
                    level=d,
                    position=j,
                )


def load_empty_tree(
    path: Union[str, Path],
    depth: Optional[int] = None,
    hasher: Optional[FieldHasher] = None,
) -> Levels:
    """Load and validate the persisted empty tree, caching the parsed levels.

    Every level must hold nothing but the empty-subtree value for that level
    under ``hasher``; D + 1 hashes and one comparison per node. An artifact
    built with a different hash function fails on its leaf level.

    Raises:
        ArtifactMissing: If the file does not exist
        ArtifactInvalid: If the JSON is malformed, of the wrong depth, or was
            built with a different hash function, or holds a non-empty node
    """
    h = hasher or get_default_hasher()
    artifact = Path(path)
    if not artifact.is_file():
        raise ArtifactMissing(str(artifact))

    resolved = artifact.resolve()
    stat = resolved.stat()
    key = (str(resolved), stat.st_mtime_ns, stat.st_size, h.name)

    with _cache_lock:
        levels = _artifact_cache.get(key)

    if levels is None:
        try:
            raw = json.loads(resolved.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ArtifactInvalid("Empty tree artifact is not valid JSON", f"{resolved}: {exc}") from exc

        levels = _parse_levels(raw, str(resolved))
        top = len(levels) - 1
        _check_uniform(levels, h, str(resolved))
        with _cache_lock:
            for stale in [k for k in _artifact_cache if k[0] == key[0]]:
                del _artifact_cache[stale]
            _artifact_cache[key] = levels
        logger.debug("Loaded empty tree artifact", extra={"context": {"path": str(resolved), "depth": top}})

    if depth is not None and len(levels) - 1 != depth:
        raise ArtifactInvalid(
            "Empty tree artifact has the wrong depth",
            f"{resolved}: depth {len(levels) - 1}, expected {depth}",
        )
    return levels


def clear_cache() -> None:
    """Drop all cached trees (tests and long-running tools)."""
    with _cache_lock:
        _artifact_cache.clear()
        _memory_cache.clear()
