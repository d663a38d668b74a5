"""Command line tools for the shielded ledger (empty-tree artifact, roots, paths)."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from mori.config import MoriConfig
from mori.logging import configure_logging
from mori.shielded.errors import ShieldedError
from mori.shielded.field import to_decimal
from mori.shielded.hashing import get_hasher
from mori.shielded.merkle_tree import SparseMerkleTree
from mori.shielded.precompute import build_empty_tree, load_empty_tree, save_empty_tree, verify_empty_tree

SUCCESS = "✅"
STEP = "🚀"
ERROR = "❌"


def _print_header(title: str) -> None:
    print(f"{STEP} {title}")


def _load_config(args: argparse.Namespace) -> MoriConfig:
    config = MoriConfig.load(args.config)
    configure_logging(config.logging.to_options())
    return config


def _cmd_precompute(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        depth = args.depth if args.depth is not None else config.tree.depth
        out_path = Path(args.out or config.tree.artifact_path or f"empty_tree_{depth}.json")
        hasher = get_hasher(config.tree.hasher)

        _print_header(f"Building empty tree of depth {depth}")
        levels = build_empty_tree(depth, hasher)
        if args.verify and not verify_empty_tree(levels, hasher):
            print(f"{ERROR} Built tree failed verification")
            return 2
        save_empty_tree(levels, out_path)
        print(f"{SUCCESS} Wrote {out_path} (root {to_decimal(levels[depth][0])})")
        return 0
    except (ShieldedError, ValueError, OSError) as exc:
        print(f"{ERROR} Precompute failed: {exc}")
        return 1


def _cmd_root(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        levels = load_empty_tree(args.artifact, hasher=get_hasher(config.tree.hasher))
        print(to_decimal(levels[-1][0]))
        return 0
    except (ShieldedError, ValueError, OSError) as exc:
        print(f"{ERROR} Could not read root: {exc}")
        return 1


def _cmd_path(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        tree = SparseMerkleTree.from_artifact(args.artifact, hasher=get_hasher(config.tree.hasher))
        path = tree.path(args.index)
        print(json.dumps({"root": to_decimal(tree.root()), "leafIndex": args.index, **path.to_dict()}, indent=2))
        return 0
    except (ShieldedError, ValueError, OSError) as exc:
        print(f"{ERROR} Could not compute path: {exc}")
        return 1


def _cmd_config(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except (ValueError, OSError) as exc:
        print(f"{ERROR} Invalid configuration: {exc}")
        return 1
    data = config.to_dict()
    if data["prover"].get("stub_key"):
        data["prover"]["stub_key"] = "[REDACTED]"
    print(json.dumps(data, indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mori shielded ledger CLI",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", help="Path to a TOML or JSON config file")
    sub = parser.add_subparsers(dest="command", required=True)

    p_precompute = sub.add_parser("precompute", help="Build and save the empty-tree artifact")
    p_precompute.add_argument("--depth", type=int, help="Tree depth (defaults to tree.depth)")
    p_precompute.add_argument("--out", help="Output JSON path (defaults to tree.artifact_path)")
    p_precompute.add_argument("--verify", action="store_true", help="Re-check every node before saving")
    p_precompute.set_defaults(func=_cmd_precompute)

    p_root = sub.add_parser("root", help="Print the root of an empty-tree artifact")
    p_root.add_argument("--artifact", required=True, help="Path to the artifact JSON")
    p_root.set_defaults(func=_cmd_root)

    p_path = sub.add_parser("path", help="Print the authentication path of a leaf")
    p_path.add_argument("--artifact", required=True, help="Path to the artifact JSON")
    p_path.add_argument("--index", type=int, required=True, help="Leaf index")
    p_path.set_defaults(func=_cmd_path)

    p_config = sub.add_parser("config", help="Print the effective configuration")
    p_config.set_defaults(func=_cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
