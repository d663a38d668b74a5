"""
Mori Configuration Module - Centralized configuration management.

Configuration Hierarchy (highest to lowest priority):
1. Environment variables (MORI_<SECTION>_<FIELD>; MORI_LOG_* for logging)
2. Config file (TOML or JSON)
3. Default values

Example:
    config = MoriConfig.load("mori.toml")
    tree = build_tree(config.tree)
    prover = build_proof_system(config.prover)

    # Override with environment
    # MORI_TREE_DEPTH=16
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from mori.logging import LoggingOptions
from mori.shielded.hashing import available_hashers, get_hasher
from mori.shielded.merkle_tree import SparseMerkleTree
from mori.shielded.precompute import MAX_DEPTH, MIN_DEPTH
from mori.shielded.proof_system import PROVER_TIMEOUT_SECONDS, CommandProofSystem, ProofSystem, StubProofSystem

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Short env section names
_SECTION_ALIASES = {"log": "logging"}


# =============================================================================
# Configuration Sections
# =============================================================================

@dataclass
class TreeConfig:
    """Merkle tree configuration."""
    depth: int = 20
    artifact_path: Optional[str] = None
    hasher: str = "sha256-bn254"

    def __post_init__(self):
        if not MIN_DEPTH <= self.depth <= MAX_DEPTH:
            raise ValueError(f"depth must be between {MIN_DEPTH} and {MAX_DEPTH}")
        if self.hasher not in available_hashers():
            raise ValueError(f"Unknown hasher: {self.hasher}")


@dataclass
class ProverConfig:
    """Proof system configuration."""
    kind: str = "stub"  # "stub" or "command"
    prover_command: Optional[str] = None
    verifier_command: Optional[str] = None
    circuits_dir: str = "circuits"
    work_dir: Optional[str] = None
    timeout_seconds: int = PROVER_TIMEOUT_SECONDS
    stub_key: Optional[str] = None  # share across processes; random per instance when unset

    def __post_init__(self):
        if self.kind not in ("stub", "command"):
            raise ValueError(f"Invalid prover kind: {self.kind}")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.kind == "command" and not (self.prover_command and self.verifier_command):
            raise ValueError("command prover needs prover_command and verifier_command")

    def __repr__(self) -> str:
        key = "set" if self.stub_key else None
        return f"ProverConfig(kind={self.kind!r}, circuits_dir={self.circuits_dir!r}, stub_key={key})"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"  # "json" or "text"
    file: Optional[str] = None
    redact: bool = True
    max_size_mb: int = 10
    backup_count: int = 3

    def __post_init__(self):
        self.level = self.level.upper()

    def to_options(self) -> LoggingOptions:
        return LoggingOptions(
            level=self.level,
            format=self.format,
            file=self.file,
            redact=self.redact,
            max_bytes=self.max_size_mb * 1024 * 1024,
            backup_count=self.backup_count,
        )


_SECTIONS = {
    "tree": TreeConfig,
    "prover": ProverConfig,
    "logging": LoggingConfig,
}


# =============================================================================
# Main Configuration
# =============================================================================

@dataclass
class MoriConfig:
    """Main configuration combining all sections."""
    tree: TreeConfig = field(default_factory=TreeConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "MORI",
    ) -> "MoriConfig":
        """
        Load configuration with hierarchy: env vars > config file > defaults.

        Args:
            config_file: Path to config file (TOML or JSON)
            env_prefix: Prefix for environment variables

        Returns:
            Loaded and validated configuration

        Raises:
            ValueError: If a value fails validation
        """
        config_dict: Dict[str, Any] = {}
        if config_file:
            config_dict = cls._load_file(Path(config_file))
        config_dict = cls._apply_env_overrides(config_dict, env_prefix)
        config = cls._from_dict(config_dict)
        config.validate()
        return config

    @classmethod
    def _load_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return {}

        content = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            parsed = json.loads(content)
        elif path.suffix == ".toml":
            import tomllib
            parsed = tomllib.loads(content)
        else:
            logger.warning("Unknown config file format: %s", path.suffix)
            return {}

        if not isinstance(parsed, dict):
            raise ValueError(f"Config file {path} must contain a mapping at top level")
        return parsed

    @classmethod
    def _apply_env_overrides(cls, config: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        for key, value in os.environ.items():
            if not key.startswith(f"{prefix}_"):
                continue

            # MORI_TREE_ARTIFACT_PATH -> tree.artifact_path
            parts = key[len(prefix) + 1:].lower().split("_")
            if len(parts) < 2:
                continue

            section = _SECTION_ALIASES.get(parts[0], parts[0])
            field_name = "_".join(parts[1:])
            section_cls = _SECTIONS.get(section)
            if section_cls is None:
                continue
            field_types = {f.name: str(f.type) for f in fields(section_cls)}
            if field_name not in field_types:
                logger.warning("Ignoring unknown config variable %s", key)
                continue

            config.setdefault(section, {})[field_name] = cls._parse_env_value(value, field_types[field_name])
        return config

    @staticmethod
    def _parse_env_value(value: str, type_name: str) -> Any:
        """Parse an environment variable according to the field's annotation."""
        if "bool" in type_name:
            return value.strip().lower() in ("true", "yes", "1", "on")
        if "int" in type_name:
            return int(value)
        if "float" in type_name:
            return float(value)
        return value

    @classmethod
    def _from_dict(cls, config_dict: Dict[str, Any]) -> "MoriConfig":
        """Build config object from dictionary."""
        return cls(**{name: section_cls(**config_dict.get(name, {})) for name, section_cls in _SECTIONS.items()})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    def validate(self) -> None:
        """Cross-field validation; per-section checks run in ``__post_init__``."""
        if self.logging.level not in _LOG_LEVELS:
            raise ValueError(f"Invalid logging level: {self.logging.level}")
        if self.logging.format not in ("json", "text"):
            raise ValueError(f"Invalid logging format: {self.logging.format}")
        if self.tree.artifact_path and not Path(self.tree.artifact_path).suffix == ".json":
            raise ValueError("tree.artifact_path must point to a .json file")


# =============================================================================
# Factories
# =============================================================================

def build_tree(config: TreeConfig) -> SparseMerkleTree:
    """Fresh tree from the configured artifact, or an in-memory empty tree.

    Raises:
        ArtifactMissing: If ``artifact_path`` is set and the file is absent
    """
    hasher = get_hasher(config.hasher)
    if config.artifact_path:
        return SparseMerkleTree.from_artifact(config.artifact_path, hasher=hasher, depth=config.depth)
    return SparseMerkleTree.empty(config.depth, hasher)


def build_proof_system(config: ProverConfig, hasher_name: str = "sha256-bn254") -> ProofSystem:
    hasher = get_hasher(hasher_name)
    if config.kind == "command":
        return CommandProofSystem(
            config.prover_command or "",
            config.verifier_command or "",
            circuits_dir=config.circuits_dir,
            work_dir=config.work_dir,
            timeout_seconds=config.timeout_seconds,
            hasher=hasher,
        )
    key = config.stub_key.encode("utf-8") if config.stub_key else None
    return StubProofSystem(hasher=hasher, key=key)
