"""Tests for configuration loading and the factories built on it."""

from __future__ import annotations

import json

import pytest

from mori.config import LoggingConfig, MoriConfig, ProverConfig, TreeConfig, build_proof_system, build_tree
from mori.shielded.errors import ArtifactMissing
from mori.shielded.precompute import write_empty_tree
from mori.shielded.proof_system import CommandProofSystem, StubProofSystem


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("MORI_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self) -> None:
        config = MoriConfig.load()
        assert config.tree.depth == 20
        assert config.tree.artifact_path is None
        assert config.prover.kind == "stub"
        assert config.logging.level == "INFO"

    def test_to_dict_has_every_section(self) -> None:
        assert set(MoriConfig().to_dict()) == {"tree", "prover", "logging"}


class TestFiles:
    def test_json_file(self, tmp_path) -> None:
        path = tmp_path / "mori.json"
        path.write_text(json.dumps({"tree": {"depth": 8}, "logging": {"format": "json"}}))
        config = MoriConfig.load(path)
        assert config.tree.depth == 8
        assert config.logging.format == "json"

    def test_toml_file(self, tmp_path) -> None:
        path = tmp_path / "mori.toml"
        path.write_text('[tree]\ndepth = 10\nartifact_path = "empty.json"\n\n[prover]\nstub_key = "k"\n')
        config = MoriConfig.load(path)
        assert config.tree.depth == 10
        assert config.tree.artifact_path == "empty.json"
        assert config.prover.stub_key == "k"

    def test_missing_file_falls_back_to_defaults(self, tmp_path) -> None:
        assert MoriConfig.load(tmp_path / "absent.toml") == MoriConfig()

    def test_save_then_load(self, tmp_path) -> None:
        config = MoriConfig(tree=TreeConfig(depth=6))
        path = tmp_path / "out" / "mori.json"
        config.save(path)
        assert MoriConfig.load(path) == config


class TestEnvironment:
    def test_env_overrides_file(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "mori.json"
        path.write_text(json.dumps({"tree": {"depth": 8}}))
        monkeypatch.setenv("MORI_TREE_DEPTH", "1")
        monkeypatch.setenv("MORI_TREE_ARTIFACT_PATH", "tree.json")
        config = MoriConfig.load(path)
        assert config.tree.depth == 1
        assert config.tree.artifact_path == "tree.json"

    def test_log_alias_and_bool_parsing(self, monkeypatch) -> None:
        monkeypatch.setenv("MORI_LOG_LEVEL", "debug")
        monkeypatch.setenv("MORI_LOG_REDACT", "0")
        config = MoriConfig.load()
        assert config.logging.level == "DEBUG"
        assert config.logging.redact is False

    def test_string_fields_stay_strings(self, monkeypatch) -> None:
        monkeypatch.setenv("MORI_PROVER_STUB_KEY", "0123")
        assert MoriConfig.load().prover.stub_key == "0123"

    def test_unknown_variables_are_ignored(self, monkeypatch) -> None:
        monkeypatch.setenv("MORI_TREE_COLOUR", "blue")
        monkeypatch.setenv("MORI_NOPE_FIELD", "x")
        assert MoriConfig.load() == MoriConfig()


class TestValidation:
    @pytest.mark.parametrize("depth", [0, 27])
    def test_depth_bounds(self, depth) -> None:
        with pytest.raises(ValueError):
            TreeConfig(depth=depth)

    def test_unknown_hasher(self) -> None:
        with pytest.raises(ValueError):
            TreeConfig(hasher="md5")

    def test_command_prover_needs_commands(self) -> None:
        with pytest.raises(ValueError):
            ProverConfig(kind="command")

    def test_bad_prover_kind(self) -> None:
        with pytest.raises(ValueError):
            ProverConfig(kind="magic")

    def test_bad_logging_level(self) -> None:
        with pytest.raises(ValueError):
            MoriConfig(logging=LoggingConfig(level="LOUD")).validate()

    def test_stub_key_not_in_repr(self) -> None:
        assert "hunter2" not in repr(ProverConfig(stub_key="hunter2"))


class TestFactories:
    def test_build_tree_in_memory(self) -> None:
        assert build_tree(TreeConfig(depth=3)).capacity == 8

    def test_build_tree_from_artifact(self, tmp_path) -> None:
        artifact = write_empty_tree(3, tmp_path / "tree.json")
        tree = build_tree(TreeConfig(depth=3, artifact_path=str(artifact)))
        assert tree.root() == build_tree(TreeConfig(depth=3)).root()

    def test_build_tree_missing_artifact(self, tmp_path) -> None:
        with pytest.raises(ArtifactMissing):
            build_tree(TreeConfig(depth=3, artifact_path=str(tmp_path / "absent.json")))

    def test_build_stub_prover(self) -> None:
        assert isinstance(build_proof_system(ProverConfig(stub_key="k")), StubProofSystem)

    def test_build_command_prover(self) -> None:
        system = build_proof_system(
            ProverConfig(kind="command", prover_command="prove {input}", verifier_command="verify {proof}", timeout_seconds=5)
        )
        assert isinstance(system, CommandProofSystem)
        assert system.timeout_seconds == 5
