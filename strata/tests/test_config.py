"""Tests for StrataConfig."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from strata.src.codec import PathCodec
from strata.src.config import StrataConfig
from strata.src.models import Tier


class TestFromProject:
    """Conventional project layout."""

    def test_layout(self, tmp_path: Path) -> None:
        config = StrataConfig.from_project(tmp_path)
        root = tmp_path.resolve()
        assert config.corpus_root == root / "data"
        assert config.index_root == root / "BCS"
        assert config.output_dir == root

    def test_defaults(self, tmp_path: Path) -> None:
        config = StrataConfig.from_project(tmp_path)
        assert config.code_tag == "BCS"
        assert config.max_code_depth == 10
        assert config.default_tier is Tier.ABSTRACT
        assert config.size_limit(Tier.COMPLETE) is None
        assert config.size_limit(Tier.SUMMARY) == 10_000
        assert config.size_limit(Tier.ABSTRACT) == 1_500

    def test_overrides(self, tmp_path: Path) -> None:
        config = StrataConfig.from_project(tmp_path, code_tag="STD", workers=1)
        assert config.code_tag == "STD"
        assert PathCodec.from_config(config).tag == "STD"

    def test_invalid_override(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            StrataConfig.from_project(tmp_path, workers=0)

    def test_canonical_paths(self, tmp_path: Path) -> None:
        config = StrataConfig.from_project(tmp_path)
        assert config.canonical_path(Tier.SUMMARY).name == "BASH-CODING-STANDARD.summary.md"
        assert config.default_link_path.name == "BASH-CODING-STANDARD.md"


class TestValidate:
    """Field checks."""

    @pytest.mark.parametrize(
        "changes",
        [
            {"code_tag": "B1"},
            {"code_tag": ""},
            {"max_code_depth": 0},
            {"workers": 0},
            {"size_limits": {Tier.SUMMARY: -1}},
            {"expected_sections": ["1a"]},
        ],
    )
    def test_rejects(self, config: StrataConfig, changes: dict) -> None:
        with pytest.raises(ValueError):
            dataclasses.replace(config, **changes).validate()

    def test_expected_sections_are_padded(self, config: StrataConfig) -> None:
        updated = dataclasses.replace(config, expected_sections=[1, "2"])
        assert updated.expected_sections == ["01", "02"]

    def test_size_limits_accept_tier_names(self, config: StrataConfig) -> None:
        updated = dataclasses.replace(config, size_limits={"abstract": 500})
        assert updated.size_limit(Tier.ABSTRACT) == 500
        assert updated.size_limit(Tier.SUMMARY) is None


class TestSerialization:
    """Dict and file round trips."""

    def test_dict_round_trip(self, config: StrataConfig) -> None:
        restored = StrataConfig.from_dict(config.to_dict())
        assert restored == config

    def test_from_dict_relative_paths(self, tmp_path: Path) -> None:
        data = {"corpus_root": "data", "index_root": "BCS", "output_dir": "out"}
        config = StrataConfig.from_dict(data, base_dir=tmp_path)
        assert config.corpus_root == tmp_path / "data"
        assert config.output_dir == tmp_path / "out"

    def test_from_dict_missing_key(self) -> None:
        with pytest.raises(KeyError):
            StrataConfig.from_dict({"corpus_root": "data"})

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "strata.json"
        path.write_text(
            json.dumps(
                {
                    "corpus_root": "data",
                    "index_root": "BCS",
                    "output_dir": ".",
                    "size_limits": {"summary": 2000},
                    "strict": True,
                    "default_tier": "Complete",
                }
            )
        )
        config = StrataConfig.from_file(path)
        assert config.corpus_root == tmp_path.resolve() / "data"
        assert config.size_limit(Tier.SUMMARY) == 2000
        assert config.size_limit(Tier.ABSTRACT) == 1_500
        assert config.strict is True
        assert config.default_tier is Tier.COMPLETE
