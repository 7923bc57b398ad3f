"""Tests for Strata data models."""

from __future__ import annotations

from pathlib import Path

import pytest

from strata.src.models import Fragment, FragmentSize, Section, Severity, Tier


class TestTier:
    def test_order(self) -> None:
        assert Tier.ordered() == [Tier.COMPLETE, Tier.SUMMARY, Tier.ABSTRACT]

    @pytest.mark.parametrize("raw", ["summary", "SUMMARY", " Summary "])
    def test_parse(self, raw: str) -> None:
        assert Tier.parse(raw) is Tier.SUMMARY

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError, match="expected one of"):
            Tier.parse("verbose")

    def test_derived(self) -> None:
        assert not Tier.COMPLETE.is_derived
        assert Tier.SUMMARY.is_derived
        assert Tier.ABSTRACT.is_derived

    def test_suffix(self) -> None:
        assert Tier.ABSTRACT.suffix == ".abstract.md"


class TestFragment:
    def _fragment(self) -> Fragment:
        return Fragment(
            code="BCS010201",
            tier=Tier.SUMMARY,
            path=Path("/corpus/01-a/02-b/01-dual-purpose.summary.md"),
            relative_path="01-a/02-b/01-dual-purpose.summary.md",
            segments=["01-a", "02-b", "01-dual-purpose.summary.md"],
        )

    def test_derived_fields(self) -> None:
        fragment = self._fragment()
        assert fragment.name == "01-dual-purpose.summary.md"
        assert fragment.slug == "dual-purpose"
        assert fragment.depth == 3

    def test_round_trip(self) -> None:
        fragment = self._fragment()
        assert Fragment.from_dict(fragment.to_dict()) == fragment


class TestRecords:
    def test_size_to_dict(self) -> None:
        assert FragmentSize(bytes=10, lines=2).to_dict() == {"bytes": 10, "lines": 2}

    def test_section_to_dict_uses_directory_name(self) -> None:
        section = Section(number="01", code="BCS01", directory=Path("/c/01-script-structure"), title="Structure")
        assert section.to_dict()["directory"] == "01-script-structure"

    def test_severity_values(self) -> None:
        assert Severity("ERROR") is Severity.ERROR
