"""Shared fixtures for Strata tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from strata.src.codec import PathCodec
from strata.src.config import StrataConfig
from strata.src.models import Tier
from strata.src.store import TierStore

# (path without tier suffix, title) in canonical order
SAMPLE_FRAGMENTS: list[tuple[str, str]] = [
    ("00-header", "Bash Coding Standard"),
    ("01-script-structure/00-section", "Script Structure"),
    ("01-script-structure/01-layout", "Layout"),
    ("01-script-structure/02-shebang", "Shebang"),
    ("01-script-structure/02-shebang/01-dual-purpose", "Dual Purpose Scripts"),
    ("02-variables/00-section", "Variables"),
    ("02-variables/01-declarations", "Declarations"),
]

SAMPLE_CODES = ["BCS00", "BCS01", "BCS0101", "BCS0102", "BCS010201", "BCS02", "BCS0201"]


def fragment_text(title: str, tier: Tier) -> str:
    """Deterministic fragment body used by the sample corpus."""
    return f"# {title}\n\n{tier.value.capitalize()} guidance for {title.lower()}.\n"


def write_fragment(
    corpus: Path,
    stem: str,
    title: str,
    tiers: list[Tier] | None = None,
) -> list[Path]:
    """Write one fragment in the given tiers (all tiers by default)."""
    written = []
    for tier in tiers or Tier.ordered():
        path = corpus / f"{stem}{tier.suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(fragment_text(title, tier), encoding="utf-8")
        written.append(path)
    return written


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project with a small, valid three-tier corpus under data/."""
    corpus = tmp_path / "data"
    for stem, title in SAMPLE_FRAGMENTS:
        write_fragment(corpus, stem, title)
    (corpus / "README.md").write_text("# About this corpus\n", encoding="utf-8")
    templates = corpus / "templates"
    templates.mkdir()
    (templates / "rule.complete.md").write_text("# Template\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def config(project_dir: Path) -> StrataConfig:
    """StrataConfig using the conventional layout of project_dir."""
    return StrataConfig.from_project(project_dir)


@pytest.fixture
def corpus(config: StrataConfig) -> Path:
    """Corpus root of the sample project."""
    return config.corpus_root


@pytest.fixture
def store(config: StrataConfig) -> TierStore:
    """TierStore over the sample corpus."""
    return TierStore(config)


@pytest.fixture
def codec() -> PathCodec:
    """Codec with the default tag."""
    return PathCodec("BCS")
