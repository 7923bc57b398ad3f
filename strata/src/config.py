"""Explicit configuration for Strata components.

A single ``StrataConfig`` is built once (from a project directory, a
dict, or a JSON file) and passed into every component. Nothing in the
core reads process-wide state.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from strata.src.models import Tier

_TAG_RE = re.compile(r"^[A-Za-z]+$")

DEFAULT_SIZE_LIMITS: dict[Tier, int | None] = {
    Tier.COMPLETE: None,
    Tier.SUMMARY: 10_000,
    Tier.ABSTRACT: 1_500,
}


def _default_size_limits() -> dict[Tier, int | None]:
    return dict(DEFAULT_SIZE_LIMITS)


@dataclass
class StrataConfig:
    """Locations, limits, and modes for one corpus.

    Attributes:
        corpus_root: Directory holding the fragment tree.
        index_root: Location of the numeric index tree (a symlink to the
            current generation once built).
        output_dir: Directory receiving canonical documents.
        canonical_name: Stem of canonical files,
            ``<canonical_name>.<tier>.md``.
        code_tag: Constant prefix of every code.
        max_code_depth: Maximum number of 2-digit groups in a code.
        size_limits: Byte budget per tier; None disables the check.
        strict: Treat validation warnings as failures.
        fail_fast: Stop validation after the first failing check.
        expected_sections: Section numbers the corpus must contain.
        default_tier: Tier used when a caller does not name one.
        workers: Thread pool size for per-fragment reads.
        ignored_names: File names never treated as fragments.
        ignored_dirs: Directory names skipped during traversal.
    """

    corpus_root: Path
    index_root: Path
    output_dir: Path
    canonical_name: str = "BASH-CODING-STANDARD"
    code_tag: str = "BCS"
    max_code_depth: int = 10
    size_limits: dict[Tier, int | None] = field(default_factory=_default_size_limits)
    strict: bool = False
    fail_fast: bool = False
    expected_sections: list[str] | None = None
    default_tier: Tier = Tier.ABSTRACT
    workers: int = 4
    ignored_names: tuple[str, ...] = ("README.md",)
    ignored_dirs: tuple[str, ...] = ("templates",)

    def __post_init__(self) -> None:
        self.corpus_root = Path(self.corpus_root)
        self.index_root = Path(self.index_root)
        self.output_dir = Path(self.output_dir)
        self.default_tier = Tier.parse(self.default_tier)
        self.size_limits = {Tier.parse(k): v for k, v in self.size_limits.items()}
        for tier in Tier.ordered():
            self.size_limits.setdefault(tier, None)
        if self.expected_sections is not None:
            self.expected_sections = [str(s).zfill(2) for s in self.expected_sections]

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_project(cls, project_dir: str | Path, **overrides: Any) -> StrataConfig:
        """Build the conventional layout rooted at *project_dir*.

        ``data/`` holds the corpus, ``BCS/`` the index, and canonical
        documents are written to the project directory itself.

        Args:
            project_dir: Project root directory.
            **overrides: Field values replacing the defaults.

        Returns:
            A validated StrataConfig.
        """
        root = Path(project_dir).resolve()
        config = cls(
            corpus_root=root / "data",
            index_root=root / "BCS",
            output_dir=root,
        )
        if overrides:
            config = replace(config, **overrides)
        config.validate()
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: str | Path | None = None) -> StrataConfig:
        """Deserialize from dictionary.

        Relative paths are resolved against *base_dir* when given.

        Args:
            data: Mapping with StrataConfig field names.
            base_dir: Directory that relative paths are relative to.

        Returns:
            A validated StrataConfig.
        """
        base = Path(base_dir) if base_dir is not None else None

        def _path(key: str) -> Path:
            value = Path(data[key])
            if base is not None and not value.is_absolute():
                value = base / value
            return value

        limits = data.get("size_limits", {})
        config = cls(
            corpus_root=_path("corpus_root"),
            index_root=_path("index_root"),
            output_dir=_path("output_dir"),
            canonical_name=data.get("canonical_name", "BASH-CODING-STANDARD"),
            code_tag=data.get("code_tag", "BCS"),
            max_code_depth=int(data.get("max_code_depth", 10)),
            size_limits={**_default_size_limits(), **{Tier.parse(k): v for k, v in limits.items()}},
            strict=bool(data.get("strict", False)),
            fail_fast=bool(data.get("fail_fast", False)),
            expected_sections=data.get("expected_sections"),
            default_tier=Tier.parse(data.get("default_tier", Tier.ABSTRACT.value)),
            workers=int(data.get("workers", 4)),
            ignored_names=tuple(data.get("ignored_names", ("README.md",))),
            ignored_dirs=tuple(data.get("ignored_dirs", ("templates",))),
        )
        config.validate()
        return config

    @classmethod
    def from_file(cls, path: str | Path) -> StrataConfig:
        """Load a JSON config file; relative paths resolve next to it."""
        config_path = Path(path)
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return cls.from_dict(data, base_dir=config_path.resolve().parent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "corpus_root": str(self.corpus_root),
            "index_root": str(self.index_root),
            "output_dir": str(self.output_dir),
            "canonical_name": self.canonical_name,
            "code_tag": self.code_tag,
            "max_code_depth": self.max_code_depth,
            "size_limits": {t.value: v for t, v in self.size_limits.items()},
            "strict": self.strict,
            "fail_fast": self.fail_fast,
            "expected_sections": self.expected_sections,
            "default_tier": self.default_tier.value,
            "workers": self.workers,
            "ignored_names": list(self.ignored_names),
            "ignored_dirs": list(self.ignored_dirs),
        }

    # ------------------------------------------------------------------
    # Validation and derived values
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check field values.

        Raises:
            ValueError: On an unusable tag, depth, worker count, or limit.
        """
        if not _TAG_RE.match(self.code_tag):
            raise ValueError(f"code_tag must be alphabetic, got '{self.code_tag}'")
        if self.max_code_depth < 1:
            raise ValueError("max_code_depth must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        for tier, limit in self.size_limits.items():
            if limit is not None and limit <= 0:
                raise ValueError(f"size limit for {tier.value} must be positive")
        if self.expected_sections is not None:
            for number in self.expected_sections:
                if not (len(number) == 2 and number.isdigit()):
                    raise ValueError(f"expected section '{number}' is not a 2-digit number")

    def canonical_path(self, tier: Tier) -> Path:
        """Output path of the canonical document for *tier*."""
        return self.output_dir / f"{self.canonical_name}{tier.suffix}"

    @property
    def default_link_path(self) -> Path:
        """Path of the tier-neutral link to the default canonical document."""
        return self.output_dir / f"{self.canonical_name}.md"

    def size_limit(self, tier: Tier) -> int | None:
        """Byte budget for *tier*, or None when unlimited."""
        return self.size_limits.get(tier)
