"""Strata data models for the fragment corpus.

Defines the detail tiers, fragments, size records, and search hits
shared by the codec, store, assembler, index builder, and validator.
All models are plain dataclasses with dictionary serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Tier(str, Enum):
    """Detail level of a fragment, ordered most to least detailed.

    Attributes:
        COMPLETE: Canonical, author-edited text.
        SUMMARY: Derived, medium-detail text.
        ABSTRACT: Derived, minimal text.
    """

    COMPLETE = "complete"
    SUMMARY = "summary"
    ABSTRACT = "abstract"

    @classmethod
    def ordered(cls) -> list[Tier]:
        """Return all tiers from most to least detailed."""
        return [cls.COMPLETE, cls.SUMMARY, cls.ABSTRACT]

    @classmethod
    def parse(cls, value: str | Tier) -> Tier:
        """Coerce a tier name (case-insensitive) into a Tier.

        Args:
            value: Tier instance or tier name.

        Returns:
            The matching Tier.

        Raises:
            ValueError: If the name is not a known tier.
        """
        if isinstance(value, Tier):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            names = ", ".join(t.value for t in cls.ordered())
            raise ValueError(f"Invalid tier '{value}' (expected one of: {names})") from None

    @property
    def is_derived(self) -> bool:
        """Return True for tiers produced outside the author workflow."""
        return self is not Tier.COMPLETE

    @property
    def suffix(self) -> str:
        """File suffix for this tier, e.g. ``.complete.md``."""
        return f".{self.value}.md"


class Severity(str, Enum):
    """Severity of a validation issue."""

    ERROR = "ERROR"
    WARNING = "WARNING"


@dataclass
class Fragment:
    """A single leaf content unit at one tier.

    Attributes:
        code: Flat code including the tag, e.g. ``BCS0102``.
        tier: Detail tier of this file.
        path: Absolute path of the fragment file.
        relative_path: POSIX path relative to the corpus root.
        segments: Path segments from the corpus root to the leaf.
    """

    code: str
    tier: Tier
    path: Path
    relative_path: str
    segments: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Leaf file name."""
        return self.path.name

    @property
    def slug(self) -> str:
        """Descriptive part of the leaf name, e.g. ``shebang``."""
        stem = self.name[: -len(self.tier.suffix)] if self.name.endswith(self.tier.suffix) else self.name
        _, _, slug = stem.partition("-")
        return slug

    @property
    def depth(self) -> int:
        """Nesting level: 1 = section, 2 = rule, 3 = subrule, ..."""
        return len(self.segments)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "code": self.code,
            "tier": self.tier.value,
            "path": str(self.path),
            "relative_path": self.relative_path,
            "segments": list(self.segments),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fragment:
        """Deserialize from dictionary."""
        return cls(
            code=data["code"],
            tier=Tier(data["tier"]),
            path=Path(data["path"]),
            relative_path=data["relative_path"],
            segments=list(data.get("segments", [])),
        )


@dataclass(frozen=True)
class FragmentSize:
    """Byte and line counts for one fragment."""

    bytes: int
    lines: int

    def to_dict(self) -> dict[str, int]:
        """Serialize to dictionary."""
        return {"bytes": self.bytes, "lines": self.lines}


@dataclass(frozen=True)
class Section:
    """A top-level section of the corpus.

    Attributes:
        number: Two-digit section number, e.g. ``"01"``.
        code: Section-only code, e.g. ``BCS01``.
        directory: Descriptively named section directory.
        title: First heading of the section index fragment.
    """

    number: str
    code: str
    directory: Path
    title: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize to dictionary."""
        return {
            "number": self.number,
            "code": self.code,
            "directory": self.directory.name,
            "title": self.title,
        }


@dataclass(frozen=True)
class SearchHit:
    """One matching line from a tier search."""

    code: str
    line_number: int
    line: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"code": self.code, "line_number": self.line_number, "line": self.line}
