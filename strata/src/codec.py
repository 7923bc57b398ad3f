"""Bidirectional mapping between fragment paths and flat codes.

A code is a constant tag followed by the 2-digit numeric prefix of every
path segment from the corpus root to the leaf::

    data/01-script-structure/02-shebang.complete.md  ->  BCS0102
    data/01-script-structure/02-shebang/01-dual-purpose.summary.md
                                                    ->  BCS010201

The reserved index fragment of a directory (prefix ``00``) is addressed
by the directory's own code, so ``01-script-structure/00-section`` is
``BCS01``. The root header ``00-header`` is ``BCS00``.

The codec holds no state beyond its tag and depth limit. Decoding reads
directory listings to recover the descriptive names, which keeps the
tree both human-browsable and machine-addressable without a separate
lookup store.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path, PurePosixPath

from strata.src.config import StrataConfig
from strata.src.errors import FormatError, InvalidCodeError, NotFoundError
from strata.src.models import Tier

# Two digits followed by a separator or the end of the name
_PREFIX_RE = re.compile(r"^(\d{2})(?=[-.]|$)")
# NN[-slug].<tier>.md
_LEAF_RE = re.compile(r"^(\d{2})(?:-(.+?))?\.(complete|summary|abstract)\.md$")

RESERVED_PREFIX = "00"


def numeric_prefix(segment: str) -> str | None:
    """Return the 2-digit prefix of a path segment, or None.

    ``"01-script-structure"`` and ``"02.complete.md"`` yield ``"01"`` and
    ``"02"``. Unpadded (``"1-x"``), over-long (``"123-x"``) and
    letter-suffixed (``"02a-x"``) prefixes yield None.

    Args:
        segment: A directory or file name.

    Returns:
        The two prefix digits or None.
    """
    match = _PREFIX_RE.match(segment)
    return match.group(1) if match else None


def parse_leaf_name(name: str) -> tuple[str, str, Tier] | None:
    """Split a fragment file name into (prefix, slug, tier).

    Args:
        name: File name such as ``02-shebang.complete.md``.

    Returns:
        Tuple of prefix, slug (may be empty), and tier, or None if the
        name is not a tier file with a valid prefix.
    """
    match = _LEAF_RE.match(name)
    if not match:
        return None
    return match.group(1), match.group(2) or "", Tier(match.group(3))


def tier_of(name: str) -> Tier | None:
    """Return the tier encoded in a file name suffix, or None."""
    for tier in Tier.ordered():
        if name.endswith(tier.suffix):
            return tier
    return None


class PathCodec:
    """Encode fragment paths into codes and resolve codes back to paths.

    Args:
        tag: Constant code prefix.
        max_depth: Maximum number of 2-digit groups in a code.

    Example::

        codec = PathCodec("BCS")
        codec.encode(["01-script-structure", "02-shebang"])  # "BCS0102"
        codec.decode("BCS0102", Tier.COMPLETE, Path("data"))
    """

    def __init__(self, tag: str = "BCS", max_depth: int = 10) -> None:
        self._tag = tag
        self._max_depth = max_depth

    @classmethod
    def from_config(cls, config: StrataConfig) -> PathCodec:
        """Create a codec using the config's tag and depth limit."""
        return cls(config.code_tag, config.max_code_depth)

    @property
    def tag(self) -> str:
        """Constant code prefix."""
        return self._tag

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, segments: Sequence[str] | str | PurePosixPath) -> str:
        """Encode a segment path into a code.

        Args:
            segments: Segment names from the corpus root to the leaf, or
                a relative POSIX path. Tier and descriptive suffixes are
                ignored.

        Returns:
            The code, e.g. ``BCS0102``.

        Raises:
            FormatError: If a segment lacks a valid 2-digit prefix or the
                path is empty or deeper than the depth limit.
        """
        parts = _as_segments(segments)
        groups: list[str] = []
        for segment in parts:
            prefix = numeric_prefix(segment)
            if prefix is None:
                raise FormatError(
                    f"Segment '{segment}' lacks a 2-digit numeric prefix",
                    segment=segment,
                )
            groups.append(prefix)

        if len(groups) > 1 and groups[-1] == RESERVED_PREFIX:
            groups.pop()

        digits = "".join(groups)
        if not digits or len(digits) % 2:
            raise FormatError(f"Path '{'/'.join(parts)}' does not encode to an even digit count")
        if len(groups) > self._max_depth:
            raise FormatError(
                f"Path '{'/'.join(parts)}' is nested {len(groups)} levels deep "
                f"(maximum {self._max_depth})"
            )
        return f"{self._tag}{digits}"

    def numeric_path(self, segments: Sequence[str] | str | PurePosixPath, tier: Tier) -> PurePosixPath:
        """Numeric-only mirror of a fragment path, as used by the index.

        ``01-x/02-y.complete.md`` becomes ``01/02.complete.md`` and a
        section index ``01-x/00-section.complete.md`` becomes
        ``01/00.complete.md``.

        Raises:
            FormatError: If a segment lacks a valid 2-digit prefix.
        """
        parts = _as_segments(segments)
        if not parts:
            raise FormatError("Empty segment path")
        numbers: list[str] = []
        for segment in parts:
            prefix = numeric_prefix(segment)
            if prefix is None:
                raise FormatError(
                    f"Segment '{segment}' lacks a 2-digit numeric prefix",
                    segment=segment,
                )
            numbers.append(prefix)
        return PurePosixPath(*numbers[:-1], f"{numbers[-1]}{tier.suffix}")

    # ------------------------------------------------------------------
    # Code parsing
    # ------------------------------------------------------------------

    def normalize(self, code: str) -> str:
        """Return *code* with the tag, after validating it.

        Raises:
            InvalidCodeError: If the code is malformed.
        """
        return f"{self._tag}{''.join(self.split_code(code))}"

    def split_code(self, code: str) -> list[str]:
        """Split a code into its 2-digit groups.

        The tag is optional and matched case-insensitively.

        Raises:
            InvalidCodeError: If the remainder is empty, not all digits,
                of odd length, or deeper than the depth limit.
        """
        raw = code.strip()
        digits = raw[len(self._tag):] if raw.upper().startswith(self._tag.upper()) else raw
        if not digits:
            raise InvalidCodeError(code, "no digits after tag")
        if not digits.isascii() or not digits.isdigit():
            raise InvalidCodeError(code, "must contain only digits after the tag")
        if len(digits) % 2:
            raise InvalidCodeError(code, f"digit count {len(digits)} is not even")
        groups = [digits[i : i + 2] for i in range(0, len(digits), 2)]
        if len(groups) > self._max_depth:
            raise InvalidCodeError(code, f"{len(groups)} levels exceeds maximum {self._max_depth}")
        return groups

    def depth(self, code: str) -> int:
        """Nesting level of a code: 1 = section, 2 = rule, ..."""
        return len(self.split_code(code))

    def parent(self, code: str) -> str | None:
        """Code of the enclosing level, or None for a section code."""
        groups = self.split_code(code)
        if len(groups) == 1:
            return None
        return f"{self._tag}{''.join(groups[:-1])}"

    def index_candidates(self, code: str, tier: Tier) -> list[PurePosixPath]:
        """Index-relative leaf paths that may hold *code*, most specific first."""
        groups = self.split_code(code)
        return [
            PurePosixPath(*groups[:-1], f"{groups[-1]}{tier.suffix}"),
            PurePosixPath(*groups, f"{RESERVED_PREFIX}{tier.suffix}"),
        ]

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, code: str, tier: Tier, root: Path) -> Path:
        """Resolve a code to the fragment file for *tier* under *root*.

        Leading groups select directories; the final group selects the
        leaf ``NN-*.<tier>.md``. When the final group only names a
        directory, that directory's reserved ``00`` fragment is returned.

        Args:
            code: Code with or without the tag.
            tier: Tier of the wanted file.
            root: Corpus root directory.

        Returns:
            Absolute path of the fragment.

        Raises:
            InvalidCodeError: If the code is malformed.
            NotFoundError: If any level cannot be resolved.
        """
        tier = Tier.parse(tier)
        groups = self.split_code(code)
        current = Path(root)
        for group in groups[:-1]:
            child = _find_dir(current, group)
            if child is None:
                raise NotFoundError(
                    f"No directory for group '{group}' of {code} under {current}",
                    code=code,
                    tier=tier.value,
                    path=current,
                )
            current = child

        last = groups[-1]
        leaf = _find_leaf(current, last, tier)
        if leaf is not None:
            return leaf
        directory = _find_dir(current, last)
        if directory is not None:
            index_leaf = _find_leaf(directory, RESERVED_PREFIX, tier)
            if index_leaf is not None:
                return index_leaf
        raise NotFoundError(
            f"No {tier.value} fragment for {code}",
            code=code,
            tier=tier.value,
            path=current,
        )

    def exists(self, code: str, tier: Tier, root: Path) -> bool:
        """Return True when *code* resolves to a file, never raising."""
        try:
            return self.decode(code, tier, root).is_file()
        except (InvalidCodeError, NotFoundError, ValueError, OSError):
            return False


def _as_segments(segments: Sequence[str] | str | PurePosixPath) -> list[str]:
    if isinstance(segments, (str, PurePosixPath)):
        return [p for p in PurePosixPath(segments).parts if p not in ("", ".")]
    return [str(s) for s in segments]


def _find_dir(parent: Path, group: str) -> Path | None:
    try:
        entries = sorted(parent.iterdir(), key=lambda p: p.name)
    except (FileNotFoundError, NotADirectoryError):
        return None
    for entry in entries:
        if entry.is_dir() and numeric_prefix(entry.name) == group:
            return entry
    return None


def _find_leaf(parent: Path, group: str, tier: Tier) -> Path | None:
    try:
        entries = sorted(parent.iterdir(), key=lambda p: p.name)
    except (FileNotFoundError, NotADirectoryError):
        return None
    for entry in entries:
        if entry.name.endswith(tier.suffix) and numeric_prefix(entry.name) == group and entry.is_file():
            return entry
    return None
