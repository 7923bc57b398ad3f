"""Structural integrity checks for a fragment corpus.

Runs a fixed battery of checks over the corpus (and, when given, the
index tree) and reports every violation as data. Only a missing or
unreadable corpus root raises; everything else becomes a
``ValidationIssue`` in the ``ValidationReport``.
"""

from __future__ import annotations

import logging
import os
import re
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from strata.src.codec import numeric_prefix, tier_of
from strata.src.errors import (
    DuplicateCodeError,
    FormatError,
    InvalidCodeError,
    NotFoundError,
    SizeLimitError,
    StrataError,
    TierMismatchError,
)
from strata.src.index import IndexBuilder
from strata.src.models import Severity, Tier
from strata.src.store import TierStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_VALID_NAME_RE = re.compile(r"^[0-9]{2}-[a-z0-9-]+\.(complete|abstract|summary)\.md$")
_VALID_DIR_RE = re.compile(r"^[0-9]{2}-[a-z0-9-]+$")
_RESERVED_NAME_RE = re.compile(r"^00-(header|section)\.")
_UNPADDED_RE = re.compile(r"^[0-9]-")
_ALPHA_SUFFIX_RE = re.compile(r"^[0-9]{2}[a-z]-")

HEADER_STEM = "00-header"
SECTION_STEM = "00-section"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class ValidationIssue:
    """A single violation found by a check.

    Attributes:
        location: Corpus-relative path (or index link) concerned.
        severity: ERROR fails validation; WARNING fails only in strict mode.
        message: Human-readable description.
        check: Identifier of the check that produced the issue.
        error_type: Name of the matching exception class.
    """

    location: str
    severity: Severity
    message: str
    check: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "location": self.location,
            "severity": self.severity.value,
            "message": self.message,
            "check": self.check,
            "error_type": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationIssue:
        """Deserialize from dictionary."""
        return cls(
            location=data["location"],
            severity=Severity(data["severity"]),
            message=data["message"],
            check=data["check"],
            error_type=data["error_type"],
        )


@dataclass
class ValidationReport:
    """Outcome of one validation run.

    Attributes:
        corpus_root: Root that was validated.
        issues: Every violation, in check order.
        checks_run: Identifiers of the checks that ran, in order.
        stopped_early: True when fail-fast mode skipped later checks.
        checked_at: When the run finished.
    """

    corpus_root: Path
    issues: list[ValidationIssue] = field(default_factory=list)
    checks_run: list[str] = field(default_factory=list)
    stopped_early: bool = False
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_errors(self) -> bool:
        """Return True if any issue has ERROR severity."""
        return any(i.severity == Severity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        """Return True if any issue has WARNING severity."""
        return any(i.severity == Severity.WARNING for i in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.WARNING)

    @property
    def issues_by_severity(self) -> dict[Severity, list[ValidationIssue]]:
        """Group issues by their severity.

        Returns:
            Dictionary mapping severity to list of issues.
        """
        grouped: dict[Severity, list[ValidationIssue]] = defaultdict(list)
        for issue in self.issues:
            grouped[issue.severity].append(issue)
        return dict(grouped)

    @property
    def issues_by_check(self) -> dict[str, list[ValidationIssue]]:
        """Group issues by the check that produced them."""
        grouped: dict[str, list[ValidationIssue]] = defaultdict(list)
        for issue in self.issues:
            grouped[issue.check].append(issue)
        return dict(grouped)

    def passed(self, strict: bool = False) -> bool:
        """Return True when there are no errors (and no warnings if strict)."""
        return not (self.has_errors or (strict and self.has_warnings))

    def exit_code(self, strict: bool = False) -> int:
        """Process exit code: 0 clean, 1 on violations."""
        return 0 if self.passed(strict) else 1

    def check_status(self, check: str) -> str:
        """``pass``, ``warn``, or ``fail`` for one check that ran."""
        severities = {i.severity for i in self.issues if i.check == check}
        if Severity.ERROR in severities:
            return "fail"
        if Severity.WARNING in severities:
            return "warn"
        return "pass"

    def to_dict(self, strict: bool = False) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "corpus_root": str(self.corpus_root),
            "status": "pass" if self.passed(strict) else "fail",
            "errors": self.error_count,
            "warnings": self.warning_count,
            "stopped_early": self.stopped_early,
            "checked_at": self.checked_at.isoformat(),
            "checks": [{"check": c, "status": self.check_status(c)} for c in self.checks_run],
            "issues": [i.to_dict() for i in self.issues],
        }


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class Validator:
    """Runs the corpus integrity checks.

    Args:
        store: Corpus to validate.
        index: Index builder; enables the index consistency check.

    Example::

        report = Validator(store).validate()
        if report.has_errors:
            for issue in report.issues:
                print(issue.location, issue.message)
    """

    def __init__(self, store: TierStore, index: IndexBuilder | None = None) -> None:
        self._store = store
        self._config = store.config
        self._root = Path(store.root)
        self._index = index

    def checks(self) -> list[tuple[str, Callable[[], list[ValidationIssue]]]]:
        """Checks in execution order as ``(identifier, callable)`` pairs."""
        battery: list[tuple[str, Callable[[], list[ValidationIssue]]]] = [
            ("tier-completeness", self._check_tier_completeness),
            ("zero-padding", self._check_zero_padding),
            ("index-fragments", self._check_index_fragments),
            ("code-uniqueness", self._check_code_uniqueness),
            ("naming", self._check_naming),
            ("alpha-suffix", self._check_alpha_suffix),
            ("section-count", self._check_section_count),
            ("round-trip", self._check_round_trip),
            ("header-fragments", self._check_header_fragments),
            ("size-limits", self._check_size_limits),
        ]
        if self._index is not None:
            battery.append(("index-consistency", self._check_index_consistency))
        return battery

    def validate(self, fail_fast: bool | None = None) -> ValidationReport:
        """Run every check and collect the issues.

        Args:
            fail_fast: Stop after the first check that produced an
                ERROR; the configured mode when None.

        Returns:
            The validation report.

        Raises:
            NotFoundError: If the corpus root does not exist.
            PermissionError: If the corpus root cannot be read.
        """
        fail_fast = self._config.fail_fast if fail_fast is None else fail_fast
        self._check_corpus_root()
        report = ValidationReport(corpus_root=self._root, checks_run=["corpus-root"])

        for check_id, check in self.checks():
            found = check()
            report.checks_run.append(check_id)
            report.issues.extend(found)
            logger.info("Check %s: %d issue(s)", check_id, len(found))
            if fail_fast and any(i.severity == Severity.ERROR for i in found):
                report.stopped_early = True
                logger.info("Stopping after %s (fail-fast)", check_id)
                break

        report.checked_at = datetime.now(timezone.utc)
        return report

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_corpus_root(self) -> None:
        if not self._root.is_dir():
            raise NotFoundError(f"Corpus root not found: {self._root}", path=self._root)
        if not os.access(self._root, os.R_OK | os.X_OK):
            raise PermissionError(f"Corpus root is not readable: {self._root}")

    def _check_tier_completeness(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for path in self._store.iter_tier_files(Tier.COMPLETE):
            stem = path.name[: -len(Tier.COMPLETE.suffix)]
            for tier in (Tier.SUMMARY, Tier.ABSTRACT):
                if not path.with_name(stem + tier.suffix).is_file():
                    issues.append(
                        self._issue(
                            path,
                            f"Missing {tier.value} tier for: {self._rel(path)}",
                            "tier-completeness",
                            TierMismatchError,
                        )
                    )
        return issues

    def _check_zero_padding(self) -> list[ValidationIssue]:
        return [
            self._issue(p, f"Numeric prefix is not zero-padded: {p.name}", "zero-padding", FormatError)
            for p in self._walk()
            if _UNPADDED_RE.match(p.name)
        ]

    def _check_index_fragments(self) -> list[ValidationIssue]:
        """Every numbered directory with children needs an index fragment per tier.

        Section directories (depth 1) need ``00-section.<tier>.md``
        inside. Deeper directories are indexed either by a sibling leaf
        with the same prefix or by a ``00-*`` leaf inside.
        """
        issues: list[ValidationIssue] = []
        for directory in self._walk():
            if not directory.is_dir() or numeric_prefix(directory.name) is None:
                continue
            if not any(self._visible(child) for child in directory.iterdir()):
                continue
            is_section = directory.parent == self._root
            present = [t for t in Tier.ordered() if self._has_index_fragment(directory, t, is_section)]
            if not present:
                expected = f"{SECTION_STEM}.<tier>.md" if is_section else "index fragment"
                issues.append(
                    self._issue(
                        directory,
                        f"Directory {self._rel(directory)} has no {expected}",
                        "index-fragments",
                        FormatError,
                    )
                )
                continue
            for tier in Tier.ordered():
                if tier in present:
                    continue
                name = f"{SECTION_STEM}{tier.suffix}" if is_section else f"{tier.value} index fragment"
                issues.append(
                    self._issue(
                        directory,
                        f"Missing {name} in {self._rel(directory)}",
                        "index-fragments",
                        TierMismatchError,
                    )
                )
        return issues

    def _check_code_uniqueness(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for tier in Tier.ordered():
            by_code: dict[str, list[str]] = defaultdict(list)
            for fragment in self._store.list_all(tier):
                by_code[fragment.code].append(fragment.relative_path)
            for code, paths in sorted(by_code.items()):
                if len(paths) > 1:
                    issues.append(
                        ValidationIssue(
                            location=paths[0],
                            severity=Severity.ERROR,
                            message=f"Duplicate {tier.value} code {code}: {', '.join(paths)}",
                            check="code-uniqueness",
                            error_type=DuplicateCodeError.__name__,
                        )
                    )
        return issues

    def _check_naming(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for path in self._walk():
            if path.is_dir() and path.name[:1].isdigit() and not _VALID_DIR_RE.match(path.name):
                issues.append(
                    self._issue(path, f"Invalid directory name: {self._rel(path)}", "naming", FormatError)
                )
        for path in self._store.iter_files():
            name = path.name
            if not name.endswith(".md") or _RESERVED_NAME_RE.match(name):
                continue
            if not _VALID_NAME_RE.match(name):
                issues.append(
                    self._issue(path, f"Invalid fragment file name: {self._rel(path)}", "naming", FormatError)
                )
        return issues

    def _check_alpha_suffix(self) -> list[ValidationIssue]:
        return [
            self._issue(p, f"Alphabetic suffix on numeric prefix: {p.name}", "alpha-suffix", FormatError)
            for p in self._walk()
            if _ALPHA_SUFFIX_RE.match(p.name)
        ]

    def _check_section_count(self) -> list[ValidationIssue]:
        """Compare section directories against expectations and across tiers."""
        issues: list[ValidationIssue] = []
        sections = {s.number: s for s in self._store.list_sections(Tier.COMPLETE)}
        numbers = sorted(sections)
        expected = self._config.expected_sections

        if expected is not None:
            for number in expected:
                if number not in sections:
                    issues.append(
                        ValidationIssue(
                            location=number,
                            severity=Severity.ERROR,
                            message=f"Expected section {number} is missing",
                            check="section-count",
                            error_type=NotFoundError.__name__,
                        )
                    )
            for number in numbers:
                if number not in expected:
                    issues.append(
                        self._issue(
                            sections[number].directory,
                            f"Unexpected section {number}",
                            "section-count",
                            FormatError,
                            Severity.WARNING,
                        )
                    )
        else:
            present = {int(n) for n in numbers if n != "00"}
            top = max(present, default=0)
            for missing in sorted(set(range(1, top + 1)) - present):
                issues.append(
                    ValidationIssue(
                        location=f"{missing:02d}",
                        severity=Severity.WARNING,
                        message=f"Section numbering has a gap at {missing:02d}",
                        check="section-count",
                        error_type=FormatError.__name__,
                    )
                )

        per_tier = {t: self._sections_with_tier(t) for t in Tier.ordered()}
        reference = per_tier[Tier.COMPLETE]
        for tier in (Tier.SUMMARY, Tier.ABSTRACT):
            if per_tier[tier] != reference:
                diff = sorted(reference ^ per_tier[tier])
                issues.append(
                    ValidationIssue(
                        location=tier.value,
                        severity=Severity.WARNING,
                        message=(
                            f"{tier.value} tier has {len(per_tier[tier])} sections, "
                            f"complete has {len(reference)} (differing: {', '.join(diff)})"
                        ),
                        check="section-count",
                        error_type=TierMismatchError.__name__,
                    )
                )
        return issues

    def _check_round_trip(self) -> list[ValidationIssue]:
        """Every tier file encodes to a code that decodes back to it.

        A file the codec cannot encode is left out of listings, assembly
        and the index, so it is reported here rather than skipped.
        """
        issues: list[ValidationIssue] = []
        codec = self._store.codec
        for path in self._store.iter_files():
            if tier_of(path.name) is None:
                continue
            try:
                codec.encode(self._rel(path))
            except FormatError as exc:
                issues.append(
                    self._issue(path, f"{self._rel(path)} has no code: {exc}", "round-trip", FormatError)
                )
        for tier in Tier.ordered():
            for fragment in self._store.list_all(tier):
                try:
                    decoded = codec.decode(fragment.code, tier, self._root)
                except (InvalidCodeError, NotFoundError) as exc:
                    issues.append(
                        self._issue(fragment.path, f"{fragment.code} does not decode: {exc}", "round-trip", InvalidCodeError)
                    )
                    continue
                if decoded != fragment.path:
                    issues.append(
                        self._issue(
                            fragment.path,
                            f"{fragment.code} decodes to {self._rel(decoded)}, not {fragment.relative_path}",
                            "round-trip",
                            InvalidCodeError,
                        )
                    )
        return issues

    def _check_header_fragments(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for tier in Tier.ordered():
            header = self._root / f"{HEADER_STEM}{tier.suffix}"
            if not header.is_file():
                issues.append(
                    self._issue(header, f"{header.name} missing", "header-fragments", NotFoundError)
                )
        return issues

    def _check_size_limits(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for tier in Tier.ordered():
            limit = self._config.size_limit(tier)
            if limit is None:
                continue
            for relative, size in self._store.sizes(tier).items():
                if relative.startswith(f"{HEADER_STEM}."):
                    continue
                if size.bytes > limit:
                    issues.append(
                        ValidationIssue(
                            location=relative,
                            severity=Severity.WARNING,
                            message=f"{tier.value.capitalize()} file oversized: {relative} ({size.bytes} > {limit} bytes)",
                            check="size-limits",
                            error_type=SizeLimitError.__name__,
                        )
                    )
        return issues

    def _check_index_consistency(self) -> list[ValidationIssue]:
        if self._index is None:
            return []
        issues: list[ValidationIssue] = []
        for tier in Tier.ordered():
            for fragment in self._store.list_all(tier):
                try:
                    resolved = self._index.resolve(fragment.code, tier)
                except NotFoundError:
                    issues.append(
                        self._issue(
                            fragment.path,
                            f"{fragment.code} ({tier.value}) is not in the index",
                            "index-consistency",
                            NotFoundError,
                        )
                    )
                    continue
                if resolved != fragment.path.resolve():
                    issues.append(
                        self._issue(
                            fragment.path,
                            f"Index entry for {fragment.code} ({tier.value}) points at {resolved}",
                            "index-consistency",
                            NotFoundError,
                        )
                    )
        for link in self._index.dangling():
            issues.append(
                ValidationIssue(
                    location=link,
                    severity=Severity.ERROR,
                    message=f"Dangling index entry: {link}",
                    check="index-consistency",
                    error_type=NotFoundError.__name__,
                )
            )
        return issues

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(
        self,
        path: Path,
        message: str,
        check: str,
        error_type: type[StrataError],
        severity: Severity = Severity.ERROR,
    ) -> ValidationIssue:
        return ValidationIssue(
            location=self._rel(path),
            severity=severity,
            message=message,
            check=check,
            error_type=error_type.__name__,
        )

    def _rel(self, path: Path) -> str:
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return str(path)

    def _visible(self, path: Path) -> bool:
        name = path.name
        if name.startswith("."):
            return False
        if path.is_dir():
            return name not in self._config.ignored_dirs
        return name not in self._config.ignored_names

    def _walk(self) -> list[Path]:
        """Every visible file and directory under the root, sorted."""
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if self._visible(Path(dirpath) / d))
            found.extend(Path(dirpath) / d for d in dirnames)
            found.extend(Path(dirpath) / f for f in filenames if self._visible(Path(dirpath) / f))
        return sorted(found, key=lambda p: p.relative_to(self._root).as_posix())

    def _has_index_fragment(self, directory: Path, tier: Tier, is_section: bool) -> bool:
        if is_section:
            return (directory / f"{SECTION_STEM}{tier.suffix}").is_file()
        prefix = numeric_prefix(directory.name)
        for sibling in directory.parent.iterdir():
            if tier_of(sibling.name) is tier and numeric_prefix(sibling.name) == prefix and sibling.is_file():
                return True
        return any(
            tier_of(child.name) is tier and numeric_prefix(child.name) == "00" and child.is_file()
            for child in directory.iterdir()
        )

    def _sections_with_tier(self, tier: Tier) -> set[str]:
        numbers: set[str] = set()
        for fragment in self._store.list_all(tier):
            if len(fragment.segments) > 1:
                numbers.add(fragment.segments[0][:2])
        return numbers
