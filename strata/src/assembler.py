"""Canonical document assembly.

Concatenates every fragment of one tier, in canonical traversal order,
into a single document::

    <!-- strata: generated=2026-01-01T00:00:00Z tier=abstract fragments=42 -->
    <fragment 1>
    (blank line)
    <fragment 2>
    (blank line)
    ...
    #fin

The header line is the only non-deterministic part and is kept apart
from the body, so two assemblies of an unchanged corpus have identical
bodies and digests.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.hardening import PathGuard
from strata.src.errors import NotFoundError, PartialFailureError
from strata.src.models import Fragment, Tier
from strata.src.store import TierStore, atomic_write_text, measure

logger = logging.getLogger(__name__)

HEADER_PREFIX = "<!-- strata:"
HEADER_SUFFIX = "-->"
FIN_MARKER = "#fin"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalDocument:
    """One assembled tier document.

    Attributes:
        tier: Tier the document was assembled from.
        body: Deterministic concatenation of fragments plus ``#fin``.
        fragment_count: Number of fragments in the body.
        generated_at: UTC generation time, recorded in the header only.
    """

    tier: Tier
    body: str
    fragment_count: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def header(self) -> str:
        """Single HTML comment line describing the generation."""
        stamp = self.generated_at.strftime("%Y-%m-%dT%H:%M:%SZ")
        return (
            f"{HEADER_PREFIX} generated={stamp} tier={self.tier.value} "
            f"fragments={self.fragment_count} {HEADER_SUFFIX}"
        )

    @property
    def text(self) -> str:
        """Full file content: header line followed by the body."""
        return f"{self.header}\n{self.body}"

    @property
    def digest(self) -> str:
        """SHA-256 of the body, independent of the header timestamp."""
        return hashlib.sha256(self.body.encode("utf-8")).hexdigest()

    @staticmethod
    def strip_header(text: str) -> str:
        """Remove a leading generation header line from *text*, if present."""
        first, sep, rest = text.partition("\n")
        if first.startswith(HEADER_PREFIX) and first.rstrip().endswith(HEADER_SUFFIX):
            return rest
        return text

    def to_dict(self) -> dict[str, Any]:
        """Serialize metadata (not the body) to dictionary."""
        return {
            "tier": self.tier.value,
            "fragment_count": self.fragment_count,
            "generated_at": self.generated_at.isoformat(),
            "digest": self.digest,
            "bytes": len(self.text.encode("utf-8")),
        }


@dataclass
class DocumentStats:
    """Before/after figures for one written canonical document."""

    path: Path
    tier: Tier
    fragment_count: int
    bytes_before: int = 0
    lines_before: int = 0
    bytes_after: int = 0
    lines_after: int = 0
    backup_path: Path | None = None
    skipped: bool = False

    @property
    def bytes_delta(self) -> int:
        """Change in file size."""
        return self.bytes_after - self.bytes_before

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "path": str(self.path),
            "tier": self.tier.value,
            "fragment_count": self.fragment_count,
            "bytes_before": self.bytes_before,
            "lines_before": self.lines_before,
            "bytes_after": self.bytes_after,
            "lines_after": self.lines_after,
            "bytes_delta": self.bytes_delta,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "skipped": self.skipped,
        }


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class DocumentAssembler:
    """Build and write canonical per-tier documents from a TierStore.

    Args:
        store: Fragment source.
        clock: Returns the generation timestamp; UTC now by default.
    """

    def __init__(
        self,
        store: TierStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = store.config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = PathGuard(self._config.output_dir)

    def assemble(self, tier: Tier) -> CanonicalDocument:
        """Concatenate every fragment of *tier* in canonical order.

        Fragments are read on a thread pool; the concatenation itself is
        a single ordered pass over the results.

        Args:
            tier: Tier to assemble.

        Returns:
            The assembled document.

        Raises:
            PartialFailureError: If any fragment could not be read. The
                document built from the readable fragments is attached as
                ``result``.
        """
        tier = Tier.parse(tier)
        fragments = self._store.list_all(tier)
        logger.info("Assembling %d %s fragments", len(fragments), tier.value)

        with ThreadPoolExecutor(max_workers=self._config.workers) as pool:
            futures = [pool.submit(_read_fragment, fragment) for fragment in fragments]

        parts: list[str] = []
        failures: list[tuple[str, str]] = []
        for fragment, future in zip(fragments, futures):
            try:
                parts.append(future.result())
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Could not read %s: %s", fragment.relative_path, exc)
                failures.append((fragment.relative_path, str(exc)))

        body = "".join(f"{part}\n" for part in parts) + f"{FIN_MARKER}\n"
        document = CanonicalDocument(
            tier=tier,
            body=body,
            fragment_count=len(parts),
            generated_at=self._clock(),
        )
        if failures:
            raise PartialFailureError(f"assemble {tier.value}", failures, result=document)
        return document

    def write(
        self,
        document: CanonicalDocument,
        path: Path | None = None,
        backup: bool = False,
    ) -> DocumentStats:
        """Atomically write *document*, optionally backing up the old file.

        Args:
            document: Document to write.
            path: Destination; the configured canonical path by default.
            backup: Copy an existing file to ``<path>.backup-<timestamp>``
                before replacing it.

        Returns:
            Size figures before and after the write.
        """
        target = Path(path) if path is not None else self._config.canonical_path(document.tier)
        if path is None:
            self._guard.check(target)
        stats = DocumentStats(path=target, tier=document.tier, fragment_count=document.fragment_count)

        if target.is_file():
            before = measure(target)
            stats.bytes_before, stats.lines_before = before.bytes, before.lines
            if backup:
                stamp = self._clock().strftime("%Y%m%d-%H%M%S")
                backup_path = target.with_name(f"{target.name}.backup-{stamp}")
                shutil.copy2(target, backup_path)
                stats.backup_path = backup_path
                logger.info("Backed up %s -> %s", target.name, backup_path.name)

        atomic_write_text(target, document.text)
        after = measure(target)
        stats.bytes_after, stats.lines_after = after.bytes, after.lines
        logger.info(
            "Wrote %s (%d fragments, %d bytes, %+d)",
            target.name,
            document.fragment_count,
            stats.bytes_after,
            stats.bytes_delta,
        )
        return stats

    def generate(
        self,
        tiers: Iterable[Tier] | None = None,
        force: bool = True,
        backup: bool = False,
    ) -> list[DocumentStats]:
        """Assemble and write the canonical document of each tier.

        Args:
            tiers: Tiers to generate; all tiers when None.
            force: Rewrite even when the body on disk is unchanged.
            backup: Back up existing files before replacing them.

        Returns:
            One DocumentStats per tier, in tier order.

        Raises:
            PartialFailureError: After every tier was attempted, if any
                fragment could not be read. A tier with unreadable
                fragments is not written; ``result`` holds the stats of
                the tiers that were.
        """
        selected = [Tier.parse(t) for t in tiers] if tiers is not None else Tier.ordered()
        results: list[DocumentStats] = []
        failures: list[tuple[str, str]] = []
        for tier in selected:
            try:
                document = self.assemble(tier)
            except PartialFailureError as exc:
                logger.error("Skipping %s document: %d unreadable fragment(s)", tier.value, len(exc.failures))
                failures.extend(exc.failures)
                continue
            target = self._config.canonical_path(tier)
            if not force and self._matches_disk(document, target):
                logger.info("%s is current, skipping", target.name)
                size = measure(target)
                results.append(
                    DocumentStats(
                        path=target,
                        tier=tier,
                        fragment_count=document.fragment_count,
                        bytes_before=size.bytes,
                        lines_before=size.lines,
                        bytes_after=size.bytes,
                        lines_after=size.lines,
                        skipped=True,
                    )
                )
                continue
            results.append(self.write(document, backup=backup))
        if failures:
            raise PartialFailureError("generate", failures, result=results)
        return results

    def is_current(self, tier: Tier) -> bool:
        """Return True when the file on disk has the body a fresh assembly would."""
        tier = Tier.parse(tier)
        return self._matches_disk(self.assemble(tier), self._config.canonical_path(tier))

    def link_default(self, tier: Tier | None = None) -> Path:
        """Point the tier-neutral document name at one tier's file.

        The link is relative and replaced atomically.

        Args:
            tier: Tier to link; the configured default tier when None.

        Returns:
            Path of the link.

        Raises:
            NotFoundError: If the tier's canonical file does not exist.
        """
        tier = Tier.parse(tier or self._config.default_tier)
        target = self._config.canonical_path(tier)
        if not target.is_file():
            raise NotFoundError(f"Canonical {tier.value} document not generated: {target}", tier=tier.value, path=target)
        link = self._config.default_link_path
        self._guard.check(link)
        temp = link.with_name(f".{link.name}.{os.getpid()}.tmp")
        if temp.is_symlink() or temp.exists():
            temp.unlink()
        os.symlink(target.name, temp)
        os.replace(temp, link)
        logger.info("Linked %s -> %s", link.name, target.name)
        return link

    @staticmethod
    def verify_document(path: Path) -> list[str]:
        """Check the shape of a written canonical document.

        Args:
            path: File to check.

        Returns:
            Problems found; an empty list means the document is sound.
        """
        path = Path(path)
        if not path.is_file():
            return [f"{path.name} does not exist"]
        body = CanonicalDocument.strip_header(path.read_text(encoding="utf-8"))
        if not body.strip():
            return [f"{path.name} is empty"]
        problems: list[str] = []
        lines = body.splitlines()
        if not lines[0].startswith("#"):
            problems.append(f"{path.name} does not start with a markdown heading")
        if lines[-1] != FIN_MARKER:
            problems.append(f"{path.name} does not end with {FIN_MARKER}")
        return problems

    @staticmethod
    def _matches_disk(document: CanonicalDocument, target: Path) -> bool:
        if not target.is_file():
            return False
        existing = CanonicalDocument.strip_header(target.read_text(encoding="utf-8"))
        return hashlib.sha256(existing.encode("utf-8")).hexdigest() == document.digest


def _read_fragment(fragment: Fragment) -> str:
    return fragment.path.read_text(encoding="utf-8")
