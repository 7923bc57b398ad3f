"""Code-addressable index tree.

Mirrors every (code, tier) of the corpus into a numeric-only tree whose
leaves are relative references to the real fragments::

    BCS/00.complete.md        -> ../data/00-header.complete.md
    BCS/01/00.complete.md     -> ../../data/01-script-structure/00-section.complete.md
    BCS/01/02.complete.md     -> ../../data/01-script-structure/02-shebang.complete.md
    BCS/01/02/01.complete.md  -> ../../../data/01-script-structure/02-shebang/01-dual-purpose.complete.md
    BCS/01.dir                -> ../data/01-script-structure

Each rebuild writes a fresh generation directory beside the index root
and publishes it by atomically replacing the index root symlink, so
readers see either the old tree or the new one.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, ClassVar

from strata.src.codec import PathCodec
from strata.src.errors import FormatError, NotFoundError, PartialFailureError
from strata.src.models import Tier
from strata.src.store import TierStore, atomic_write_text

logger = logging.getLogger(__name__)

# Names the builder creates; everything else in a generation is user data
OWNED_NAME_RE = re.compile(r"^\d{2}(\.(complete|summary|abstract)\.md|\.dir)?$")
SHORTCUT_SUFFIX = ".dir"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexEntry:
    """One reference in the index tree.

    Attributes:
        link: POSIX path of the reference, relative to the index root.
        target: Location of the referenced corpus entry, relative to
            the directory holding the reference.
        code: Code of the fragment, empty for directory shortcuts.
        tier: Tier of the fragment, None for directory shortcuts.
    """

    link: str
    target: str
    code: str = ""
    tier: Tier | None = None

    @property
    def is_shortcut(self) -> bool:
        """Return True for a directory shortcut entry."""
        return self.tier is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "link": self.link,
            "target": self.target,
            "code": self.code,
            "tier": self.tier.value if self.tier else None,
        }


@dataclass
class IndexBuildResult:
    """Summary of one index rebuild."""

    index_root: Path
    generation: Path
    backend: str
    entries: list[IndexEntry] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def link_count(self) -> int:
        """Number of fragment references written."""
        return sum(1 for e in self.entries if not e.is_shortcut)

    @property
    def shortcut_count(self) -> int:
        """Number of directory shortcuts written."""
        return sum(1 for e in self.entries if e.is_shortcut)

    @property
    def succeeded(self) -> bool:
        """Return True when every entry was written."""
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "index_root": str(self.index_root),
            "generation": self.generation.name,
            "backend": self.backend,
            "links": self.link_count,
            "shortcuts": self.shortcut_count,
            "preserved": list(self.preserved),
            "failures": [{"location": loc, "reason": reason} for loc, reason in self.failures],
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class IndexBackend(ABC):
    """
    Abstract base class for index storage backends.

    A backend writes entries into a generation directory and answers
    lookups against a published index root.
    """

    BACKEND_NAME: ClassVar[str] = "base"

    @abstractmethod
    def materialize(self, generation: Path, entries: list[IndexEntry]) -> list[tuple[str, str]]:
        """
        Write *entries* into *generation*.

        Args:
            generation: Empty generation directory.
            entries: References to write.

        Returns:
            ``(link, reason)`` for every entry that could not be written.
        """

    @abstractmethod
    def snapshot(self, index_dir: Path) -> list[tuple[str, str]]:
        """Return every ``(link, target)`` pair under *index_dir*, sorted."""

    def resolve(self, index_dir: Path, candidates: list[PurePosixPath]) -> Path | None:
        """
        Resolve the first candidate that leads to an existing file.

        Args:
            index_dir: Published index root.
            candidates: Index-relative leaf paths, most specific first.

        Returns:
            Resolved absolute path of the referenced fragment, or None.
        """
        targets = dict(self.snapshot(index_dir))
        for candidate in candidates:
            target = targets.get(candidate.as_posix())
            if target is None:
                continue
            resolved = target_path(index_dir, candidate.as_posix(), target)
            if resolved.is_file():
                return resolved.resolve()
        return None

    def is_owned(self, name: str) -> bool:
        """Return True for names this backend creates in a generation."""
        return bool(OWNED_NAME_RE.match(name))


class BackendRegistry:
    """Registry of available index backends."""

    _backends: ClassVar[dict[str, type[IndexBackend]]] = {}

    @classmethod
    def register(cls, backend_class: type[IndexBackend]) -> type[IndexBackend]:
        """Register a backend class."""
        cls._backends[backend_class.BACKEND_NAME] = backend_class
        return backend_class

    @classmethod
    def get_backend(cls, name: str) -> IndexBackend:
        """Instantiate a backend by name.

        Raises:
            ValueError: If no backend is registered under *name*.
        """
        backend_class = cls._backends.get(name)
        if backend_class is None:
            available = ", ".join(cls.available_backends())
            raise ValueError(f"Unknown index backend: {name}. Available: {available}")
        return backend_class()

    @classmethod
    def available_backends(cls) -> list[str]:
        """Get list of available backend names."""
        return sorted(cls._backends)


@BackendRegistry.register
class SymlinkBackend(IndexBackend):
    """Index leaves are relative symbolic links."""

    BACKEND_NAME: ClassVar[str] = "symlink"

    def materialize(self, generation: Path, entries: list[IndexEntry]) -> list[tuple[str, str]]:
        failures: list[tuple[str, str]] = []
        for entry in entries:
            link_path = generation / entry.link
            try:
                link_path.parent.mkdir(parents=True, exist_ok=True)
                os.symlink(entry.target, link_path, target_is_directory=entry.is_shortcut)
            except OSError as exc:
                logger.warning("Could not link %s: %s", entry.link, exc)
                failures.append((entry.link, str(exc)))
        return failures

    def resolve(self, index_dir: Path, candidates: list[PurePosixPath]) -> Path | None:
        for candidate in candidates:
            path = index_dir / candidate
            if path.is_file():
                return path.resolve()
        return None

    def snapshot(self, index_dir: Path) -> list[tuple[str, str]]:
        base = index_dir.resolve()
        if not base.is_dir():
            return []
        pairs: list[tuple[str, str]] = []
        for dirpath, dirnames, filenames in os.walk(base):
            for name in dirnames + filenames:
                path = Path(dirpath) / name
                if path.is_symlink():
                    pairs.append((path.relative_to(base).as_posix(), os.readlink(path)))
        return sorted(pairs)


@BackendRegistry.register
class ManifestBackend(IndexBackend):
    """Index leaves are rows of a JSON manifest, for filesystems without symlinks."""

    BACKEND_NAME: ClassVar[str] = "manifest"
    MANIFEST_NAME: ClassVar[str] = "manifest.json"

    def materialize(self, generation: Path, entries: list[IndexEntry]) -> list[tuple[str, str]]:
        rows = {entry.link: entry.target for entry in entries}
        payload = {"version": 1, "entries": dict(sorted(rows.items()))}
        try:
            atomic_write_text(generation / self.MANIFEST_NAME, json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            logger.warning("Could not write manifest: %s", exc)
            return [(self.MANIFEST_NAME, str(exc))]
        return []

    def snapshot(self, index_dir: Path) -> list[tuple[str, str]]:
        manifest = index_dir / self.MANIFEST_NAME
        if not manifest.is_file():
            return []
        data = json.loads(manifest.read_text(encoding="utf-8"))
        return sorted(data.get("entries", {}).items())

    def is_owned(self, name: str) -> bool:
        return name == self.MANIFEST_NAME or super().is_owned(name)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class IndexBuilder:
    """Build and query the numeric index tree of a corpus.

    Args:
        store: Fragment source.
        backend: Storage backend name or instance; symlinks by default.

    Example::

        builder = IndexBuilder(store)
        result = builder.rebuild_index()
        builder.resolve("BCS0102", Tier.COMPLETE)
    """

    def __init__(self, store: TierStore, backend: str | IndexBackend = "symlink") -> None:
        self._store = store
        self._codec: PathCodec = store.codec
        self._index_root = Path(store.config.index_root).absolute()
        self._backend = BackendRegistry.get_backend(backend) if isinstance(backend, str) else backend

    @property
    def index_root(self) -> Path:
        """Published index location."""
        return self._index_root

    @property
    def backend(self) -> IndexBackend:
        """Active storage backend."""
        return self._backend

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self) -> tuple[list[IndexEntry], list[tuple[str, str]]]:
        """Compute the entries of a fresh index without touching disk.

        Returns:
            Tuple of entries (fragment links, then directory shortcuts,
            each sorted by link) and ``(location, reason)`` failures for
            fragments that could not be mapped.
        """
        corpus = Path(self._store.root).absolute()
        links: dict[str, IndexEntry] = {}
        shortcuts: dict[str, IndexEntry] = {}
        failures: list[tuple[str, str]] = []

        for tier in Tier.ordered():
            for fragment in self._store.list_all(tier):
                try:
                    leaf = self._codec.numeric_path(fragment.segments, tier)
                except FormatError as exc:
                    failures.append((fragment.relative_path, str(exc)))
                    continue
                link = leaf.as_posix()
                if link in links:
                    failures.append(
                        (fragment.relative_path, f"index slot {link} already taken by {links[link].code}")
                    )
                    continue
                link_dir = self._index_root / leaf.parent
                links[link] = IndexEntry(
                    link=link,
                    target=_relative(corpus / fragment.relative_path, link_dir),
                    code=fragment.code,
                    tier=tier,
                )
                for depth in range(1, len(fragment.segments)):
                    numeric = PurePosixPath(*leaf.parts[:depth])
                    shortcut = f"{numeric.as_posix()}{SHORTCUT_SUFFIX}"
                    if shortcut not in shortcuts:
                        source = corpus.joinpath(*fragment.segments[:depth])
                        shortcuts[shortcut] = IndexEntry(
                            link=shortcut,
                            target=_relative(source, self._index_root / numeric.parent),
                        )

        ordered = [links[k] for k in sorted(links)] + [shortcuts[k] for k in sorted(shortcuts)]
        return ordered, failures

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def rebuild_index(self) -> IndexBuildResult:
        """Rebuild the whole index and publish it atomically.

        Returns:
            Summary of the rebuild.

        Raises:
            NotFoundError: If the corpus root does not exist.
            PartialFailureError: If some entries failed. The partial
                index is still published and attached as ``result``.
        """
        started = time.monotonic()
        if not Path(self._store.root).is_dir():
            raise NotFoundError(f"Corpus root not found: {self._store.root}", path=self._store.root)

        parent = self._index_root.parent
        parent.mkdir(parents=True, exist_ok=True)
        previous = self._current_generation()

        entries, failures = self.plan()
        generation = Path(tempfile.mkdtemp(dir=str(parent), prefix=self._generation_prefix))
        os.chmod(generation, 0o755)
        logger.info(
            "Building index generation %s (%d entries, backend=%s)",
            generation.name,
            len(entries),
            self._backend.BACKEND_NAME,
        )

        failures.extend(self._backend.materialize(generation, entries))
        preserved = self._carry_unowned(previous, generation) if previous is not None else []
        self._publish(generation)
        self._remove_stale_generations(keep=generation)

        result = IndexBuildResult(
            index_root=self._index_root,
            generation=generation,
            backend=self._backend.BACKEND_NAME,
            entries=entries,
            preserved=preserved,
            failures=failures,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "Index published: %d links, %d shortcuts, %d failures",
            result.link_count,
            result.shortcut_count,
            len(failures),
        )
        if failures:
            raise PartialFailureError("rebuild index", failures, result=result)
        return result

    @property
    def _generation_prefix(self) -> str:
        return f".{self._index_root.name}.gen-"

    def _current_generation(self) -> Path | None:
        if self._index_root.is_symlink():
            target = self._index_root.parent / os.readlink(self._index_root)
            return target if target.is_dir() else None
        if self._index_root.is_dir():
            return self._index_root
        return None

    def _carry_unowned(self, previous: Path, generation: Path) -> list[str]:
        """Move entries the builder did not create into the new generation."""
        preserved: list[str] = []
        for dirpath, dirnames, filenames in os.walk(previous):
            relative = Path(dirpath).relative_to(previous)
            for name in sorted(dirnames + filenames):
                source = Path(dirpath) / name
                if self._backend.is_owned(name):
                    continue
                if name in dirnames:
                    dirnames.remove(name)
                destination = generation / relative / name
                if destination.exists() or destination.is_symlink():
                    logger.warning("Not preserving %s: name is taken in the new index", relative / name)
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                os.replace(source, destination)
                preserved.append((relative / name).as_posix())
        if preserved:
            logger.info("Preserved %d user entries from the previous index", len(preserved))
        return preserved

    def _publish(self, generation: Path) -> None:
        """Point the index root at *generation* with one atomic rename."""
        parent = self._index_root.parent
        swap = parent / f".{self._index_root.name}.swap-{os.getpid()}"
        if swap.is_symlink() or swap.exists():
            swap.unlink()
        os.symlink(generation.name, swap, target_is_directory=True)
        if self._index_root.is_dir() and not self._index_root.is_symlink():
            # A real directory cannot be replaced by a link; retire it first
            legacy = parent / f"{self._generation_prefix}legacy-{os.getpid()}"
            os.replace(self._index_root, legacy)
            logger.info("Migrated legacy index directory to %s", legacy.name)
        os.replace(swap, self._index_root)

    def _remove_stale_generations(self, keep: Path) -> None:
        for entry in self._index_root.parent.iterdir():
            if not entry.name.startswith(self._generation_prefix) or entry == keep:
                continue
            try:
                shutil.rmtree(entry)
            except OSError as exc:
                logger.warning("Could not remove stale index generation %s: %s", entry.name, exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve(self, code: str, tier: Tier) -> Path:
        """Resolve *code* through the index to the referenced fragment.

        Raises:
            InvalidCodeError: If the code is malformed.
            NotFoundError: If the index holds no reference for the code.
        """
        tier = Tier.parse(tier)
        candidates = self._codec.index_candidates(code, tier)
        resolved = self._backend.resolve(self._index_root, candidates)
        if resolved is None:
            raise NotFoundError(
                f"Index has no {tier.value} entry for {code}",
                code=code,
                tier=tier.value,
                path=self._index_root,
            )
        return resolved

    def snapshot(self) -> list[tuple[str, str]]:
        """Sorted ``(link, target)`` pairs of the published index."""
        return self._backend.snapshot(self._index_root)

    def dangling(self) -> list[str]:
        """Links of the published index whose target does not exist."""
        missing: list[str] = []
        for link, target in self.snapshot():
            if not target_path(self._index_root, link, target).exists():
                missing.append(link)
        return missing


def target_path(index_dir: Path, link: str, target: str) -> Path:
    """Absolute location an index reference points at.

    Normalized lexically, so it works whether or not the numeric
    directories of *link* exist on disk.
    """
    base = index_dir / PurePosixPath(link).parent
    return Path(os.path.normpath(base / target))


def _relative(target: Path, start: Path) -> str:
    return Path(os.path.relpath(target, start)).as_posix()
