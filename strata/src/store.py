"""Filesystem-backed storage of tiered documentation fragments.

Every fragment lives at ``<corpus_root>/<segments...>.<tier>.md``. The
store serves content, sizes, and the canonical traversal order, and
accepts externally derived summary/abstract text. It does not enforce
tier completeness; the validator does.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from markdown_it import MarkdownIt

from shared.hardening import PathGuard
from strata.src.codec import PathCodec, numeric_prefix, tier_of
from strata.src.config import StrataConfig
from strata.src.errors import FormatError, NotFoundError
from strata.src.models import Fragment, FragmentSize, SearchHit, Section, Tier

logger = logging.getLogger(__name__)

_MARKDOWN = MarkdownIt("commonmark")


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to *path* so readers never see a partial file.

    Writes to a temp file in the target directory, then renames it over
    the destination.

    Args:
        path: Destination file.
        text: Content to write (UTF-8).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        os.replace(temp_path, str(path))
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class TierStore:
    """Read and write access to one corpus of tiered fragments.

    Args:
        config: Corpus configuration.
        codec: Code mapper; built from the config when omitted.

    Example::

        store = TierStore(StrataConfig.from_project("."))
        for fragment in store.list_all(Tier.ABSTRACT):
            print(fragment.code, store.size_of(fragment.code, Tier.ABSTRACT))
    """

    def __init__(self, config: StrataConfig, codec: PathCodec | None = None) -> None:
        self._config = config
        self._codec = codec or PathCodec.from_config(config)
        self._root = Path(config.corpus_root)
        self._guard = PathGuard(self._root)

    @property
    def root(self) -> Path:
        """Corpus root directory."""
        return self._root

    @property
    def codec(self) -> PathCodec:
        """Codec used to address fragments."""
        return self._codec

    @property
    def config(self) -> StrataConfig:
        """Configuration the store was built with."""
        return self._config

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def iter_tier_files(self, tier: Tier) -> Iterator[Path]:
        """Yield every ``*.<tier>.md`` file under the root, sorted.

        Ignored directories and file names are skipped; names are not
        checked against the fragment convention.
        """
        tier = Tier.parse(tier)
        for path in self.iter_files():
            if tier_of(path.name) is tier:
                yield path

    def iter_files(self) -> Iterator[Path]:
        """Yield every non-ignored file under the root, sorted by path."""
        if not self._root.is_dir():
            return
        ignored_dirs = set(self._config.ignored_dirs)
        ignored_names = set(self._config.ignored_names)
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if d not in ignored_dirs and not d.startswith("."))
            for filename in filenames:
                if filename in ignored_names or filename.startswith("."):
                    continue
                found.append(Path(dirpath) / filename)
        yield from sorted(found, key=lambda p: p.relative_to(self._root).as_posix())

    def list_all(self, tier: Tier, strict: bool = False) -> list[Fragment]:
        """List the fragments of one tier in canonical order.

        Order is lexicographic on the POSIX path relative to the root,
        so a directory's ``00`` index precedes its numbered children and
        a rule file ``02-x.<tier>.md`` precedes its subrule directory.

        Args:
            tier: Tier to list.
            strict: Raise on malformed names instead of skipping them.

        Returns:
            Ordered list of fragments.

        Raises:
            FormatError: In strict mode, for a name without a valid prefix.
        """
        tier = Tier.parse(tier)
        fragments: list[Fragment] = []
        for path in self.iter_tier_files(tier):
            relative = path.relative_to(self._root).as_posix()
            segments = relative.split("/")
            try:
                code = self._codec.encode(segments)
            except FormatError:
                if strict:
                    raise
                logger.debug("Skipping malformed fragment name: %s", relative)
                continue
            fragments.append(
                Fragment(
                    code=code,
                    tier=tier,
                    path=path,
                    relative_path=relative,
                    segments=segments,
                )
            )
        return fragments

    def list_sections(self, tier: Tier | None = None) -> list[Section]:
        """List the numbered top-level section directories.

        Args:
            tier: Tier whose ``00`` fragment supplies the title; the
                configured default tier when omitted.

        Returns:
            Sections ordered by directory name.
        """
        tier = Tier.parse(tier or self._config.default_tier)
        if not self._root.is_dir():
            return []
        sections: list[Section] = []
        for entry in sorted(self._root.iterdir(), key=lambda p: p.name):
            if not entry.is_dir() or entry.name in self._config.ignored_dirs:
                continue
            number = numeric_prefix(entry.name)
            if number is None:
                continue
            code = f"{self._codec.tag}{number}"
            title = ""
            try:
                title = self.title_of(code, tier)
            except NotFoundError:
                logger.debug("Section %s has no %s index fragment", entry.name, tier.value)
            sections.append(Section(number=number, code=code, directory=entry, title=title))
        return sections

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def path_of(self, code: str, tier: Tier) -> Path:
        """Absolute path of the fragment for (*code*, *tier*).

        Raises:
            InvalidCodeError: If the code is malformed.
            NotFoundError: If no fragment exists.
        """
        path = self._codec.decode(code, Tier.parse(tier), self._root)
        self._guard.check(path)
        return path

    def exists(self, code: str, tier: Tier) -> bool:
        """Return True when a fragment exists for (*code*, *tier*)."""
        return self._codec.exists(code, Tier.parse(tier), self._root)

    def fragment(self, code: str, tier: Tier) -> Fragment:
        """Build the Fragment record for (*code*, *tier*)."""
        tier = Tier.parse(tier)
        path = self.path_of(code, tier)
        relative = path.relative_to(self._root).as_posix()
        return Fragment(
            code=self._codec.normalize(code),
            tier=tier,
            path=path,
            relative_path=relative,
            segments=relative.split("/"),
        )

    def get_content(self, code: str, tier: Tier) -> str:
        """Return the text of the fragment for (*code*, *tier*).

        Raises:
            InvalidCodeError: If the code is malformed.
            NotFoundError: If no fragment exists.
        """
        path = self.path_of(code, tier)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"Fragment vanished: {path}", code=code, path=path) from exc

    def size_of(self, code: str, tier: Tier) -> FragmentSize:
        """Return (bytes, lines) of the fragment for (*code*, *tier*)."""
        return measure(self.path_of(code, tier))

    def sizes(self, tier: Tier) -> dict[str, FragmentSize]:
        """Measure every fragment of *tier*, reading files in parallel.

        Returns:
            Mapping of relative path to size, in canonical order.
        """
        fragments = self.list_all(tier)
        with ThreadPoolExecutor(max_workers=self._config.workers) as pool:
            measured = list(pool.map(lambda f: measure(f.path), fragments))
        return {f.relative_path: size for f, size in zip(fragments, measured)}

    def title_of(self, code: str, tier: Tier) -> str:
        """First markdown heading of a fragment, without the ``#`` marks."""
        return first_heading(self.get_content(code, tier))

    def search(self, pattern: str, tier: Tier, ignore_case: bool = False) -> list[SearchHit]:
        """Find lines matching a regular expression across one tier.

        Args:
            pattern: Regular expression.
            tier: Tier to search.
            ignore_case: Match case-insensitively.

        Returns:
            Hits in canonical fragment order, then line order.

        Raises:
            ValueError: If the pattern does not compile.
        """
        try:
            regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        except re.error as exc:
            raise ValueError(f"Invalid search pattern '{pattern}': {exc}") from exc
        hits: list[SearchHit] = []
        for fragment in self.list_all(tier):
            text = fragment.path.read_text(encoding="utf-8")
            for number, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    hits.append(SearchHit(code=fragment.code, line_number=number, line=line))
        return hits

    # ------------------------------------------------------------------
    # Derived tiers
    # ------------------------------------------------------------------

    def set_derived_content(self, code: str, tier: Tier, content: str) -> Path:
        """Store externally derived text for a summary/abstract tier.

        The file is written at the segment path of the complete fragment
        with the tier suffix swapped.

        Args:
            code: Fragment code.
            tier: Derived tier to write.
            content: Text produced by the derivation collaborator.

        Returns:
            Path of the written file.

        Raises:
            ValueError: If *tier* is the complete tier.
            NotFoundError: If no complete fragment exists for *code*.
        """
        tier = Tier.parse(tier)
        if not tier.is_derived:
            raise ValueError("The complete tier is author-edited and cannot be set as derived content")
        source = self.path_of(code, Tier.COMPLETE)
        target = source.with_name(source.name[: -len(Tier.COMPLETE.suffix)] + tier.suffix)
        self._guard.check(target)
        atomic_write_text(target, content)
        logger.info("Stored %s tier for %s (%d bytes)", tier.value, code, len(content.encode("utf-8")))
        return target


def measure(path: Path) -> FragmentSize:
    """Return the byte size and newline count of *path*."""
    data = path.read_bytes()
    return FragmentSize(bytes=len(data), lines=data.count(b"\n"))


def first_heading(text: str) -> str:
    """Inline text of the first ATX or setext heading in *text*.

    ``#`` lines inside fenced code blocks are shell comments and never
    count as headings.
    """
    tokens = _MARKDOWN.parse(text)
    for i, token in enumerate(tokens):
        if token.type == "heading_open" and i + 1 < len(tokens):
            return tokens[i + 1].content.strip()
    return ""
