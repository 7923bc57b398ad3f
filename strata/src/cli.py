"""strata -- command line interface for a tiered documentation corpus.

Usage:
  strata [--project DIR | --config FILE] <command> [options]

Commands:
  decode         Resolve a code to its fragment file (or print it).
  encode         Compute the code of a fragment path.
  codes          List every code as CODE:slug:title.
  sections       List the top-level sections.
  search         Search one tier with a regular expression.
  generate       Assemble canonical documents.
  rebuild-index  Rebuild the code-addressable index tree.
  validate       Run the structural integrity checks.

Exit codes: 0 success, 1 violations or failures, 2 usage or setup errors.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.hardening import ErrorFormatter, UnsafePathError
from strata.src.assembler import DocumentAssembler
from strata.src.config import StrataConfig
from strata.src.errors import InvalidCodeError, NotFoundError, PartialFailureError, StrataError
from strata.src.index import BackendRegistry, IndexBuilder
from strata.src.models import Severity, Tier
from strata.src.store import TierStore
from strata.src.validator import Validator

logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

_TIER_CHOICES = [t.value for t in Tier.ordered()]


def _out(line: str) -> None:
    """Print a plain line, without markup, for machine-readable output."""
    console.print(line, markup=False, emoji=False, soft_wrap=True)


def _store(args: argparse.Namespace) -> TierStore:
    return TierStore(args.strata_config)


def _tier(args: argparse.Namespace) -> Tier:
    if getattr(args, "tier", None):
        return Tier.parse(args.tier)
    return args.strata_config.default_tier


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_decode(args: argparse.Namespace) -> int:
    store = _store(args)
    tiers = Tier.ordered() if args.all_tiers else [_tier(args)]

    if args.exists:
        # Malformed codes still raise InvalidCodeError
        store.codec.split_code(args.code)
        return EXIT_OK if all(store.exists(args.code, t) for t in tiers) else EXIT_FAILURE

    for tier in tiers:
        path = store.path_of(args.code, tier)
        if args.print:
            if len(tiers) > 1:
                console.print(f"[bold]--- {tier.value} ---[/bold]")
            _out(path.read_text(encoding="utf-8").rstrip("\n"))
        elif args.relative:
            _out(path.relative_to(store.root).as_posix())
        else:
            _out(str(path))
    return EXIT_OK


def _cmd_encode(args: argparse.Namespace) -> int:
    store = _store(args)
    path = Path(args.path)
    if path.is_absolute() or path.exists():
        path = path.absolute()
        try:
            relative = path.relative_to(store.root.absolute())
        except ValueError:
            raise UnsafePathError(f"{args.path} is not inside {store.root}") from None
    else:
        relative = path
    _out(store.codec.encode(relative.as_posix()))
    return EXIT_OK


def _cmd_codes(args: argparse.Namespace) -> int:
    store = _store(args)
    tier = _tier(args)
    for fragment in store.list_all(tier):
        _out(f"{fragment.code}:{fragment.slug}:{store.title_of(fragment.code, tier)}")
    return EXIT_OK


def _cmd_sections(args: argparse.Namespace) -> int:
    store = _store(args)
    for section in store.list_sections(_tier(args)):
        title = section.title or section.directory.name
        _out(f"{int(section.number)}. {title}")
    return EXIT_OK


def _cmd_search(args: argparse.Namespace) -> int:
    store = _store(args)
    hits = store.search(args.pattern, _tier(args), ignore_case=args.ignore_case)
    for hit in hits:
        _out(f"{hit.code}:{hit.line_number}:{hit.line}")
    return EXIT_OK if hits else EXIT_FAILURE


def _cmd_generate(args: argparse.Namespace) -> int:
    store = _store(args)
    assembler = DocumentAssembler(store)
    tiers = [Tier.parse(t) for t in args.tier] if args.tier else None

    status = EXIT_OK
    try:
        results = assembler.generate(tiers, force=args.force, backup=args.backup)
    except PartialFailureError as exc:
        for location, reason in exc.failures:
            err_console.print(f"[red]failed:[/red] {escape(location)}: {escape(reason)}")
        results = exc.result or []
        status = EXIT_FAILURE

    table = Table(title="Canonical documents", box=box.SIMPLE_HEAVY)
    table.add_column("Tier", style="cyan")
    table.add_column("File")
    table.add_column("Fragments", justify="right")
    table.add_column("Lines", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Change", justify="right")
    for stats in results:
        change = "[dim]unchanged[/dim]" if stats.skipped else f"{stats.bytes_delta:+d}"
        table.add_row(
            stats.tier.value,
            stats.path.name,
            str(stats.fragment_count),
            str(stats.lines_after),
            str(stats.bytes_after),
            change,
        )
    console.print(table)

    if args.verify:
        for stats in results:
            for problem in assembler.verify_document(stats.path):
                err_console.print(f"[yellow]warning:[/yellow] {escape(problem)}")
                status = EXIT_FAILURE
    if args.link_default:
        link = assembler.link_default(Tier.parse(args.link_default))
        console.print(f"Linked [bold]{link.name}[/bold] -> {link.resolve().name}")
    return status


def _cmd_rebuild_index(args: argparse.Namespace) -> int:
    builder = IndexBuilder(_store(args), backend=args.backend)
    try:
        result = builder.rebuild_index()
    except PartialFailureError as exc:
        for location, reason in exc.failures:
            err_console.print(f"[red]failed:[/red] {escape(location)}: {escape(reason)}")
        if exc.result is not None:
            console.print(f"Index published with {len(exc.failures)} failure(s): {exc.result.link_count} links")
        return EXIT_FAILURE
    console.print(
        f"[green]Index rebuilt[/green]: {result.link_count} links, "
        f"{result.shortcut_count} directory shortcuts -> {result.index_root}"
    )
    for name in result.preserved:
        console.print(f"  preserved {name}")
    return EXIT_OK


def _cmd_validate(args: argparse.Namespace) -> int:
    config: StrataConfig = args.strata_config
    limits = dict(config.size_limits)
    if args.summary_limit is not None:
        limits[Tier.SUMMARY] = args.summary_limit
    if args.abstract_limit is not None:
        limits[Tier.ABSTRACT] = args.abstract_limit
    config = dataclasses.replace(config, size_limits=limits)
    try:
        config.validate()
    except ValueError as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        return EXIT_USAGE
    strict = args.strict or config.strict

    store = TierStore(config)
    index = IndexBuilder(store) if args.check_index else None
    fail_fast = True if args.exit_on_error else None
    try:
        report = Validator(store, index=index).validate(fail_fast=fail_fast)
    except (NotFoundError, PermissionError) as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        return EXIT_USAGE

    if args.json:
        _out(json.dumps(report.to_dict(strict=strict), indent=2))
        return report.exit_code(strict)

    table = Table(title=f"Validation of {config.corpus_root}", box=box.SIMPLE_HEAVY)
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Issues", justify="right")
    colours = {"pass": "green", "warn": "yellow", "fail": "red"}
    by_check = report.issues_by_check
    for check in report.checks_run:
        status = report.check_status(check)
        table.add_row(check, f"[{colours[status]}]{status}[/{colours[status]}]", str(len(by_check.get(check, []))))
    console.print(table)

    for issue in report.issues:
        colour = "red" if issue.severity == Severity.ERROR else "yellow"
        console.print(f"[{colour}]{issue.severity.value}[/{colour}] {issue.check}: ", end="")
        _out(issue.message)

    if report.passed(strict):
        console.print("[bold green]Validation complete: all checks passed[/bold green]")
        if report.warning_count:
            console.print(f"  ({report.warning_count} warning(s) - non-critical)")
    else:
        console.print(
            f"[bold red]Validation failed: {report.error_count} error(s), "
            f"{report.warning_count} warning(s)[/bold red]"
        )
    return report.exit_code(strict)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_tier(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-t", "--tier", choices=_TIER_CHOICES, help="Tier (default: configured default tier).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strata",
        description="Manage a tiered, code-addressed documentation corpus.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version="strata 0.1.0")
    location = parser.add_mutually_exclusive_group()
    location.add_argument("--project", type=Path, default=None, help="Project directory (default: current directory).")
    location.add_argument("--config", type=Path, default=None, help="JSON configuration file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(title="commands", metavar="<command>", dest="command")
    subparsers.required = True

    p = subparsers.add_parser("decode", help="Resolve a code to its fragment file.")
    p.add_argument("code", help="Code, with or without the tag (e.g. BCS0102 or 0102).")
    _add_tier(p)
    p.add_argument("-a", "--all-tiers", action="store_true", help="Resolve every tier.")
    p.add_argument("-p", "--print", action="store_true", help="Print fragment content instead of the path.")
    p.add_argument("-r", "--relative", action="store_true", help="Print paths relative to the corpus root.")
    p.add_argument("--exists", action="store_true", help="Only report through the exit code.")
    p.set_defaults(func=_cmd_decode)

    p = subparsers.add_parser("encode", help="Compute the code of a fragment path.")
    p.add_argument("path", help="Fragment path, absolute or relative to the corpus root.")
    p.set_defaults(func=_cmd_encode)

    p = subparsers.add_parser("codes", help="List every code as CODE:slug:title.")
    _add_tier(p)
    p.set_defaults(func=_cmd_codes)

    p = subparsers.add_parser("sections", help="List the top-level sections.")
    _add_tier(p)
    p.set_defaults(func=_cmd_sections)

    p = subparsers.add_parser("search", help="Search one tier with a regular expression.")
    p.add_argument("pattern")
    _add_tier(p)
    p.add_argument("-i", "--ignore-case", action="store_true")
    p.set_defaults(func=_cmd_search)

    p = subparsers.add_parser("generate", help="Assemble canonical documents.")
    p.add_argument("-t", "--tier", action="append", choices=_TIER_CHOICES, help="Tier to generate (repeatable; default all).")
    p.add_argument("--no-force", dest="force", action="store_false", help="Skip tiers whose document is current.")
    p.add_argument("--backup", action="store_true", help="Back up existing documents first.")
    p.add_argument("--verify", action="store_true", help="Check the shape of each written document.")
    p.add_argument("--link-default", metavar="TIER", choices=_TIER_CHOICES, help="Point the default document name at TIER.")
    p.set_defaults(func=_cmd_generate)

    p = subparsers.add_parser("rebuild-index", help="Rebuild the code-addressable index tree.")
    p.add_argument("--backend", default="symlink", choices=BackendRegistry.available_backends())
    p.set_defaults(func=_cmd_rebuild_index)

    p = subparsers.add_parser("validate", help="Run the structural integrity checks.")
    p.add_argument("--strict", action="store_true", help="Fail on warnings too.")
    p.add_argument("--exit-on-error", action="store_true", help="Stop after the first failing check.")
    p.add_argument("--summary-limit", type=int, default=None, metavar="BYTES")
    p.add_argument("--abstract-limit", type=int, default=None, metavar="BYTES")
    p.add_argument("--check-index", action="store_true", help="Also check the index tree.")
    p.add_argument("--json", action="store_true", help="Print the report as JSON.")
    p.set_defaults(func=_cmd_validate)

    return parser


def _load_config(args: argparse.Namespace) -> StrataConfig:
    if args.config is not None:
        return StrataConfig.from_file(args.config)
    return StrataConfig.from_project(args.project or Path.cwd())


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        args.strata_config = _load_config(args)
    except (OSError, ValueError, KeyError) as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        return EXIT_USAGE

    try:
        return args.func(args)
    except (InvalidCodeError, UnsafePathError) as exc:
        _report(exc)
        return EXIT_USAGE
    except (StrataError, ValueError, OSError) as exc:
        _report(exc)
        return EXIT_FAILURE


def _report(exc: Exception) -> None:
    friendly = ErrorFormatter().format(exc, component="cli")
    logger.debug("Command failed: %s", friendly.technical_detail)
    err_console.print(f"[red]Error:[/red] {escape(friendly.message)}")
    err_console.print(f"[dim]{friendly.suggestion}[/dim]")


if __name__ == "__main__":
    sys.exit(main())
