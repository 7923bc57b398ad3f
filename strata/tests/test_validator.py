"""Tests for the corpus validator."""

from __future__ import annotations

import dataclasses
import shutil

import pytest

from strata.src.errors import NotFoundError, StrataError
from strata.src.index import IndexBuilder
from strata.src.models import Severity, Tier
from strata.src.store import TierStore
from strata.src.validator import ValidationIssue, ValidationReport, Validator
from strata.tests.conftest import write_fragment

# ===================================================================
# Helpers
# ===================================================================


def _validate(store, **kwargs) -> ValidationReport:
    return Validator(store, **kwargs).validate()


def _checks(report: ValidationReport, severity: Severity | None = None) -> set[str]:
    return {i.check for i in report.issues if severity is None or i.severity == severity}


def _with_config(config, **changes) -> TierStore:
    return TierStore(dataclasses.replace(config, **changes))


# ===================================================================
# Report
# ===================================================================


class TestReport:
    """ValidationReport aggregation and exit codes."""

    def _report(self, *severities: Severity) -> ValidationReport:
        issues = [
            ValidationIssue(location="x", severity=s, message="m", check="naming", error_type="FormatError")
            for s in severities
        ]
        return ValidationReport(corpus_root=None, issues=issues, checks_run=["naming"])

    def test_clean(self):
        report = self._report()
        assert report.exit_code() == 0
        assert report.exit_code(strict=True) == 0
        assert report.check_status("naming") == "pass"

    def test_warning_fails_only_in_strict_mode(self):
        report = self._report(Severity.WARNING)
        assert report.exit_code() == 0
        assert report.exit_code(strict=True) == 1
        assert report.check_status("naming") == "warn"

    def test_error_fails(self):
        report = self._report(Severity.ERROR, Severity.WARNING)
        assert report.exit_code() == 1
        assert report.error_count == 1
        assert report.warning_count == 1
        assert set(report.issues_by_severity) == {Severity.ERROR, Severity.WARNING}

    def test_issue_round_trip(self):
        issue = ValidationIssue("a/b", Severity.WARNING, "msg", "size-limits", "SizeLimitError")
        assert ValidationIssue.from_dict(issue.to_dict()) == issue


# ===================================================================
# Clean corpus
# ===================================================================


class TestCleanCorpus:
    """The sample corpus passes every check."""

    def test_no_issues(self, store):
        report = _validate(store)
        assert report.issues == []
        assert report.exit_code(strict=True) == 0

    def test_all_checks_run_in_order(self, store):
        report = _validate(store)
        assert report.checks_run == [
            "corpus-root",
            "tier-completeness",
            "zero-padding",
            "index-fragments",
            "code-uniqueness",
            "naming",
            "alpha-suffix",
            "section-count",
            "round-trip",
            "header-fragments",
            "size-limits",
        ]

    def test_index_check_added_with_builder(self, store):
        builder = IndexBuilder(store)
        builder.rebuild_index()
        report = _validate(store, index=builder)
        assert report.checks_run[-1] == "index-consistency"
        assert report.issues == []

    def test_to_dict(self, store):
        data = _validate(store).to_dict()
        assert data["status"] == "pass"
        assert data["errors"] == 0
        assert {c["status"] for c in data["checks"]} == {"pass"}


# ===================================================================
# Violations
# ===================================================================


class TestViolations:
    """Each check detects its violation."""

    def test_missing_root(self, store, corpus):
        shutil.rmtree(corpus)
        with pytest.raises(NotFoundError):
            _validate(store)

    def test_error_types_name_strata_errors(self, store, corpus):
        (corpus / "01-script-structure" / "01-layout.abstract.md").unlink()
        write_fragment(corpus, "01-script-structure/02-other", "Other")
        write_fragment(corpus, "misc/01-hidden-rule", "Hidden Rule")
        report = _validate(store)
        known = {cls.__name__ for cls in StrataError.__subclasses__()}
        assert {i.error_type for i in report.issues} <= known
        assert {"TierMismatchError", "DuplicateCodeError", "FormatError"} <= {i.error_type for i in report.issues}

    def test_missing_derived_tier(self, store, corpus):
        (corpus / "01-script-structure" / "01-layout.abstract.md").unlink()
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "tier-completeness"]
        assert len(issues) == 1
        assert issues[0].error_type == "TierMismatchError"
        assert issues[0].location == "01-script-structure/01-layout.complete.md"
        assert issues[0].message == "Missing abstract tier for: 01-script-structure/01-layout.complete.md"

    def test_unpadded_prefix(self, store, corpus):
        # Scenario C
        write_fragment(corpus, "01-script-structure/1-shebang", "Shebang")
        report = _validate(store)
        padding = [i for i in report.issues if i.check == "zero-padding"]
        assert len(padding) == 3
        assert all(i.severity == Severity.ERROR for i in padding)
        assert "naming" in _checks(report, Severity.ERROR)

    def test_missing_section_index(self, store, corpus):
        for tier in Tier.ordered():
            (corpus / "02-variables" / f"00-section{tier.suffix}").unlink()
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "index-fragments"]
        assert [i.location for i in issues] == ["02-variables"]
        assert issues[0].error_type == "FormatError"

    def test_section_index_missing_one_tier(self, store, corpus):
        (corpus / "02-variables" / "00-section.summary.md").unlink()
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "index-fragments"]
        assert len(issues) == 1
        assert issues[0].message == "Missing 00-section.summary.md in 02-variables"
        assert issues[0].error_type == "TierMismatchError"

    def test_subrule_directory_without_parent_rule(self, store, corpus):
        write_fragment(corpus, "02-variables/05-scoping/01-local", "Local")
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "index-fragments"]
        assert [i.location for i in issues] == ["02-variables/05-scoping"]

    def test_duplicate_codes(self, store, corpus):
        write_fragment(corpus, "01-script-structure/02-other", "Other")
        report = _validate(store)
        duplicates = [i for i in report.issues if i.check == "code-uniqueness"]
        assert len(duplicates) == 3
        assert all(i.error_type == "DuplicateCodeError" for i in duplicates)
        assert "BCS0102" in duplicates[0].message
        assert "round-trip" in _checks(report)

    def test_invalid_file_name(self, store, corpus):
        write_fragment(corpus, "01-script-structure/03-Bad_Name", "Bad")
        report = _validate(store)
        naming = [i for i in report.issues if i.check == "naming"]
        assert len(naming) == 3

    @pytest.mark.parametrize("directory", ["misc", "123-extra", "01_bad"])
    def test_fragment_under_unnumbered_directory(self, store, corpus, directory):
        write_fragment(corpus, f"{directory}/01-hidden-rule", "Hidden Rule")
        report = _validate(store)
        unaddressable = [
            i for i in report.issues if i.check == "round-trip" and i.location.startswith(f"{directory}/")
        ]
        assert len(unaddressable) == 3
        assert all(i.severity == Severity.ERROR for i in unaddressable)
        assert all(i.error_type == "FormatError" for i in unaddressable)
        assert report.exit_code() == 1

    @pytest.mark.parametrize("directory", ["123-extra", "01_bad", "03-Bad"])
    def test_invalid_numbered_directory_name(self, store, corpus, directory):
        write_fragment(corpus, f"{directory}/01-rule", "Rule")
        report = _validate(store)
        naming = [i for i in report.issues if i.check == "naming"]
        assert [i.location for i in naming] == [directory]
        assert naming[0].message == f"Invalid directory name: {directory}"

    def test_alpha_suffix(self, store, corpus):
        write_fragment(corpus, "01-script-structure/02a-extra", "Extra")
        report = _validate(store)
        assert len([i for i in report.issues if i.check == "alpha-suffix"]) == 3

    def test_missing_header(self, store, corpus):
        (corpus / "00-header.summary.md").unlink()
        report = _validate(store)
        headers = [i for i in report.issues if i.check == "header-fragments"]
        assert [i.location for i in headers] == ["00-header.summary.md"]
        assert headers[0].error_type == "NotFoundError"

    def test_section_gap_is_warning(self, store, corpus):
        write_fragment(corpus, "04-functions/00-section", "Functions")
        report = _validate(store)
        gaps = [i for i in report.issues if i.check == "section-count"]
        assert [i.location for i in gaps] == ["03"]
        assert gaps[0].severity == Severity.WARNING
        assert report.exit_code() == 0
        assert report.exit_code(strict=True) == 1

    def test_expected_sections(self, config):
        store = _with_config(config, expected_sections=["01", "02", "03"])
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "section-count"]
        assert [(i.location, i.severity) for i in issues] == [("03", Severity.ERROR)]

    def test_unexpected_section(self, config):
        store = _with_config(config, expected_sections=["01"])
        report = _validate(store)
        issues = [i for i in report.issues if i.check == "section-count"]
        assert [(i.location, i.severity) for i in issues] == [("02-variables", Severity.WARNING)]

    def test_tier_section_mismatch(self, store, corpus):
        write_fragment(corpus, "03-functions/00-section", "Functions", tiers=[Tier.COMPLETE])
        report = _validate(store)
        mismatches = [i for i in report.issues if i.check == "section-count"]
        assert {i.location for i in mismatches} == {"summary", "abstract"}

    def test_oversized_abstract_is_warning(self, config, corpus):
        (corpus / "02-variables" / "01-declarations.abstract.md").write_text("# Declarations\n" + "x" * 200)
        store = _with_config(config, size_limits={Tier.ABSTRACT: 100})
        report = _validate(store)
        sizes = [i for i in report.issues if i.check == "size-limits"]
        assert [i.location for i in sizes] == ["02-variables/01-declarations.abstract.md"]
        assert sizes[0].severity == Severity.WARNING
        assert sizes[0].error_type == "SizeLimitError"

    def test_size_limit_excludes_header(self, config, corpus):
        (corpus / "00-header.abstract.md").write_text("# Header\n" + "x" * 500)
        store = _with_config(config, size_limits={Tier.ABSTRACT: 100})
        report = _validate(store)
        assert "size-limits" not in _checks(report)

    def test_size_limit_boundary(self, config, corpus):
        path = corpus / "02-variables" / "01-declarations.summary.md"
        path.write_text("y" * 100)
        store = _with_config(config, size_limits={Tier.SUMMARY: 100})
        assert "size-limits" not in _checks(_validate(store))
        path.write_text("y" * 101)
        assert "size-limits" in _checks(_validate(store))

    def test_dangling_index_entry(self, store, corpus):
        builder = IndexBuilder(store)
        builder.rebuild_index()
        (corpus / "00-header.complete.md").unlink()
        report = _validate(store, index=builder)
        index_issues = [i for i in report.issues if i.check == "index-consistency"]
        assert [i.location for i in index_issues] == ["00.complete.md"]

    def test_unindexed_fragment(self, store, corpus):
        builder = IndexBuilder(store)
        builder.rebuild_index()
        write_fragment(corpus, "02-variables/02-arrays", "Arrays")
        report = _validate(store, index=builder)
        missing = [i for i in report.issues if i.check == "index-consistency"]
        assert len(missing) == 3
        assert all("BCS0202" in i.message for i in missing)


# ===================================================================
# Modes
# ===================================================================


class TestModes:
    """Collect-all versus fail-fast."""

    def _break(self, corpus):
        (corpus / "01-script-structure" / "01-layout.summary.md").unlink()
        (corpus / "00-header.abstract.md").unlink()

    def test_collect_all(self, store, corpus):
        self._break(corpus)
        report = Validator(store).validate(fail_fast=False)
        assert {"tier-completeness", "header-fragments"} <= _checks(report)
        assert not report.stopped_early

    def test_fail_fast(self, store, corpus):
        self._break(corpus)
        report = Validator(store).validate(fail_fast=True)
        assert _checks(report) == {"tier-completeness"}
        assert report.checks_run[-1] == "tier-completeness"
        assert report.stopped_early

    def test_fail_fast_from_config(self, config, corpus):
        self._break(corpus)
        report = Validator(_with_config(config, fail_fast=True)).validate()
        assert report.stopped_early

    def test_fail_fast_ignores_warnings(self, store, corpus):
        write_fragment(corpus, "04-functions/00-section", "Functions")
        report = Validator(store).validate(fail_fast=True)
        assert not report.stopped_early
