"""Tests for shared.hardening utilities.

Covers both components: path containment and error formatting.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from shared.hardening import (
    ErrorFormatter,
    PathGuard,
    UnsafePathError,
    UserFriendlyError,
    _classify_error,
    is_subpath,
)
from strata.src.errors import (
    DuplicateCodeError,
    FormatError,
    InvalidCodeError,
    NotFoundError,
    PartialFailureError,
    SizeLimitError,
    StrataError,
    TierMismatchError,
)

# =========================================================================
# 1. Path containment
# =========================================================================


class TestIsSubpath:
    """Tests for the is_subpath helper."""

    def test_child_inside_parent(self, tmp_path: Path) -> None:
        assert is_subpath(tmp_path / "a" / "b", tmp_path) is True

    def test_same_path(self, tmp_path: Path) -> None:
        assert is_subpath(tmp_path, tmp_path) is True

    def test_sibling_with_common_prefix(self, tmp_path: Path) -> None:
        """A sibling sharing a name prefix is not nested."""
        assert is_subpath(tmp_path / "data-old", tmp_path / "data") is False


class TestPathGuard:
    """Tests for PathGuard containment checks."""

    def test_root_is_resolved(self, tmp_path: Path) -> None:
        guard = PathGuard(tmp_path / "x" / "..")
        assert guard.root == tmp_path.resolve()

    def test_check_outside_root(self, tmp_path: Path) -> None:
        guard = PathGuard(tmp_path / "root")
        with pytest.raises(UnsafePathError):
            guard.check(tmp_path / "elsewhere" / "file.md")

    def test_unsafe_path_is_value_error(self) -> None:
        assert issubclass(UnsafePathError, ValueError)

    def test_symlink_leaf_judged_by_location(self, tmp_path: Path) -> None:
        """A link inside the root may point outside it."""
        root = tmp_path / "index"
        root.mkdir()
        outside = tmp_path / "corpus.md"
        outside.write_text("x")
        link = root / "01.complete.md"
        os.symlink(outside, link)
        assert PathGuard(root).check(link) == root.resolve() / "01.complete.md"

    def test_symlinked_parent_escape_rejected(self, tmp_path: Path) -> None:
        """A directory link inside the root cannot smuggle paths out."""
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "other").mkdir()
        os.symlink(tmp_path / "other", root / "escape")
        with pytest.raises(UnsafePathError):
            PathGuard(root).check(root / "escape" / "file.md")


# =========================================================================
# 2. Error formatting
# =========================================================================


class TestUserFriendlyError:
    """Tests for UserFriendlyError serialization."""

    def test_to_dict_excludes_technical_detail(self) -> None:
        err = UserFriendlyError(
            message="m",
            suggestion="s",
            component="codec",
            error_code="CODEC_002",
            http_status=400,
            technical_detail="secret traceback",
        )
        data = err.to_dict()
        assert data == {"message": "m", "suggestion": "s", "component": "codec", "error_code": "CODEC_002"}


class TestErrorFormatter:
    """Tests for ErrorFormatter.format."""

    def setup_method(self) -> None:
        """Create a formatter for each test."""
        self.fmt = ErrorFormatter()

    def test_component_in_error_code(self) -> None:
        result = self.fmt.format(InvalidCodeError("BCS1", "odd digit count"), component="codec")
        assert result.component == "codec"
        assert result.error_code == "CODEC_002"
        assert result.http_status == 400
        assert "BCS1" in result.message

    def test_default_component(self) -> None:
        result = self.fmt.format(NotFoundError("No complete fragment for BCS0199"))
        assert result.error_code == "STRATA_001"

    def test_technical_detail_contains_repr(self) -> None:
        result = self.fmt.format(ValueError("bad value 42"))
        assert "bad value 42" in result.technical_detail

    def test_permission_message_hides_path(self) -> None:
        result = self.fmt.format(PermissionError("/srv/private/data"))
        assert "/srv/private" not in result.message
        assert result.http_status == 500

    def test_unexpected_error(self) -> None:
        result = self.fmt.format(RuntimeError("boom"), component="index")
        assert result.error_code == "INDEX_999"
        assert "boom" not in result.message


class TestClassifyError:
    """Status and code mapping per exception type."""

    @pytest.mark.parametrize(
        "error, suffix, status",
        [
            (InvalidCodeError("X", "bad"), "002", 400),
            (NotFoundError("missing"), "001", 404),
            (FormatError("bad name", segment="1-x"), "003", 422),
            (DuplicateCodeError("BCS01", ["a", "b"]), "004", 409),
            (TierMismatchError("a.complete.md", ["summary"]), "005", 409),
            (SizeLimitError("a.abstract.md", 2000, 1500), "006", 413),
            (PartialFailureError("rebuild", [("a", "b")]), "007", 500),
            (UnsafePathError("outside"), "008", 400),
            (FileNotFoundError("x"), "011", 404),
            (StrataError("generic"), "090", 500),
            (ValueError("bad"), "012", 400),
        ],
    )
    def test_mapping(self, error: Exception, suffix: str, status: int) -> None:
        _message, _suggestion, code_suffix, http_status = _classify_error(error)
        assert code_suffix == suffix
        assert http_status == status

    def test_every_result_has_suggestion(self) -> None:
        for error in (NotFoundError("x"), OSError("x"), KeyError("x")):
            _message, suggestion, _suffix, _status = _classify_error(error)
            assert suggestion
