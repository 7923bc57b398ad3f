"""Hardening utilities shared by the Strata surfaces.

Provides path containment checks that keep resolved fragment, index,
and output paths inside their configured roots, and user-friendly
formatting of corpus errors for the CLI and HTTP layers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

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

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Path containment
# ---------------------------------------------------------------------------


class UnsafePathError(ValueError):
    """Raised when a path escapes its root."""


def is_subpath(child: Path, parent: Path) -> bool:
    """Return True when *child* is under *parent*.

    Args:
        child: Resolved candidate path.
        parent: Resolved base directory.

    Returns:
        True if child is equal to or nested inside parent.
    """
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


class PathGuard:
    """Confine paths to a single root directory.

    Symlinks are not followed when checking containment of the link
    itself, so index leaves pointing into the corpus are accepted while
    the link location must still sit under the guarded root.

    Args:
        root: Directory every checked path must stay within.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        """Resolved root directory."""
        return self._root

    def check(self, path: str | Path) -> Path:
        """Verify that *path* lies under the root.

        Args:
            path: Absolute or root-relative path.

        Returns:
            The path with its parent directories resolved.

        Raises:
            UnsafePathError: If the path is outside the root.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        # Resolve the parent only so a symlink leaf is judged by its location
        located = candidate.parent.resolve() / candidate.name
        if not is_subpath(located, self._root):
            logger.warning("Rejected path outside %s: %s", self._root, path)
            raise UnsafePathError(f"Path is outside {self._root.name}/.")
        return located


# ---------------------------------------------------------------------------
# 2. Error formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (codec, store, index, ...).
        error_code: Machine-readable identifier (e.g. "CODE_002").
        http_status: Status code used by the HTTP surface.
        technical_detail: Debugging info for logs only.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    http_status: int = 500
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert corpus and OS exceptions to user-friendly messages."""

    def format(self, error: Exception, component: str = "strata") -> UserFriendlyError:
        """Format any error raised by a Strata component.

        Args:
            error: The caught exception.
            component: Subsystem name used in the error code.

        Returns:
            User-friendly error with actionable suggestion.
        """
        message, suggestion, suffix, status = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{component.upper()}_{suffix}",
            http_status=status,
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str, int]:
    """Map an exception to (message, suggestion, code_suffix, http_status).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion, error code suffix, and status.
    """
    if isinstance(error, InvalidCodeError):
        return (
            str(error),
            "Codes are the tag followed by an even number of digits, e.g. BCS0102.",
            "002",
            400,
        )
    if isinstance(error, NotFoundError):
        return (
            str(error),
            "List available codes with 'strata codes' and check the tier.",
            "001",
            404,
        )
    if isinstance(error, FormatError):
        return (
            str(error),
            "Name fragments NN-slug.<tier>.md with a zero-padded 2-digit prefix.",
            "003",
            422,
        )
    if isinstance(error, DuplicateCodeError):
        return (
            str(error),
            "Renumber one of the fragments so every code is unique.",
            "004",
            409,
        )
    if isinstance(error, TierMismatchError):
        return (
            str(error),
            "Derive the missing summary/abstract tiers for the fragment.",
            "005",
            409,
        )
    if isinstance(error, SizeLimitError):
        return (
            str(error),
            "Shorten the derived text or raise the tier size limit.",
            "006",
            413,
        )
    if isinstance(error, PartialFailureError):
        return (
            str(error),
            "Fix the listed entries and run the operation again.",
            "007",
            500,
        )
    if isinstance(error, UnsafePathError):
        return (str(error), "Use a path inside the corpus.", "008", 400)
    if isinstance(error, PermissionError):
        return (
            "Permission denied when accessing the corpus.",
            "Check file permissions and ensure the application has access.",
            "010",
            500,
        )
    if isinstance(error, FileNotFoundError):
        return (
            "A required file could not be found.",
            "Check that the configured directories exist.",
            "011",
            404,
        )
    if isinstance(error, StrataError):
        return (str(error), "See the logs for details.", "090", 500)
    if isinstance(error, ValueError):
        return (
            str(error) or "Invalid input was provided.",
            "Check the input values and try again.",
            "012",
            400,
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
        500,
    )
