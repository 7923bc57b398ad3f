"""Exception taxonomy for Strata corpus operations.

Leaf components (codec, store) raise these immediately. The assembler
and index builder aggregate per-entry failures into a single
``PartialFailureError``. The validator records violations as report
data and names them by the class names defined here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class StrataError(Exception):
    """Base class for all Strata errors."""


class FormatError(StrataError):
    """Raised for a malformed fragment name or segment path.

    Attributes:
        segment: The offending path segment or file name.
    """

    def __init__(self, message: str, segment: str = "") -> None:
        self.segment = segment
        super().__init__(message)


class InvalidCodeError(StrataError):
    """Raised for a malformed code string.

    Attributes:
        code: The rejected code as given.
    """

    def __init__(self, code: str, reason: str) -> None:
        self.code = code
        super().__init__(f"Invalid code '{code}': {reason}")


class NotFoundError(StrataError):
    """Raised when no fragment exists at a resolved location.

    Attributes:
        code: Code that was being resolved, if any.
        tier: Tier name, if any.
        path: Location that was checked, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        tier: str = "",
        path: Path | None = None,
    ) -> None:
        self.code = code
        self.tier = tier
        self.path = path
        super().__init__(message)


class DuplicateCodeError(StrataError):
    """Raised when two fragments of one tier share a code.

    Attributes:
        code: The duplicated code.
        paths: Every fragment path mapping to the code.
    """

    def __init__(self, code: str, paths: list[str]) -> None:
        self.code = code
        self.paths = paths
        super().__init__(f"Duplicate code {code}: {', '.join(paths)}")


class TierMismatchError(StrataError):
    """Raised when a complete fragment lacks a derived tier.

    Attributes:
        path: Relative path of the complete fragment.
        missing: Tier names that are absent.
    """

    def __init__(self, path: str, missing: list[str]) -> None:
        self.path = path
        self.missing = missing
        super().__init__(f"Missing {', '.join(missing)} tier for: {path}")


class SizeLimitError(StrataError):
    """Raised when a fragment exceeds its tier byte budget.

    Attributes:
        path: Relative path of the fragment.
        size: Actual size in bytes.
        limit: Configured budget in bytes.
    """

    def __init__(self, path: str, size: int, limit: int) -> None:
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(f"{path} is {size} bytes (limit {limit})")


class PartialFailureError(StrataError):
    """Raised after a batch finished with recoverable per-entry failures.

    Attributes:
        failures: ``(location, reason)`` pairs, one per failed entry.
        result: The batch result produced despite the failures.
    """

    def __init__(
        self,
        operation: str,
        failures: list[tuple[str, str]],
        result: Any = None,
    ) -> None:
        self.operation = operation
        self.failures = failures
        self.result = result
        super().__init__(f"{operation} finished with {len(failures)} failure(s)")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the failure list."""
        return {
            "operation": self.operation,
            "failures": [{"location": loc, "reason": reason} for loc, reason in self.failures],
        }
