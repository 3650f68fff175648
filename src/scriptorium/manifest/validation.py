"""
Validation for manifests.

Checks the minimal structure the pipeline needs before any record is
dispatched. Problems are collected rather than raised one at a time so a
user can fix a manifest in one pass.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from .models import REQUIRED_COLUMNS, ManifestRow


@dataclass(frozen=True)
class ValidationIssue:
    """
    Represents a validation problem.

    Attributes:
        path: Location of the problem (e.g. "rows[2].fileId")
        message: Human-readable description of the issue
    """

    path: str
    message: str


class ManifestError(ValueError):
    """Raised when a manifest cannot be processed; carries every issue found."""

    def __init__(self, issues: Sequence[ValidationIssue], *, manifest: str | None = None):
        self.issues = list(issues)
        self.manifest = manifest
        where = f" in {manifest}" if manifest else ""
        super().__init__(f"{len(self.issues)} manifest issue(s){where}")


def validate_columns(fieldnames: Sequence[str] | None) -> list[ValidationIssue]:
    """Check that the header has every required column."""
    present = set(fieldnames or [])
    return [
        ValidationIssue("header", f"Missing required column: {column}")
        for column in REQUIRED_COLUMNS
        if column not in present
    ]


def validate_rows(rows: Sequence[ManifestRow]) -> list[ValidationIssue]:
    """
    Validate manifest rows for pipeline requirements.

    Checks that the manifest:
    - Has at least one row
    - Has a non-empty fileId on every row
    - Has a non-empty targetLangs on every row ("none" for no translation)
    - Has no duplicate fileId values

    Parameters:
        rows: Parsed manifest rows, in file order

    Returns:
        List of validation issues (empty if valid)

    Example:
        >>> issues = validate_rows(rows)
        >>> for issue in issues:
        ...     print(f"{issue.path}: {issue.message}")
    """
    issues: list[ValidationIssue] = []

    if not rows:
        issues.append(ValidationIssue("rows", "Manifest has no rows."))
        return issues

    for i, row in enumerate(rows):
        if not row.file_id:
            issues.append(ValidationIssue(f"rows[{i}].fileId", "Missing or empty fileId."))
        if not row.target_langs:
            issues.append(
                ValidationIssue(f"rows[{i}].targetLangs", "Missing or empty targetLangs.")
            )

    counts = Counter(row.file_id for row in rows if row.file_id)
    for file_id, count in counts.items():
        if count > 1:
            issues.append(
                ValidationIssue("rows[*].fileId", f"Duplicate fileId {file_id!r} ({count} rows).")
            )

    return issues
