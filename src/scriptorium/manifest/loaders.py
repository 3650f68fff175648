"""
Reading and writing manifest CSV files.

Provides functions to load a manifest into a validated BatchJob and to write
the processed records back, one row per record.
"""

from __future__ import annotations

from csv import DictReader, DictWriter
from pathlib import Path
from typing import Any, Iterable, Sequence
import logging

from pydantic import ValidationError

from scriptorium.pipeline.records import BatchJob, Record
from scriptorium.pipeline.report import error_summary

from .models import OUTPUT_COLUMNS, ManifestRow
from .validation import ManifestError, ValidationIssue, validate_columns, validate_rows


LOGGER = logging.getLogger(__name__)


def load_rows(path: Path) -> tuple[list[str], list[dict[str, Any]]]:
    """
    Read raw CSV rows.

    Returns:
        (header field names, list of row dicts)

    Raises:
        FileNotFoundError: If the manifest doesn't exist
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = DictReader(f)
        rows = [row for row in reader]
        return list(reader.fieldnames or []), rows


def parse_rows(raw_rows: Iterable[dict[str, Any]]) -> tuple[list[ManifestRow], list[ValidationIssue]]:
    """Parse raw rows into models, collecting an issue for each row that fails."""
    rows: list[ManifestRow] = []
    issues: list[ValidationIssue] = []
    for i, raw in enumerate(raw_rows):
        try:
            # DictReader files surplus cells under a None key
            cleaned = {k: v for k, v in raw.items() if k is not None}
            rows.append(ManifestRow.model_validate(cleaned))
        except ValidationError as e:
            issues.append(ValidationIssue(f"rows[{i}]", str(e)))
    return rows, issues


def read_manifest(path: Path, *, output_path: Path | None = None) -> BatchJob:
    """
    Load, validate and convert a manifest into a batch.

    Parameters:
        path: Manifest CSV path
        output_path: Where results are written back (defaults to ``path``)

    Returns:
        BatchJob with one Record per row, in row order

    Raises:
        FileNotFoundError: If the manifest doesn't exist
        ManifestError: If the manifest fails validation

    Example:
        >>> batch = read_manifest(Path("jobs/manifest.csv"))
        >>> [r.job_id for r in batch.records]
        ['doc-001.pdf', 'doc-002.pdf']
    """
    path = Path(path).expanduser()
    fieldnames, raw_rows = load_rows(path)

    issues = validate_columns(fieldnames)
    rows, parse_issues = parse_rows(raw_rows)
    issues.extend(parse_issues)
    if not parse_issues:
        issues.extend(validate_rows(rows))
    if issues:
        raise ManifestError(issues, manifest=str(path))

    base_dir = path.parent
    records = [row.to_record(i, base_dir=base_dir) for i, row in enumerate(rows)]
    LOGGER.info("manifest_read", extra={"path": str(path), "records": len(records)})
    return BatchJob(records=records, manifest_path=path, output_path=output_path or path)


def manifest_row(record: Record) -> dict[str, str]:
    """Output row for a processed record."""
    return {
        "fileId": record.job_id,
        "targetLangs": record.raw_languages or ",".join(record.languages or ()),
        "bookName": record.book_name,
        "status": record.status,
        "errorMessage": error_summary(record),
    }


def write_manifest(path: Path, records: Sequence[Record]) -> Path:
    """
    Write processed records to a manifest CSV, one row per record.

    Parameters:
        path: Output CSV path (overwritten)
        records: Records in manifest row order

    Returns:
        The written path
    """
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = DictWriter(f, fieldnames=list(OUTPUT_COLUMNS))
        writer.writeheader()
        for record in records:
            writer.writerow(manifest_row(record))

    LOGGER.info("manifest_written", extra={"path": str(path), "records": len(records)})
    return path
