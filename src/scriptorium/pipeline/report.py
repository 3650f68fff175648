"""
Batch completion reporting.

Read-only projections over finished records: counts, failure list, the
flattened error string written to the manifest, and the batch summary
document.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .records import BatchJob, Record, Stage, utcnow


@dataclass(frozen=True)
class RecordFailure:
    """
    A failed record in the batch summary.

    Attributes:
        job_id: Record identifier
        row_index: Manifest row of the record
        stage: Stage where the record stopped
        errors: ``"stage: message"`` strings, in the order recorded
    """

    job_id: str
    row_index: int
    stage: Stage | None
    errors: tuple[str, ...]


@dataclass(frozen=True)
class BatchSummary:
    total: int
    succeeded: int
    failed: int
    failures: tuple[RecordFailure, ...] = ()


def error_summary(record: Record) -> str:
    """
    Flatten a record's errors into one manifest cell.

    Example:
        >>> error_summary(record)
        'Translation: Failed to translate to fr: timeout; Translation: ...'
    """
    return "; ".join(f"{e.stage.value}: {e.message}" for e in record.errors)


def summarize(batch: BatchJob) -> BatchSummary:
    """
    Count succeeded and failed records.

    A record succeeded when it carries no errors. Calling this any number of
    times on the same batch gives the same summary.
    """
    failures = tuple(
        RecordFailure(
            job_id=r.job_id,
            row_index=r.row_index,
            stage=r.failed_stage,
            errors=tuple(f"{e.stage.value}: {e.message}" for e in r.errors),
        )
        for r in batch.records
        if not r.all_stages_succeeded
    )
    total = len(batch.records)
    return BatchSummary(
        total=total,
        succeeded=total - len(failures),
        failed=len(failures),
        failures=failures,
    )


def summary_payload(
    batch: BatchJob, summary: BatchSummary, *, when: datetime | None = None
) -> dict[str, Any]:
    """Batch summary document written next to the per-record results."""
    return {
        "batchSummary": {
            "totalFiles": summary.total,
            "successfulFiles": summary.succeeded,
            "failedFiles": summary.failed,
            "processingDate": (when or utcnow()).isoformat(),
            "manifest": str(batch.manifest_path) if batch.manifest_path else None,
        },
        "files": [
            {
                "fileId": r.job_id,
                "status": r.status,
                "hasErrors": r.has_errors(),
                "errorCount": len(r.errors),
            }
            for r in batch.records
        ],
        "failures": [
            {
                "fileId": f.job_id,
                "rowIndex": f.row_index,
                "stage": f.stage.value if f.stage else None,
                "errors": list(f.errors),
            }
            for f in summary.failures
        ],
    }
