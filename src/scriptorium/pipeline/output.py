"""
Local output files.

Handles naming and writing of per-record results, per-record error logs,
batch summaries and the JSONL processing log under an output directory.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
import json
import re
from typing import Any

from .records import Record, utcnow


ERRORS_SUBDIR = "errors"
PROCESSING_LOG_FILENAME = "processing_log.jsonl"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


def safe_name(job_id: str) -> str:
    """
    Make a job id safe for use in a filename.

    Every character outside ``[a-zA-Z0-9]`` becomes an underscore.

    Example:
        >>> safe_name("books/vol 1.pdf")
        'books_vol_1_pdf'
    """
    return _UNSAFE_CHARS.sub("_", job_id)


def results_path(job_id: str, output_dir: Path) -> Path:
    return output_dir / f"results_{safe_name(job_id)}.json"


def error_log_path(job_id: str, output_dir: Path) -> Path:
    return output_dir / ERRORS_SUBDIR / f"error_{safe_name(job_id)}.txt"


def batch_summary_path(output_dir: Path, when: datetime | None = None) -> Path:
    stamp = (when or utcnow()).strftime("%Y%m%d_%H%M%S")
    return output_dir / f"batch_summary_{stamp}.json"


def write_json(path: Path, payload: dict[str, Any]) -> Path:
    """Write ``payload`` as pretty-printed UTF-8 JSON, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


def results_payload(record: Record) -> dict[str, Any]:
    """Document persisted for a record by the persistence stage."""
    return {
        "fileId": record.job_id,
        "bookName": record.book_name,
        "processingDate": record.started_at.isoformat() if record.started_at else None,
        "extractedText": record.extracted_text,
        "translations": record.translations,
        "structuredData": record.structured,
        "errors": [
            {"stage": e.stage.value, "message": e.message, "timestamp": e.timestamp.isoformat()}
            for e in record.errors
        ],
    }


def write_results(record: Record, output_dir: Path) -> Path:
    """
    Persist a record's results as JSON.

    Returns:
        Path to the written file

    Example:
        >>> path = write_results(record, Path("output"))
        >>> path.name
        'results_doc_001.json'
    """
    return write_json(results_path(record.job_id, output_dir), results_payload(record))


def render_error_log(record: Record) -> str:
    lines = [
        f"Error Log for File: {record.job_id}",
        f"Processing Date: {record.started_at.isoformat() if record.started_at else ''}",
        "",
    ]
    for error in record.errors:
        lines.append(f"Stage: {error.stage.value}")
        lines.append(f"Error: {error.message}")
        lines.append(f"Timestamp: {error.timestamp.isoformat()}")
        lines.append("")
    return "\n".join(lines)


def write_error_log(record: Record, output_dir: Path) -> Path:
    """Write the plain-text error log for a record with errors."""
    path = error_log_path(record.job_id, output_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_error_log(record), encoding="utf-8")
    return path


def append_record(output_path: Path, record: dict[str, Any]) -> None:
    """
    Append a record to a JSONL file.

    Writes a single JSON record as one line to the output file.
    Creates parent directories if they don't exist.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")
