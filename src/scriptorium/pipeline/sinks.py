"""
Completion sinks.

A sink is told about every completed record and, once, about the finished
batch. Sinks are called from worker threads, so each one must be safe to
call concurrently for different records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
import logging
import threading

from .output import PROCESSING_LOG_FILENAME, append_record, write_error_log
from .records import Record
from .report import BatchSummary


LOGGER = logging.getLogger(__name__)


class RecordSink(Protocol):
    def record_completed(self, record: Record) -> None:
        ...

    def batch_completed(self, summary: BatchSummary) -> None:
        ...


@dataclass
class LoggingSink:
    """Log record and batch completion through stdlib logging."""

    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("scriptorium.pipeline")
    )
    detailed: bool = False

    def record_completed(self, record: Record) -> None:
        extra = {
            "job_id": record.job_id,
            "stage": record.current_stage.value,
            "success": record.all_stages_succeeded,
            "error_count": len(record.errors),
        }
        if not record.has_errors():
            self.logger.info("record_completed", extra=extra)
            return

        extra["errors"] = [f"{e.stage.value}: {e.message}" for e in record.errors]
        self.logger.warning("record_failed", extra=extra)
        if self.detailed:
            for error in record.errors:
                self.logger.warning(
                    "record_stage_error",
                    extra={
                        "job_id": record.job_id,
                        "stage": error.stage.value,
                        "error": error.message,
                    },
                )

    def batch_completed(self, summary: BatchSummary) -> None:
        self.logger.info(
            "batch_completed",
            extra={
                "total": summary.total,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
            },
        )


@dataclass
class ErrorLogWriter:
    """Write a plain-text error log for every record that has errors."""

    output_dir: Path
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("scriptorium.pipeline")
    )

    def record_completed(self, record: Record) -> None:
        if not record.has_errors():
            return
        try:
            write_error_log(record, self.output_dir)
        except OSError:
            self.logger.exception("error_log_write_failed", extra={"job_id": record.job_id})

    def batch_completed(self, summary: BatchSummary) -> None:
        return None


@dataclass
class ProcessingLogWriter:
    """Append each record's stage transitions to a JSONL processing log."""

    output_dir: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def path(self) -> Path:
        return self.output_dir / PROCESSING_LOG_FILENAME

    def record_completed(self, record: Record) -> None:
        with self._lock:
            for entry in record.processing_log:
                append_record(
                    self.path,
                    {
                        "job_id": record.job_id,
                        "stage": entry.stage.value,
                        "success": entry.success,
                        "ts": entry.timestamp.isoformat(),
                    },
                )

    def batch_completed(self, summary: BatchSummary) -> None:
        with self._lock:
            append_record(
                self.path,
                {
                    "event": "batch_completed",
                    "total": summary.total,
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                },
            )


@dataclass
class SinkChain:
    """
    Forward every notification to several sinks, in order.

    A sink that raises is logged and skipped; the remaining sinks are still
    notified.
    """

    sinks: list[RecordSink] = field(default_factory=list)

    def record_completed(self, record: Record) -> None:
        for sink in self.sinks:
            try:
                sink.record_completed(record)
            except Exception:
                LOGGER.exception(
                    "record_sink_failed",
                    extra={"job_id": record.job_id, "sink": type(sink).__name__},
                )

    def batch_completed(self, summary: BatchSummary) -> None:
        for sink in self.sinks:
            try:
                sink.batch_completed(summary)
            except Exception:
                LOGGER.exception("batch_sink_failed", extra={"sink": type(sink).__name__})
