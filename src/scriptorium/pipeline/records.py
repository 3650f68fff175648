"""
Record and batch data model.

A Record is one document job moving through the pipeline. It carries its
identity, the state machine fields (current stage, errors, processing log)
and a side map of stage artifacts keyed by stage, so stages stay decoupled
from each other's output shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


class Stage(str, Enum):
    """Pipeline stages in execution order."""

    INITIALIZED = "Initialized"
    KEY_ROTATION = "Key Rotation"
    EXTRACTION = "Extraction"
    TRANSLATION = "Translation"
    STRUCTURING = "Structuring"
    PERSISTENCE = "Persistence"
    DONE = "Done"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StageError:
    """
    Error recorded against a record.

    Attributes:
        stage: Stage that produced the error
        message: Human-readable description
        timestamp: When the error was recorded (UTC)
    """

    stage: Stage
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class LogEntry:
    """One processing-log entry, written on every stage transition."""

    stage: Stage
    success: bool
    timestamp: datetime


@dataclass(frozen=True)
class StageResult:
    """
    Outcome of one stage execution.

    Transient: folded into the Record by Record.apply() and then dropped.

    Attributes:
        stage: Stage that produced the result
        success: Whether the stage succeeded
        error: Error message for a failed stage
        artifact: Value produced by the stage (kept even on partial failure)
        failures: Per-item failures for multi-item stages (e.g. language -> message)
    """

    stage: Stage
    success: bool
    error: str | None = None
    artifact: Any = None
    failures: dict[str, str] = field(default_factory=dict)

    @classmethod
    def ok(cls, stage: Stage, artifact: Any = None) -> StageResult:
        return cls(stage=stage, success=True, artifact=artifact)

    @classmethod
    def failure(
        cls,
        stage: Stage,
        error: str,
        *,
        artifact: Any = None,
        failures: dict[str, str] | None = None,
    ) -> StageResult:
        return cls(
            stage=stage,
            success=False,
            error=error,
            artifact=artifact,
            failures=dict(failures or {}),
        )

    def error_messages(self) -> list[str]:
        """Messages to append to the record, one per failing item."""
        if self.success:
            return []
        if self.failures:
            return list(self.failures.values())
        return [self.error or "stage failed"]


@dataclass
class Record:
    """
    One document job.

    The record is owned by a single worker while it is processed, so it is
    not locked. Errors are append-only and all_stages_succeeded is derived
    from them, so a record that failed can never succeed again.
    """

    job_id: str
    source: str
    languages: tuple[str, ...] | None = None
    row_index: int = 0
    book_name: str = ""
    original_status: str = ""
    raw_languages: str = ""
    status: str = ""
    current_stage: Stage = Stage.INITIALIZED
    started_at: datetime | None = None
    finished_at: datetime | None = None
    artifacts: dict[Stage, Any] = field(default_factory=dict)
    _errors: list[StageError] = field(default_factory=list, repr=False)
    _log: list[LogEntry] = field(default_factory=list, repr=False)

    @property
    def errors(self) -> tuple[StageError, ...]:
        return tuple(self._errors)

    @property
    def processing_log(self) -> tuple[LogEntry, ...]:
        return tuple(self._log)

    @property
    def all_stages_succeeded(self) -> bool:
        return not self._errors

    def has_errors(self) -> bool:
        return bool(self._errors)

    @property
    def failed_stage(self) -> Stage | None:
        """Stage of the first recorded error, if any."""
        if not self._errors:
            return None
        return self._errors[0].stage

    def add_error(self, stage: Stage, message: str) -> None:
        self._errors.append(StageError(stage=stage, message=message, timestamp=utcnow()))

    def log_transition(self, stage: Stage, success: bool) -> LogEntry:
        entry = LogEntry(stage=stage, success=success, timestamp=utcnow())
        self._log.append(entry)
        return entry

    def apply(self, result: StageResult) -> None:
        """Fold a stage result into the record."""
        if result.artifact is not None:
            self.artifacts[result.stage] = result.artifact
        for message in result.error_messages():
            self.add_error(result.stage, message)
        if result.success and result.stage is Stage.PERSISTENCE and self.finished_at is None:
            self.finished_at = utcnow()

    # Typed views over the artifact map

    @property
    def resource(self) -> str | None:
        return self.artifacts.get(Stage.KEY_ROTATION)

    @property
    def extracted_text(self) -> str | None:
        return self.artifacts.get(Stage.EXTRACTION)

    @property
    def translations(self) -> dict[str, str]:
        return dict(self.artifacts.get(Stage.TRANSLATION) or {})

    @property
    def structured(self) -> dict[str, Any] | None:
        return self.artifacts.get(Stage.STRUCTURING)

    @property
    def persisted_location(self) -> str | None:
        return self.artifacts.get(Stage.PERSISTENCE)

    def to_dict(self) -> dict[str, Any]:
        """Structured view of the record, without the API key."""
        return {
            "fileId": self.job_id,
            "rowIndex": self.row_index,
            "source": self.source,
            "targetLangs": list(self.languages or ()),
            "bookName": self.book_name,
            "status": self.status,
            "currentStage": self.current_stage.value,
            "allStagesSuccess": self.all_stages_succeeded,
            "processingStartTime": _iso(self.started_at),
            "processingEndTime": _iso(self.finished_at),
            "extractedText": self.extracted_text,
            "translations": self.translations,
            "structuredData": self.structured,
            "persistedLocation": self.persisted_location,
            "errors": [
                {
                    "stage": e.stage.value,
                    "message": e.message,
                    "timestamp": e.timestamp.isoformat(),
                }
                for e in self._errors
            ],
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class BatchJob:
    """
    Ordered records read from one manifest.

    Attributes:
        records: Records in manifest row order
        manifest_path: Manifest the records were read from
        output_path: Where the manifest is written back
    """

    records: list[Record]
    manifest_path: Path | None = None
    output_path: Path | None = None

    def __len__(self) -> int:
        return len(self.records)
