"""
Batch coordination.

Fans the records of a batch out to a bounded worker pool, waits until every
record has completed, and hands the batch back in manifest row order with
final statuses set.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Mapping
import logging
import threading

from .records import STATUS_FAILED, STATUS_PROCESSED, BatchJob, Record, Stage, utcnow
from .report import summarize
from .sinks import RecordSink
from .stages import StageExecutor, StageInputs
from .worker import process_record


LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
CANCELLED_MESSAGE = "batch cancelled before dispatch"


class CompletionBarrier:
    """
    Counting barrier released after exactly ``expected`` arrivals.

    Arrivals are tracked per record; a second arrival for the same record, or
    any arrival beyond ``expected``, raises RuntimeError. The first such
    violation is also kept in ``error`` and wakes any waiter.
    """

    def __init__(self, expected: int) -> None:
        if expected < 0:
            raise ValueError("expected must be >= 0")
        self.expected = expected
        self.error: RuntimeError | None = None
        self._arrived: list[Record] = []
        self._seen: set[int] = set()
        self._cond = threading.Condition()

    def arrive(self, record: Record) -> None:
        with self._cond:
            problem = None
            if id(record) in self._seen:
                problem = f"Record {record.job_id!r} completed twice"
            elif len(self._arrived) >= self.expected:
                problem = f"Barrier expected {self.expected} completions, got one more"
            if problem is not None:
                error = RuntimeError(problem)
                if self.error is None:
                    self.error = error
                self._cond.notify_all()
                raise error
            self._seen.add(id(record))
            self._arrived.append(record)
            if len(self._arrived) == self.expected:
                self._cond.notify_all()

    @property
    def count(self) -> int:
        with self._cond:
            return len(self._arrived)

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until every expected record arrived or an arrival was rejected.

        Returns False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self.error is not None or len(self._arrived) >= self.expected,
                timeout=timeout,
            )

    def arrived(self) -> list[Record]:
        """Records in completion order."""
        with self._cond:
            return list(self._arrived)


@dataclass
class BatchCoordinator:
    """
    Run every record of a batch through the stage sequence.

    Attributes:
        stages: Executor for each stage
        max_workers: Maximum number of records in flight at once
        inputs: Batch-wide read-only stage inputs (prompts, default languages)
        sink: Notified once per completed record and once per batch

    Example:
        >>> coordinator = BatchCoordinator(stages, max_workers=8)
        >>> batch = coordinator.run(read_manifest(Path("manifest.csv")))
        >>> summarize(batch).failed
        0
    """

    stages: Mapping[Stage, StageExecutor]
    max_workers: int = DEFAULT_MAX_WORKERS
    inputs: StageInputs = field(default_factory=StageInputs)
    sink: RecordSink | None = None

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    def run(self, batch: BatchJob, *, cancel: threading.Event | None = None) -> BatchJob:
        """
        Process the batch and return it once every record has completed.

        Dispatch blocks while ``max_workers`` records are in flight. When
        ``cancel`` is set, records already dispatched run to completion and
        the remaining records are completed as failed without running any
        stage.

        Parameters:
            batch: Batch to process; its records are mutated in place
            cancel: Optional event that stops further dispatch

        Returns:
            The same batch, records in manifest row order with status and
            end time set

        Raises:
            RuntimeError: If a record completes twice or the completion count
                does not match the batch size
        """
        total = len(batch.records)
        barrier = CompletionBarrier(total)
        slots = threading.BoundedSemaphore(self.max_workers)

        LOGGER.info(
            "batch_started",
            extra={"records": total, "max_workers": self.max_workers},
        )

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="scriptorium"
        ) as executor:
            for index, record in enumerate(batch.records):
                slots.acquire()
                if cancel is not None and cancel.is_set():
                    slots.release()
                    LOGGER.warning(
                        "batch_cancelled",
                        extra={"dispatched": index, "remaining": total - index},
                    )
                    for pending in batch.records[index:]:
                        pending.add_error(pending.current_stage, CANCELLED_MESSAGE)
                        self._complete(pending, barrier)
                    break

                future = executor.submit(self._run_unit, record)
                future.add_done_callback(
                    lambda f, r=record: self._unit_done(f, r, barrier, slots)
                )

            barrier.wait()

        if barrier.error is not None:
            raise barrier.error

        completed = barrier.arrived()
        if len(completed) != total:
            raise RuntimeError(f"Batch finished with {len(completed)} of {total} records")

        batch.records = sorted(completed, key=lambda r: r.row_index)
        for record in batch.records:
            finalize_record(record)

        summary = summarize(batch)
        LOGGER.info(
            "batch_finished",
            extra={
                "total": summary.total,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
            },
        )
        if self.sink is not None:
            self.sink.batch_completed(summary)
        return batch

    def _run_unit(self, record: Record) -> None:
        process_record(record, self.stages, self.inputs)

    def _unit_done(
        self,
        future: Future[None],
        record: Record,
        barrier: CompletionBarrier,
        slots: threading.BoundedSemaphore,
    ) -> None:
        try:
            exc = future.exception()
            if exc is not None:
                LOGGER.error(
                    "record_unit_failed",
                    exc_info=exc,
                    extra={"job_id": record.job_id},
                )
                record.add_error(record.current_stage, str(exc) or type(exc).__name__)
            self._complete(record, barrier)
        finally:
            slots.release()

    def _complete(self, record: Record, barrier: CompletionBarrier) -> None:
        try:
            if self.sink is not None:
                self.sink.record_completed(record)
        except Exception:
            LOGGER.exception("record_sink_failed", extra={"job_id": record.job_id})
        finally:
            barrier.arrive(record)


def finalize_record(record: Record) -> None:
    """Set the manifest status and stamp the end time if the record has none."""
    record.status = STATUS_PROCESSED if record.all_stages_succeeded else STATUS_FAILED
    if record.finished_at is None:
        record.finished_at = utcnow()
