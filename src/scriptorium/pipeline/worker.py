"""
Single record processing worker.

Drives one record through the stage sequence. Designed to be called from the
batch coordinator's worker pool; the record is owned by the calling thread
for the whole call.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping
import logging
import time

from .records import Record, Stage, utcnow
from .stages import StageExecutor, StageInputs, run_stage
from .state import next_stage


LOGGER = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """
    Result of processing a single record.

    Attributes:
        job_id: Record identifier
        stages_run: Stages executed, in order
        failed_stage: Stage where processing stopped, if it failed
        elapsed_seconds: Total processing time
        success: Whether every stage succeeded
    """

    job_id: str
    stages_run: list[Stage]
    failed_stage: Stage | None
    elapsed_seconds: float
    success: bool


def process_record(
    record: Record,
    stages: Mapping[Stage, StageExecutor],
    inputs: StageInputs,
) -> ProcessingResult:
    """
    Run a record through every stage until one fails or Done is reached.

    Each stage is looked up by the state machine's next_stage(); a stage
    that fails leaves the record at that stage and no later stage runs.
    Every executed stage adds a processing-log entry to the record.

    Parameters:
        record: Record to process (mutated in place)
        stages: Executor for each stage
        inputs: Batch-wide stage inputs; the acquired key is added once
            Key Rotation succeeds

    Returns:
        ProcessingResult with the stages run and the outcome

    Example:
        >>> result = process_record(record, stages, StageInputs(languages=("de",)))
        >>> record.current_stage
        <Stage.DONE: 'Done'>
    """
    start_time = time.perf_counter()
    if record.started_at is None:
        record.started_at = utcnow()
    if record.languages is not None:
        inputs = replace(inputs, languages=record.languages)

    stages_run: list[Stage] = []
    stage = next_stage(record.current_stage, record.all_stages_succeeded)

    while stage is not None and stage is not Stage.DONE:
        record.current_stage = stage
        executor = stages.get(stage)
        if executor is None:
            record.add_error(stage, f"No executor configured for stage {stage.value}")
            record.log_transition(stage, False)
            stages_run.append(stage)
            break

        result = run_stage(executor, record, inputs)
        record.apply(result)
        entry = record.log_transition(stage, result.success and record.all_stages_succeeded)
        stages_run.append(stage)

        LOGGER.debug(
            "stage_completed",
            extra={"job_id": record.job_id, "stage": stage.value, "success": entry.success},
        )

        if stage is Stage.KEY_ROTATION and entry.success:
            inputs = replace(inputs, resource=record.resource)

        stage = next_stage(stage, entry.success)

    if stage is Stage.DONE:
        record.current_stage = Stage.DONE

    return ProcessingResult(
        job_id=record.job_id,
        stages_run=stages_run,
        failed_stage=record.failed_stage,
        elapsed_seconds=time.perf_counter() - start_time,
        success=record.all_stages_succeeded,
    )
