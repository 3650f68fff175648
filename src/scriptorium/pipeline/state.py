"""
Record state machine.

Stages run in strict forward order. A record advances only while every
stage so far succeeded; the first failure stops it where it is.
"""

from __future__ import annotations

from .records import Stage


TRANSITIONS: dict[Stage, Stage] = {
    Stage.INITIALIZED: Stage.KEY_ROTATION,
    Stage.KEY_ROTATION: Stage.EXTRACTION,
    Stage.EXTRACTION: Stage.TRANSLATION,
    Stage.TRANSLATION: Stage.STRUCTURING,
    Stage.STRUCTURING: Stage.PERSISTENCE,
    Stage.PERSISTENCE: Stage.DONE,
}

# Stages that need an executor, in order.
EXECUTABLE_STAGES: tuple[Stage, ...] = (
    Stage.KEY_ROTATION,
    Stage.EXTRACTION,
    Stage.TRANSLATION,
    Stage.STRUCTURING,
    Stage.PERSISTENCE,
)


def next_stage(current: Stage, succeeded: bool) -> Stage | None:
    """
    Return the stage that follows ``current``, or None to stop.

    Parameters:
        current: Stage that just ran (or Initialized before the first stage)
        succeeded: Whether ``current`` completed without errors

    Returns:
        The next stage, or None when the record must stop advancing
        (the stage failed, or ``current`` is Done)

    Example:
        >>> next_stage(Stage.EXTRACTION, True)
        <Stage.TRANSLATION: 'Translation'>
        >>> next_stage(Stage.EXTRACTION, False) is None
        True
    """
    if not succeeded:
        return None
    return TRANSITIONS.get(current)


def is_terminal(stage: Stage, succeeded: bool) -> bool:
    """A record is terminal at Done, or at any stage once it has failed."""
    return stage is Stage.DONE or not succeeded
