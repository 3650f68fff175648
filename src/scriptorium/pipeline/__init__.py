"""
Pipeline module for scriptorium batch processing.

Provides the record model, stage state machine, key rotation, stage
executors, the batch coordinator and completion reporting. The pieces can
be wired by the CLI or used directly by other orchestration code.
"""
