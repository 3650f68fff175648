"""
End-to-end batch run.

Reads a manifest, wires the stages and sinks from configuration, runs the
batch, and writes the manifest and batch summary back. This is the single
synchronous entry point used by the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import threading

from scriptorium.backends import GeminiBackend, TextExtractor, Translator
from scriptorium.config import PipelineConfig, load_prompts
from scriptorium.manifest import read_manifest, write_manifest

from .coordinator import BatchCoordinator
from .output import batch_summary_path, write_json
from .records import BatchJob
from .report import BatchSummary, summarize, summary_payload
from .rotation import KeySource, ResourceRotator, csv_key_source
from .sinks import ErrorLogWriter, LoggingSink, ProcessingLogWriter, SinkChain
from .stages import StageInputs, build_stages


LOGGER = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """
    Result of a batch run.

    Attributes:
        batch: Processed batch, records in manifest row order
        summary: Success/failure counts
        manifest_path: Where the manifest was written back
        summary_path: Batch summary JSON file
        key_usage: Allocations per API key
    """

    batch: BatchJob
    summary: BatchSummary
    manifest_path: Path
    summary_path: Path
    key_usage: dict[str, int]


def run_manifest(
    manifest: Path,
    config: PipelineConfig,
    *,
    out_manifest: Path | None = None,
    extractor: TextExtractor | None = None,
    translator: Translator | None = None,
    key_source: KeySource | None = None,
    cancel: threading.Event | None = None,
) -> RunOutcome:
    """
    Run every row of a manifest through the pipeline.

    Parameters:
        manifest: Manifest CSV path
        config: Pipeline configuration
        out_manifest: Where to write the manifest back (defaults to ``manifest``)
        extractor: OCR backend (defaults to a GeminiBackend built from config)
        translator: Translation backend (defaults to the same GeminiBackend)
        key_source: Key source (defaults to ``config.keys_csv``)
        cancel: Optional event that stops further dispatch

    Returns:
        RunOutcome for the batch

    Raises:
        FileNotFoundError: If the manifest doesn't exist
        ManifestError: If the manifest is invalid; nothing is dispatched

    Example:
        >>> outcome = run_manifest(Path("manifest.csv"), PipelineConfig(output_dir=Path("out")))
        >>> print(f"{outcome.summary.succeeded}/{outcome.summary.total} processed")
    """
    batch = read_manifest(manifest, output_path=out_manifest)

    output_dir = config.output_dir.expanduser()
    output_dir.mkdir(parents=True, exist_ok=True)

    if extractor is None or translator is None:
        backend = GeminiBackend(
            api_url=config.api_url,
            model=config.model,
            timeout=config.timeout,
            logger=logging.getLogger("scriptorium.backends"),
        )
        extractor = extractor or backend
        translator = translator or backend

    rotator = ResourceRotator(key_source or csv_key_source(config.keys_csv))
    stages = build_stages(
        rotator=rotator,
        extractor=extractor,
        translator=translator,
        output_dir=output_dir,
    )
    sink = SinkChain(
        [
            LoggingSink(detailed=config.detailed_logging),
            ErrorLogWriter(output_dir),
            ProcessingLogWriter(output_dir),
        ]
    )
    coordinator = BatchCoordinator(
        stages=stages,
        max_workers=config.max_workers,
        inputs=StageInputs(
            languages=config.default_languages,
            prompts=load_prompts(config.prompts_dir),
        ),
        sink=sink,
    )

    coordinator.run(batch, cancel=cancel)
    summary = summarize(batch)

    manifest_path = write_manifest(batch.output_path or manifest, batch.records)
    summary_path = write_json(batch_summary_path(output_dir), summary_payload(batch, summary))

    LOGGER.info(
        "run_finished",
        extra={
            "manifest": str(manifest_path),
            "summary": str(summary_path),
            "key_allocations": rotator.allocations,
        },
    )
    return RunOutcome(
        batch=batch,
        summary=summary,
        manifest_path=manifest_path,
        summary_path=summary_path,
        key_usage=rotator.usage(),
    )
