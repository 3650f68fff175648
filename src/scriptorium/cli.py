"""
Scriptorium CLI

Commands:
- run: Process every document job in a manifest
- validate: Validate a manifest without processing it
- keys: Report the API keys available for rotation
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from datetime import datetime, timezone

import typer
import logging

from pydantic import ValidationError

from scriptorium.backends import DEFAULT_API_URL, DEFAULT_MODEL
from scriptorium.config import PipelineConfig
from scriptorium.manifest import (
    ManifestError,
    ValidationIssue,
    load_rows,
    parse_rows,
    validate_columns,
    validate_rows,
)
from scriptorium.pipeline.coordinator import DEFAULT_MAX_WORKERS
from scriptorium.pipeline.rotation import load_keys_csv
from scriptorium.pipeline.runner import run_manifest

app = typer.Typer(add_completion=False, help="Scriptorium batch document processing")


# LogRecord attributes that are not `extra=` context
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Carries the worker thread name so interleaved lines from the pool can be
    told apart, plus every attribute passed via ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except TypeError:
                value = repr(value)
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str) -> logging.Logger:
    """Send the package's logs to stderr as JSON lines at ``level``."""
    logger = logging.getLogger("scriptorium")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.handlers = [handler]
    logger.propagate = False
    return logger


LOGGER = logging.getLogger("scriptorium")


def echo_issues(issues: list[ValidationIssue]) -> None:
    for i, issue in enumerate(issues, start=1):
        typer.echo(f"  {i:>3}. {issue.path}: {issue.message}", err=True)


@app.command("validate")
def validate_cmd(
    manifest: Path = typer.Argument(..., help="Manifest CSV path"),
) -> None:
    """Validate a manifest against pipeline requirements."""
    try:
        fieldnames, raw_rows = load_rows(manifest)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    issues = validate_columns(fieldnames)
    rows, parse_issues = parse_rows(raw_rows)
    issues.extend(parse_issues)
    if not parse_issues:
        issues.extend(validate_rows(rows))

    if issues:
        typer.echo(f"❌ Validation failed: {len(issues)} issue(s)\n", err=True)
        echo_issues(issues)
        raise typer.Exit(code=2)

    typer.echo(f"✅ Validation passed ({len(rows)} record(s)).")


@app.command("keys")
def keys_cmd(
    keys_csv: Path = typer.Argument(..., help="CSV file with an 'api_key' column"),
) -> None:
    """Report how many API keys are available for rotation."""
    try:
        keys = load_keys_csv(keys_csv)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    distinct = len(set(keys))
    typer.echo(f"Found {distinct} distinct key(s) ({len(keys)} row(s))")
    if distinct == 0:
        raise typer.Exit(code=1)


@app.command("run")
def run_cmd(
    manifest: Path = typer.Argument(..., help="Manifest CSV path"),
    keys_csv: Path = typer.Option(
        Path("keys.csv"), "--keys", help="CSV file with an 'api_key' column"
    ),
    output_dir: Path = typer.Option(
        Path("output"), "--output-dir", help="Directory for results, error logs and summaries"
    ),
    out_manifest: Path | None = typer.Option(
        None, "--out-manifest", help="Write the processed manifest here instead of in place"
    ),
    prompts_dir: Path | None = typer.Option(
        None, "--prompts-dir", help="Directory with prompt_ocr.txt / prompt_translate*.txt"
    ),
    max_workers: int = typer.Option(
        DEFAULT_MAX_WORKERS, "--max-workers", help="Maximum documents processed concurrently"
    ),
    languages: str = typer.Option(
        "", "--languages", help="Default target languages for rows that list none (comma-separated)"
    ),
    model: str = typer.Option(DEFAULT_MODEL, "--model", help="Model used for OCR and translation"),
    api_url: str = typer.Option(DEFAULT_API_URL, "--api-url", help="Generative-language API base URL"),
    timeout: float = typer.Option(120.0, "--timeout", help="Per-request timeout in seconds"),
    as_json: bool = typer.Option(
        False, "--json", help="Print the processed records as JSON instead of a summary"
    ),
    detailed: bool = typer.Option(
        False, "--detailed-logging", help="Log every stage error individually"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """
    Process every document job in a manifest.

    Each row is run through key rotation, text extraction, translation,
    structuring and persistence. The manifest is written back with a status
    and error summary per row, and a batch summary JSON is written to
    OUTPUT_DIR.

    Example:
        scriptorium run jobs/manifest.csv --keys keys.csv --output-dir out/ --max-workers 8
    """
    global LOGGER
    LOGGER = setup_logging(log_level)

    try:
        config = PipelineConfig(
            output_dir=output_dir.expanduser(),
            prompts_dir=prompts_dir.expanduser() if prompts_dir else None,
            keys_csv=keys_csv.expanduser(),
            max_workers=max_workers,
            default_languages=languages,
            api_url=api_url,
            model=model,
            timeout=timeout,
            detailed_logging=detailed,
        )
    except ValidationError as e:
        typer.echo(f"Error: invalid options:\n{e}", err=True)
        raise typer.Exit(code=1)

    LOGGER.info(
        "run_started",
        extra={
            "manifest": str(manifest),
            "output_dir": str(config.output_dir),
            "max_workers": config.max_workers,
            "model": config.model,
        },
    )

    try:
        outcome = run_manifest(manifest.expanduser(), config, out_manifest=out_manifest)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except ManifestError as e:
        LOGGER.error("manifest_invalid", extra={"manifest": e.manifest, "issues": len(e.issues)})
        typer.echo(f"❌ Invalid manifest: {e}\n", err=True)
        echo_issues(e.issues)
        raise typer.Exit(code=2)

    summary = outcome.summary

    if as_json:
        typer.echo(
            json.dumps(
                [record.to_dict() for record in outcome.batch.records],
                ensure_ascii=False,
                indent=2,
            )
        )
    else:
        typer.echo(f"\n{'='*60}")
        typer.echo("📊 Summary:")
        typer.echo(f"  Records: {summary.total}")
        typer.echo(f"  Processed: {summary.succeeded}")
        typer.echo(f"  Failed: {summary.failed}")
        typer.echo(f"  Manifest: {outcome.manifest_path}")
        typer.echo(f"  Batch summary: {outcome.summary_path}")

        if summary.failures:
            typer.echo(f"\n❌ Failed records ({summary.failed}):")
            for failure in summary.failures:
                typer.echo(f"  - {failure.job_id}: {'; '.join(failure.errors)}")

    if summary.failed:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
