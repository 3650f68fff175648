"""
Stage executors.

Every stage implements ``execute(record, inputs) -> StageResult``. Executors
read what they need from the record and the batch inputs and report failure
through the result; run_stage() guarantees that nothing raised inside a stage
escapes to the worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Protocol

from scriptorium.backends import TextExtractor, Translator
from scriptorium.config import Prompts

from .output import write_results
from .records import Record, Stage, StageResult
from .rotation import ResourceRotator
from .state import EXECUTABLE_STAGES


LOGGER = logging.getLogger(__name__)

NO_RESOURCE_MESSAGE = "no resource available"


@dataclass(frozen=True)
class StageInputs:
    """
    Read-only inputs shared with every stage of one record.

    Attributes:
        languages: Target languages for the record (batch default if the
            record lists none)
        prompts: Batch-wide prompt texts
        resource: API key acquired for the record, once Key Rotation ran
    """

    languages: tuple[str, ...] = ()
    prompts: Prompts = field(default_factory=Prompts)
    resource: str | None = None


class StageExecutor(Protocol):
    """Contract every pipeline stage implements."""

    stage: Stage

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        ...


def run_stage(executor: StageExecutor, record: Record, inputs: StageInputs) -> StageResult:
    """
    Execute a stage, converting any exception into a failed result.

    Results reported for a different stage than the executor's are
    re-labelled so errors always land on the stage that ran.
    """
    try:
        result = executor.execute(record, inputs)
    except Exception as e:
        LOGGER.exception(
            "stage_raised",
            extra={"job_id": record.job_id, "stage": executor.stage.value},
        )
        return StageResult.failure(executor.stage, str(e) or type(e).__name__)

    if result.stage is not executor.stage:
        result = StageResult(
            stage=executor.stage,
            success=result.success,
            error=result.error,
            artifact=result.artifact,
            failures=result.failures,
        )
    return result


@dataclass
class KeyRotationStage:
    """Acquire an API key for the record from the shared rotator."""

    rotator: ResourceRotator
    stage: Stage = Stage.KEY_ROTATION

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        key = self.rotator.acquire()
        if not key:
            return StageResult.failure(self.stage, NO_RESOURCE_MESSAGE)
        return StageResult.ok(self.stage, key)


@dataclass
class ExtractionStage:
    """Extract the document text through the OCR backend."""

    extractor: TextExtractor
    stage: Stage = Stage.EXTRACTION

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        if not inputs.resource:
            return StageResult.failure(self.stage, NO_RESOURCE_MESSAGE)

        document = Path(record.source).expanduser()
        if not document.is_file():
            return StageResult.failure(self.stage, f"Document not found: {record.source}")

        text = self.extractor.extract_text(
            document, key=inputs.resource, prompt=inputs.prompts.ocr
        )
        if not text or not text.strip():
            return StageResult.failure(self.stage, "No text extracted")
        return StageResult.ok(self.stage, text)


@dataclass
class TranslationStage:
    """
    Translate the extracted text into every target language.

    Every language is attempted even after a failure, so each failing
    language is reported. Successful translations are kept; the stage fails
    if any language failed.
    """

    translator: Translator
    stage: Stage = Stage.TRANSLATION

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        text = record.extracted_text
        if not text or not text.strip():
            return StageResult.failure(self.stage, "No extracted text available")
        if not inputs.resource:
            return StageResult.failure(self.stage, NO_RESOURCE_MESSAGE)

        translations: dict[str, str] = {}
        failures: dict[str, str] = {}
        for language in inputs.languages:
            try:
                translations[language] = self.translator.translate(
                    text,
                    language,
                    key=inputs.resource,
                    prompt=inputs.prompts.translation_for(language),
                )
            except Exception as e:
                LOGGER.warning(
                    "translation_failed",
                    extra={"job_id": record.job_id, "language": language, "error": str(e)},
                )
                failures[language] = f"Failed to translate to {language}: {e}"

        if failures:
            return StageResult.failure(
                self.stage,
                f"{len(failures)} of {len(inputs.languages)} translation(s) failed",
                artifact=translations,
                failures=failures,
            )
        return StageResult.ok(self.stage, translations)


_HEADING = re.compile(r"^(#{1,6})\s+(.*\S)\s*$")


def split_sections(text: str) -> list[dict[str, Any]]:
    """
    Split Markdown text into heading-delimited sections.

    Text before the first heading becomes a section with an empty heading.

    Example:
        >>> split_sections("intro\\n# One\\nbody")
        [{'heading': '', 'level': 0, 'body': 'intro'}, {'heading': 'One', 'level': 1, 'body': 'body'}]
    """
    sections: list[dict[str, Any]] = []
    heading, level, body = "", 0, []

    def flush() -> None:
        content = "\n".join(body).strip()
        if heading or content:
            sections.append({"heading": heading, "level": level, "body": content})

    for line in text.splitlines():
        m = _HEADING.match(line)
        if m:
            flush()
            heading, level, body = m.group(2), len(m.group(1)), []
        else:
            body.append(line)
    flush()
    return sections


@dataclass
class StructuringStage:
    """Build the structured payload from the extracted and translated text."""

    stage: Stage = Stage.STRUCTURING

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        text = record.extracted_text
        if not text:
            return StageResult.failure(self.stage, "No extracted text available")

        sections = split_sections(text)
        title = next((s["heading"] for s in sections if s["heading"]), "") or record.book_name
        payload = {
            "job_id": record.job_id,
            "title": title,
            "sections": sections,
            "translations": {
                language: split_sections(translated)
                for language, translated in record.translations.items()
            },
        }
        return StageResult.ok(self.stage, payload)


@dataclass
class PersistenceStage:
    """Write the record's results to the output directory."""

    output_dir: Path
    stage: Stage = Stage.PERSISTENCE

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        path = write_results(record, self.output_dir)
        return StageResult.ok(self.stage, str(path))


def build_stages(
    *,
    rotator: ResourceRotator,
    extractor: TextExtractor,
    translator: Translator,
    output_dir: Path,
) -> dict[Stage, StageExecutor]:
    """Wire the standard stage executors, keyed by stage."""
    return {
        Stage.KEY_ROTATION: KeyRotationStage(rotator),
        Stage.EXTRACTION: ExtractionStage(extractor),
        Stage.TRANSLATION: TranslationStage(translator),
        Stage.STRUCTURING: StructuringStage(),
        Stage.PERSISTENCE: PersistenceStage(output_dir),
    }


def missing_stages(stages: Mapping[Stage, StageExecutor]) -> list[Stage]:
    return [s for s in EXECUTABLE_STAGES if s not in stages]
