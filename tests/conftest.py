"""Shared fixtures and fakes for the pipeline tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import threading
import time

import pytest

from scriptorium.pipeline.records import Record, Stage, StageResult
from scriptorium.pipeline.stages import StageInputs


FIXTURES_DIR = Path(__file__).parent / "fixtures"


@dataclass
class FakeExtractor:
    """Extractor returning the document's own text, optionally after a delay."""

    name: str = "fake"
    delays: dict[str, float] = field(default_factory=dict)
    fail_for: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def extract_text(self, document: Path, *, key: str, prompt: str) -> str:
        with self._lock:
            self.calls.append((document.name, key))
        time.sleep(self.delays.get(document.name, 0.0))
        if document.name in self.fail_for:
            raise RuntimeError(f"OCR failed for {document.name}")
        return document.read_text(encoding="utf-8")


@dataclass
class FakeTranslator:
    """Translator that upper-cases text and fails for selected languages."""

    name: str = "fake"
    fail_for: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def translate(self, text: str, language: str, *, key: str, prompt: str) -> str:
        with self._lock:
            self.calls.append(language)
        if language in self.fail_for:
            raise RuntimeError("quota exceeded")
        return f"[{language}] {text.upper()}"


@dataclass
class ScriptedStage:
    """Stage that returns a fixed outcome and records every call."""

    stage: Stage
    succeed: bool = True
    artifact: object = "ok"
    raises: Exception | None = None
    calls: list[str] = field(default_factory=list)

    def execute(self, record: Record, inputs: StageInputs) -> StageResult:
        self.calls.append(record.job_id)
        if self.raises is not None:
            raise self.raises
        if self.succeed:
            return StageResult.ok(self.stage, self.artifact)
        return StageResult.failure(self.stage, f"{self.stage.value} broke")


def scripted_stages(**failing: bool) -> dict[Stage, ScriptedStage]:
    """Scripted executors for every stage; pass e.g. EXTRACTION=True to fail it."""
    stages = {}
    for stage in (
        Stage.KEY_ROTATION,
        Stage.EXTRACTION,
        Stage.TRANSLATION,
        Stage.STRUCTURING,
        Stage.PERSISTENCE,
    ):
        artifact: object = "ok"
        if stage is Stage.TRANSLATION:
            artifact = {"de": "hallo"}
        stages[stage] = ScriptedStage(stage, succeed=not failing.get(stage.name, False), artifact=artifact)
    return stages


def make_record(job_id: str = "doc-1", row_index: int = 0, **kwargs) -> Record:
    kwargs.setdefault("source", f"{job_id}.txt")
    kwargs.setdefault("languages", ("de",))
    return Record(job_id=job_id, row_index=row_index, **kwargs)


@pytest.fixture
def documents(tmp_path: Path) -> Path:
    """Directory with three small Markdown documents."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("# Alpha\nfirst page", encoding="utf-8")
    (docs / "b.txt").write_text("# Beta\nsecond page", encoding="utf-8")
    (docs / "c.txt").write_text("# Gamma\nthird page", encoding="utf-8")
    return docs
