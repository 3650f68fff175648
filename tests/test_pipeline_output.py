"""Tests for pipeline output utilities."""

from datetime import datetime, timezone
from pathlib import Path
import tempfile
import json

from scriptorium.pipeline.output import (
    append_record,
    batch_summary_path,
    error_log_path,
    render_error_log,
    results_path,
    safe_name,
    write_error_log,
    write_results,
)
from scriptorium.pipeline.records import Stage, StageResult

from conftest import make_record


class TestSafeName:
    """Tests for safe_name() function."""

    def test_replaces_non_alphanumerics(self):
        """Test that every character outside [a-zA-Z0-9] becomes an underscore."""
        assert safe_name("books/vol 1.pdf") == "books_vol_1_pdf"

    def test_keeps_alphanumerics(self):
        """Test that plain ids are unchanged."""
        assert safe_name("Doc42") == "Doc42"

    def test_non_ascii_replaced(self):
        """Test that accented characters are replaced too."""
        assert safe_name("café") == "caf_"


class TestPaths:
    """Tests for output path helpers."""

    def test_results_path(self):
        """Test per-record results file naming."""
        assert results_path("a b", Path("/out")) == Path("/out/results_a_b.json")

    def test_error_log_path(self):
        """Test that error logs live under the errors subdirectory."""
        assert error_log_path("doc.pdf", Path("/out")) == Path("/out/errors/error_doc_pdf.txt")

    def test_batch_summary_path(self):
        """Test that the summary file name carries the timestamp."""
        when = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)

        path = batch_summary_path(Path("/out"), when)

        assert path == Path("/out/batch_summary_20240305_140709.json")


class TestWriteResults:
    """Tests for write_results() function."""

    def test_writes_record_payload(self):
        """Test that results hold the text, translations and structure."""
        record = make_record(job_id="doc-001", book_name="Herbal")
        record.apply(StageResult.ok(Stage.EXTRACTION, "Text"))
        record.apply(StageResult.ok(Stage.TRANSLATION, {"de": "Text (de)"}))
        record.apply(StageResult.ok(Stage.STRUCTURING, {"title": "Herbal"}))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_results(record, Path(tmpdir))
            data = json.loads(path.read_text(encoding="utf-8"))

        assert path.name == "results_doc_001.json"
        assert data["fileId"] == "doc-001"
        assert data["bookName"] == "Herbal"
        assert data["translations"] == {"de": "Text (de)"}
        assert data["structuredData"] == {"title": "Herbal"}
        assert data["errors"] == []

    def test_non_ascii_preserved(self):
        """Test that results are written as UTF-8 without escaping."""
        record = make_record()
        record.apply(StageResult.ok(Stage.EXTRACTION, "Straße"))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_results(record, Path(tmpdir))
            raw = path.read_text(encoding="utf-8")

        assert "Straße" in raw


class TestErrorLog:
    """Tests for error log rendering and writing."""

    def test_render_lists_every_error(self):
        """Test that the log has one block per error."""
        record = make_record(job_id="doc-7")
        record.add_error(Stage.TRANSLATION, "Failed to translate to fr: timeout")
        record.add_error(Stage.TRANSLATION, "Failed to translate to es: quota")

        text = render_error_log(record)

        assert text.startswith("Error Log for File: doc-7")
        assert text.count("Stage: Translation") == 2
        assert "Error: Failed to translate to es: quota" in text

    def test_write_creates_errors_dir(self):
        """Test that the errors subdirectory is created on demand."""
        record = make_record(job_id="doc-7")
        record.add_error(Stage.EXTRACTION, "boom")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_error_log(record, Path(tmpdir))
            assert path.exists()
            assert path.parent.name == "errors"


class TestAppendRecord:
    """Tests for append_record() function."""

    def test_append_record_creates_file(self):
        """Test that append_record creates file if it doesn't exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "nested" / "log.jsonl"

            append_record(output_path, {"job_id": "a", "stage": "Extraction"})

            assert output_path.exists()

    def test_append_record_appends_lines(self):
        """Test that each call adds exactly one JSON line."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "log.jsonl"

            append_record(output_path, {"n": 1})
            append_record(output_path, {"n": 2})

            lines = output_path.read_text(encoding="utf-8").splitlines()

        assert [json.loads(line)["n"] for line in lines] == [1, 2]
