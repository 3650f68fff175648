"""Tests for the command line interface."""

from csv import DictReader
from pathlib import Path
import json
import logging

import httpx
import pytest
from typer.testing import CliRunner

from scriptorium import cli
from scriptorium.backends import GeminiBackend
from scriptorium.pipeline import runner as runner_module

from conftest import FIXTURES_DIR


runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    """setup_logging() replaces handlers on the package logger; undo it after each test."""
    logger = logging.getLogger("scriptorium")
    handlers, propagate, level = logger.handlers[:], logger.propagate, logger.level
    yield
    logger.handlers[:] = handlers
    logger.propagate = propagate
    logger.setLevel(level)


def fake_api(fail_language: str | None = None):
    """Mock generative-language API: OCR echoes a heading, translation tags the language."""

    def handler(request: httpx.Request) -> httpx.Response:
        parts = json.loads(request.content)["contents"][0]["parts"]
        if any("inline_data" in p for p in parts):
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "# Page\nbody"}]}}]})
        instruction = parts[0]["text"]
        if fail_language and f"into {fail_language}" in instruction:
            return httpx.Response(500, json={"error": {"message": "backend error"}})
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "translated"}]}}]})

    return httpx.MockTransport(handler)


@pytest.fixture
def job_dir(tmp_path: Path) -> Path:
    (tmp_path / "p1.pdf").write_bytes(b"%PDF-1.4 one")
    (tmp_path / "p2.pdf").write_bytes(b"%PDF-1.4 two")
    (tmp_path / "manifest.csv").write_text(
        'fileId,targetLangs,bookName\np1.pdf,"de,fr",One\np2.pdf,none,Two\n',
        encoding="utf-8",
    )
    (tmp_path / "keys.csv").write_text("api_key\nk1\nk2\n", encoding="utf-8")
    return tmp_path


def use_transport(monkeypatch, transport: httpx.MockTransport) -> None:
    monkeypatch.setattr(
        runner_module,
        "GeminiBackend",
        lambda **kwargs: GeminiBackend(transport=transport, **kwargs),
    )


class TestValidateCommand:
    """Tests for `scriptorium validate`."""

    def test_valid_manifest(self):
        """Test that a valid manifest passes with exit code 0."""
        result = runner.invoke(cli.app, ["validate", str(FIXTURES_DIR / "manifest_valid.csv")])

        assert result.exit_code == 0
        assert "Validation passed (3 record(s))" in result.output

    def test_invalid_manifest(self):
        """Test that issues are listed and the exit code is 2."""
        result = runner.invoke(cli.app, ["validate", str(FIXTURES_DIR / "manifest_invalid.csv")])

        assert result.exit_code == 2
        assert "3 issue(s)" in result.output
        assert "rows[1].fileId" in result.output

    def test_missing_manifest(self, tmp_path: Path):
        """Test that a missing file exits with code 1."""
        result = runner.invoke(cli.app, ["validate", str(tmp_path / "nope.csv")])

        assert result.exit_code == 1


class TestKeysCommand:
    """Tests for `scriptorium keys`."""

    def test_counts_distinct_keys(self):
        """Test that duplicate keys are counted once."""
        result = runner.invoke(cli.app, ["keys", str(FIXTURES_DIR / "keys.csv")])

        assert result.exit_code == 0
        assert "Found 2 distinct key(s) (3 row(s))" in result.output

    def test_no_keys(self, tmp_path: Path):
        """Test that an empty key file exits with code 1."""
        keys = tmp_path / "keys.csv"
        keys.write_text("api_key\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["keys", str(keys)])

        assert result.exit_code == 1

    def test_wrong_column(self, tmp_path: Path):
        """Test that a CSV without api_key is an error."""
        keys = tmp_path / "keys.csv"
        keys.write_text("token\nabc\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["keys", str(keys)])

        assert result.exit_code == 1
        assert "api_key" in result.output


class TestRunCommand:
    """Tests for `scriptorium run`."""

    def test_run_success(self, job_dir: Path, monkeypatch):
        """Test a full run against a mocked API."""
        use_transport(monkeypatch, fake_api())
        out = job_dir / "out"

        result = runner.invoke(
            cli.app,
            [
                "run",
                str(job_dir / "manifest.csv"),
                "--keys",
                str(job_dir / "keys.csv"),
                "--output-dir",
                str(out),
                "--max-workers",
                "2",
                "--log-level",
                "ERROR",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Processed: 2" in result.output
        with (job_dir / "manifest.csv").open(encoding="utf-8", newline="") as f:
            assert [r["status"] for r in DictReader(f)] == ["processed", "processed"]
        data = json.loads((out / "results_p1_pdf.json").read_text(encoding="utf-8"))
        assert data["translations"] == {"de": "translated", "fr": "translated"}
        assert data["structuredData"]["title"] == "Page"

    def test_run_with_failure_exits_1(self, job_dir: Path, monkeypatch):
        """Test that a failed translation fails the row and the command."""
        use_transport(monkeypatch, fake_api(fail_language="fr"))

        result = runner.invoke(
            cli.app,
            [
                "run",
                str(job_dir / "manifest.csv"),
                "--keys",
                str(job_dir / "keys.csv"),
                "--output-dir",
                str(job_dir / "out"),
                "--log-level",
                "ERROR",
            ],
        )

        assert result.exit_code == 1
        assert "Failed: 1" in result.output
        assert "p1.pdf: Translation: Failed to translate to fr" in result.output

    def test_run_json_output(self, job_dir: Path, monkeypatch):
        """Test that --json prints the processed records."""
        use_transport(monkeypatch, fake_api())

        result = runner.invoke(
            cli.app,
            [
                "run",
                str(job_dir / "manifest.csv"),
                "--keys",
                str(job_dir / "keys.csv"),
                "--output-dir",
                str(job_dir / "out"),
                "--json",
                "--log-level",
                "ERROR",
            ],
        )

        records = json.loads(result.stdout)
        assert [r["fileId"] for r in records] == ["p1.pdf", "p2.pdf"]
        assert all(r["status"] == "processed" for r in records)
        assert "k1" not in result.stdout

    def test_run_invalid_manifest_exits_2(self, tmp_path: Path):
        """Test that an invalid manifest is reported with exit code 2."""
        result = runner.invoke(
            cli.app,
            [
                "run",
                str(FIXTURES_DIR / "manifest_invalid.csv"),
                "--output-dir",
                str(tmp_path / "out"),
                "--log-level",
                "ERROR",
            ],
        )

        assert result.exit_code == 2
        assert "Invalid manifest" in result.output

    def test_run_rejects_zero_workers(self, job_dir: Path):
        """Test that invalid options exit with code 1 before anything runs."""
        result = runner.invoke(
            cli.app,
            ["run", str(job_dir / "manifest.csv"), "--max-workers", "0", "--log-level", "ERROR"],
        )

        assert result.exit_code == 1
        assert "invalid options" in result.output
