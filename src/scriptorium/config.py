"""
Pipeline configuration and prompt loading.

Configuration is assembled by the CLI from its options and shared read-only
by every worker of a batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scriptorium.backends import DEFAULT_API_URL, DEFAULT_MODEL


LOGGER = logging.getLogger(__name__)

OCR_PROMPT_FILENAME = "prompt_ocr.txt"
TRANSLATION_PROMPT_FILENAME = "prompt_translate.txt"
TRANSLATION_PROMPT_PREFIX = "prompt_translate_"

DEFAULT_OCR_PROMPT = (
    "Extract all text from this document. Preserve the reading order and "
    "render headings as Markdown headings."
)
DEFAULT_TRANSLATION_PROMPT = (
    "Translate the following Markdown text into {language}. Keep the "
    "Markdown structure unchanged and return only the translation."
)


class PipelineConfig(BaseModel):
    """
    Settings for one batch run.

    Attributes:
        output_dir: Directory for results, error logs and batch summaries
        prompts_dir: Optional directory holding prompt files
        keys_csv: CSV file with an ``api_key`` column
        max_workers: Maximum number of records processed concurrently
        default_languages: Languages used when a record lists none
        api_url: Base URL of the generative-language API
        model: Model used for extraction and translation
        timeout: Per-request timeout in seconds
        detailed_logging: Log each stage error individually
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    output_dir: Path = Path("output")
    prompts_dir: Path | None = None
    keys_csv: Path = Path("keys.csv")
    max_workers: int = Field(default=4, ge=1)
    default_languages: tuple[str, ...] = ()
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    timeout: float = Field(default=120.0, gt=0)
    detailed_logging: bool = False

    @field_validator("default_languages", mode="before")
    @classmethod
    def _split_languages(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_languages(value)
        return value


def parse_languages(value: str) -> tuple[str, ...]:
    """
    Parse a comma-separated language list.

    ``none`` (any case) means no translation.

    Example:
        >>> parse_languages("de, fr,,es")
        ('de', 'fr', 'es')
        >>> parse_languages("none")
        ()
    """
    if value.strip().lower() == "none":
        return ()
    return tuple(lang.strip() for lang in value.split(",") if lang.strip())


@dataclass(frozen=True)
class Prompts:
    """Prompt texts shared by every record of a batch."""

    ocr: str = DEFAULT_OCR_PROMPT
    translation: str = DEFAULT_TRANSLATION_PROMPT
    per_language: dict[str, str] = field(default_factory=dict)

    def translation_for(self, language: str) -> str:
        return self.per_language.get(language, self.translation)


def load_prompts(prompts_dir: Path | None) -> Prompts:
    """
    Load prompt files from a directory.

    Reads ``prompt_ocr.txt``, ``prompt_translate.txt`` and any
    ``prompt_translate_<lang>.txt`` overrides. Missing files fall back to the
    built-in prompts.
    """
    if prompts_dir is None:
        return Prompts()

    prompts_dir = prompts_dir.expanduser()
    if not prompts_dir.is_dir():
        LOGGER.warning("prompts_dir_missing", extra={"path": str(prompts_dir)})
        return Prompts()

    ocr = _read_prompt(prompts_dir / OCR_PROMPT_FILENAME) or DEFAULT_OCR_PROMPT
    translation = (
        _read_prompt(prompts_dir / TRANSLATION_PROMPT_FILENAME) or DEFAULT_TRANSLATION_PROMPT
    )

    per_language: dict[str, str] = {}
    for path in sorted(prompts_dir.glob(f"{TRANSLATION_PROMPT_PREFIX}*.txt")):
        language = path.stem[len(TRANSLATION_PROMPT_PREFIX):]
        text = _read_prompt(path)
        if language and text:
            per_language[language] = text

    return Prompts(ocr=ocr, translation=translation, per_language=per_language)


def _read_prompt(path: Path) -> str | None:
    if not path.exists():
        return None
    text = path.read_text(encoding="utf-8").strip()
    return text or None
