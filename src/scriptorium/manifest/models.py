"""
Pydantic model for manifest rows.

A manifest is a CSV file with one document job per row. Column names follow
the manifest's camelCase header; the model exposes them as snake_case fields.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scriptorium.config import parse_languages
from scriptorium.pipeline.records import Record


REQUIRED_COLUMNS = ("fileId", "targetLangs")
OUTPUT_COLUMNS = ("fileId", "targetLangs", "bookName", "status", "errorMessage")


class ManifestRow(BaseModel):
    """
    One manifest row.

    ``source`` defaults to ``fileId`` so manifests that name the document
    file directly need no separate column.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", str_strip_whitespace=True)

    file_id: str = Field(default="", alias="fileId")
    target_langs: str = Field(default="", alias="targetLangs")
    book_name: str = Field(default="", alias="bookName")
    status: str = ""
    source: str = ""

    @field_validator("file_id", "target_langs", "book_name", "status", "source", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    def languages(self) -> tuple[str, ...]:
        return parse_languages(self.target_langs)

    def to_record(self, row_index: int, *, base_dir: Path | None = None) -> Record:
        """
        Build the pipeline record for this row.

        Relative source paths are resolved against ``base_dir`` (normally the
        manifest's directory).
        """
        source = self.source or self.file_id
        if base_dir is not None and source and not Path(source).expanduser().is_absolute():
            source = str(base_dir / source)
        return Record(
            job_id=self.file_id,
            source=source,
            languages=self.languages(),
            row_index=row_index,
            book_name=self.book_name,
            original_status=self.status,
            raw_languages=self.target_langs,
            status=self.status,
        )
