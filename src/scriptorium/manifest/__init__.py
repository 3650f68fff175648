"""
Manifest models, loaders and validation.

A manifest is a CSV file listing one document job per row. This module turns
it into a validated BatchJob and writes processed records back.

Basic usage:
    >>> from scriptorium.manifest import read_manifest, write_manifest
    >>>
    >>> batch = read_manifest(Path("jobs/manifest.csv"))
    >>> # ... run the batch ...
    >>> write_manifest(batch.output_path, batch.records)
"""

from .models import (
    ManifestRow,
    REQUIRED_COLUMNS,
    OUTPUT_COLUMNS,
)
from .loaders import (
    load_rows,
    parse_rows,
    read_manifest,
    write_manifest,
    manifest_row,
)
from .validation import (
    ValidationIssue,
    ManifestError,
    validate_columns,
    validate_rows,
)

__all__ = [
    # Models
    "ManifestRow",
    "REQUIRED_COLUMNS",
    "OUTPUT_COLUMNS",
    # Loaders
    "load_rows",
    "parse_rows",
    "read_manifest",
    "write_manifest",
    "manifest_row",
    # Validation
    "ValidationIssue",
    "ManifestError",
    "validate_columns",
    "validate_rows",
]
