"""
Round-robin API key rotation.

Keys are loaded lazily, once per rotator, from a key source. Allocation and
usage accounting happen under a single lock so concurrent workers never see
a torn counter or lose a usage update.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable


LOGGER = logging.getLogger(__name__)

KEY_COLUMN = "api_key"

KeySource = Callable[[], Iterable[str]]


class ResourceRotator:
    """
    Allocate keys from a fixed pool in round-robin order.

    Example:
        >>> rotator = ResourceRotator(lambda: ["k1", "k2"])
        >>> [rotator.acquire() for _ in range(3)]
        ['k1', 'k2', 'k1']
    """

    def __init__(self, source: KeySource) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._pool: tuple[str, ...] | None = None
        self._counter = 0
        self._usage: Counter[str] = Counter()

    def acquire(self) -> str | None:
        """
        Return the next key, or None when no key is available.

        The pool is loaded on the first call. A failed load leaves the pool
        empty for the lifetime of the rotator.
        """
        with self._lock:
            if self._pool is None:
                self._pool = self._load()
            if not self._pool:
                return None
            index = self._counter % len(self._pool)
            self._counter += 1
            key = self._pool[index]
            self._usage[key] += 1
            size = len(self._pool)

        LOGGER.debug("key_selected", extra={"index": index, "pool_size": size})
        return key

    def _load(self) -> tuple[str, ...]:
        try:
            keys = list(self._source())
        except Exception:
            LOGGER.exception("key_pool_load_failed")
            return ()

        # Pool membership is fixed after load; duplicates would skew fairness.
        pool = tuple(dict.fromkeys(k for k in keys if k))
        LOGGER.info("key_pool_loaded", extra={"pool_size": len(pool)})
        return pool

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._pool is not None

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._pool or ())

    @property
    def allocations(self) -> int:
        with self._lock:
            return self._counter

    def usage(self) -> dict[str, int]:
        """Copy of the per-key usage counts."""
        with self._lock:
            return dict(self._usage)


def parse_keys_csv(data: bytes) -> list[str]:
    """
    Parse key CSV content.

    Expects a header row with an ``api_key`` column. Values are trimmed and
    blank values skipped. Content is decoded as UTF-8, falling back to
    ISO-8859-1.

    Raises:
        ValueError: If the ``api_key`` column is missing
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        LOGGER.warning("key_csv_not_utf8_falling_back_to_latin1")
        text = data.decode("iso-8859-1")

    reader = csv.DictReader(io.StringIO(text))
    if KEY_COLUMN not in (reader.fieldnames or []):
        raise ValueError(f"Key CSV must have an '{KEY_COLUMN}' column")

    keys: list[str] = []
    for row in reader:
        value = (row.get(KEY_COLUMN) or "").strip()
        if value:
            keys.append(value)
    return keys


def load_keys_csv(path: Path) -> list[str]:
    """
    Load API keys from a local CSV file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the ``api_key`` column is missing
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Keys CSV file not found: {path}")
    keys = parse_keys_csv(path.read_bytes())
    LOGGER.info("keys_loaded_from_csv", extra={"path": str(path), "count": len(keys)})
    return keys


def csv_key_source(path: Path) -> KeySource:
    """Key source that reads ``path`` when the rotator first needs keys."""
    return lambda: load_keys_csv(path)
