"""
CSV source adapter.

Uses csv.DictReader. Configurable: delimiter, encoding, quoting, skip_rows.
Handles BOM via utf-8-sig when encoding is utf-8. Streams rows. Empty cells
are yielded as None so they read the same as a missing JSON field.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterator

_QUOTING = {
    "minimal": csv.QUOTE_MINIMAL,
    "all": csv.QUOTE_ALL,
    "nonnumeric": csv.QUOTE_NONNUMERIC,
    "none": csv.QUOTE_NONE,
}


def _get_encoding(options: dict[str, Any]) -> str:
    enc = options.get("encoding", "utf-8")
    if enc.lower() == "utf-8":
        return "utf-8-sig"  # Strip BOM if present
    return enc


def _get_quoting(options: dict[str, Any]) -> int:
    q = options.get("quoting", "minimal")
    if isinstance(q, int):
        return q
    return _QUOTING.get(str(q).lower(), csv.QUOTE_MINIMAL)


class CsvSourceAdapter:
    """Read CSV files as one dict per row. Streams; does not load entire file."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        encoding = _get_encoding(options)
        delimiter = options.get("delimiter", ",")
        skip_rows = int(options.get("skip_rows", 0))
        quoting = _get_quoting(options)

        with source_path.open("r", encoding=encoding, newline="") as f:
            for _ in range(skip_rows):
                next(f, None)
            reader = csv.DictReader(f, delimiter=delimiter, quoting=quoting)
            for row in reader:
                yield {
                    key.strip(): (value if value not in ("", None) else None)
                    for key, value in row.items()
                    if key is not None
                }
