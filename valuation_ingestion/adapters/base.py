"""
Source adapter protocol for exported feed files.

Contract:
    SourceAdapter.read() yields one dict per source record (streaming).

Architecture: valuation_ingestion/adapters. File I/O only, no DB.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for reading structured source files into record dicts."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        """Yield one dict per source record."""
        ...


def unflatten(row: dict[str, Any]) -> dict[str, Any]:
    """Turn dotted keys (``"productSize.id"``) into nested dicts.

    Flat exports (CSV) name nested fields with dotted column headers; this
    gives them the same shape as the JSON exports.
    """
    nested: dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        parts = [p for p in str(key).strip().split(".") if p]
        if not parts:
            continue
        target = nested
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = value
    return nested
