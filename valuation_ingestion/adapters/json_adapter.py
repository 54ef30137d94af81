"""
JSON source adapter.

Handles a JSON array, an envelope object holding the array under a key
(``{"items": [...]}`` by default, or any ``json_path`` like
"data.records"), and JSON Lines. Numbers with a fraction are parsed as
Decimal so unit costs never pass through float.
"""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator

from valuation_kernel.logging_config import get_logger

logger = get_logger("ingestion.adapters.json")

_DEFAULT_ENVELOPE_KEYS = ("items", "data", "results")


def _get_nested(data: Any, path: str) -> Any:
    """Follow dot-separated path into dict/list. Returns None if key missing."""
    if not path.strip():
        return data
    for key in path.split("."):
        key = key.strip()
        if not key:
            continue
        if isinstance(data, list):
            try:
                data = data[int(key)]
            except (ValueError, IndexError):
                return None
        elif isinstance(data, dict) and key in data:
            data = data[key]
        else:
            return None
    return data


def _records_root(data: Any, json_path: str | None) -> Any:
    if json_path:
        return _get_nested(data, json_path)
    if isinstance(data, dict):
        for key in _DEFAULT_ENVELOPE_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    return data


class JsonSourceAdapter:
    """Read JSON array or JSON Lines files as one dict per record."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        fmt = options.get("format", "array")
        encoding = options.get("encoding", "utf-8")

        if fmt == "jsonl":
            with source_path.open("r", encoding=encoding) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    item = json.loads(line, parse_float=Decimal)
                    if isinstance(item, dict):
                        yield item
            return

        with source_path.open("r", encoding=encoding) as f:
            data = json.load(f, parse_float=Decimal)
        root = _records_root(data, options.get("json_path"))
        if not isinstance(root, list):
            logger.warning("json_source_not_a_list", extra={
                "path": str(source_path),
                "json_path": options.get("json_path"),
            })
            return
        for item in root:
            if isinstance(item, dict):
                yield item
