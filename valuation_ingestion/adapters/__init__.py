"""Source adapters for exported feed files (file I/O only, no DB)."""

from valuation_ingestion.adapters.base import SourceAdapter, unflatten
from valuation_ingestion.adapters.csv_adapter import CsvSourceAdapter
from valuation_ingestion.adapters.json_adapter import JsonSourceAdapter

__all__ = [
    "SourceAdapter",
    "CsvSourceAdapter",
    "JsonSourceAdapter",
    "unflatten",
]
