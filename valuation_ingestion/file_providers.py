"""
File-backed feed providers -- run a valuation offline from exported data.

Each provider reads one export file through the source adapters and
normalizes it with ``valuation_ingestion.transform``.  Paths may contain a
``{company_id}`` placeholder.  ``.csv`` files are read with the CSV
adapter (dotted column names for nested fields), ``.jsonl`` as JSON Lines,
anything else as a JSON array or ``{"items": [...]}`` envelope.

Failure modes:
    - Missing or unreadable file -> ProviderUnavailableError.
    - Malformed receipt line -> logged and skipped, the rest of the
      ledger is kept.
    - Malformed snapshot or channel row -> InvalidLedgerEntryError
      propagates.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Union

from valuation_ingestion.adapters import CsvSourceAdapter, JsonSourceAdapter, unflatten
from valuation_ingestion.transform import (
    transform_channel_record,
    transform_delivery,
    transform_stock_changes,
    transform_stock_record,
)
from valuation_kernel.domain.inventory import ChannelStockRecord, LedgerEntry, StockRecord
from valuation_kernel.exceptions import ProviderUnavailableError
from valuation_kernel.logging_config import get_logger

logger = get_logger("ingestion.file_providers")

# A path with an optional {company_id} placeholder, or a resolver per company.
PathSpec = Union[str, Path, Callable[[str], Path]]


class _ExportFile:
    """One export file, resolved per company and streamed as nested dicts."""

    def __init__(self, path_template: PathSpec, name: str, options: dict[str, Any] | None = None):
        self._template = path_template
        self._name = name
        self._options = dict(options or {})

    def path_for(self, company_id: str) -> Path:
        if callable(self._template):
            return self._template(company_id)
        return Path(str(self._template).format(company_id=company_id))

    def records(self, company_id: str) -> Iterator[dict[str, Any]]:
        path = self.path_for(company_id)
        if not path.is_file():
            raise ProviderUnavailableError(self._name, f"file not found: {path}")

        suffix = path.suffix.lower()
        try:
            if suffix == ".csv":
                rows = [unflatten(row) for row in CsvSourceAdapter().read(path, self._options)]
            else:
                options = dict(self._options)
                if suffix == ".jsonl":
                    options.setdefault("format", "jsonl")
                rows = list(JsonSourceAdapter().read(path, options))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProviderUnavailableError(self._name, f"cannot read {path}: {exc}") from exc

        logger.info("export_file_read", extra={
            "provider": self._name,
            "path": str(path),
            "records": len(rows),
        })
        return iter(rows)


class FileStockSnapshotProvider:
    """Warehouse on-hand from an export (one row per SKU)."""

    def __init__(self, path_template: PathSpec, options: dict[str, Any] | None = None):
        self._file = _ExportFile(path_template, "stock_snapshot_file", options)

    def fetch_on_hand(self, company_id: str) -> list[StockRecord]:
        return [transform_stock_record(row) for row in self._file.records(company_id)]


class FileDeliveryLedgerProvider:
    """
    Purchase-order deliveries from an export.

    JSON: one object per delivery with a ``lines`` array.  CSV: one row per
    delivery line with delivery fields as columns and the line's fields
    under a ``line.`` prefix (``line.productSize.id``, ...).
    """

    def __init__(self, path_template: PathSpec, base_currency: str, options: dict[str, Any] | None = None):
        self._file = _ExportFile(path_template, "delivery_ledger_file", options)
        self._base_currency = base_currency

    def fetch_deliveries(self, company_id: str) -> list[LedgerEntry]:
        entries: list[LedgerEntry] = []
        for record in self._file.records(company_id):
            if "lines" not in record and isinstance(record.get("line"), dict):
                record = {**record, "lines": [record["line"]]}
            entries.extend(transform_delivery(record, self._base_currency))
        return entries


class FileStockChangeLedgerProvider:
    """Stock-change lines from an export (one record per line)."""

    def __init__(self, path_template: PathSpec, base_currency: str, options: dict[str, Any] | None = None):
        self._file = _ExportFile(path_template, "stock_change_ledger_file", options)
        self._base_currency = base_currency

    def fetch_stock_changes(self, company_id: str) -> list[LedgerEntry]:
        return list(transform_stock_changes(self._file.records(company_id), self._base_currency))


class FileChannelInventoryProvider:
    """Secondary sales-channel on-hand from an export (EAN, quantity)."""

    def __init__(self, path_template: PathSpec, options: dict[str, Any] | None = None):
        self._file = _ExportFile(path_template, "channel_inventory_file", options)

    def fetch_channel_stock(self, company_id: str) -> list[ChannelStockRecord]:
        records = (transform_channel_record(row) for row in self._file.records(company_id))
        return [r for r in records if r is not None]


@dataclass(frozen=True)
class FileFeeds:
    """The four feed providers for one export directory."""

    stock: FileStockSnapshotProvider
    deliveries: FileDeliveryLedgerProvider
    stock_changes: FileStockChangeLedgerProvider
    channel: FileChannelInventoryProvider


def _pick(directory: Path, stem: str) -> Path:
    for suffix in (".json", ".jsonl", ".csv"):
        candidate = directory / f"{stem}{suffix}"
        if candidate.exists():
            return candidate
    return directory / f"{stem}.json"


def file_feeds_for_directory(root: str | Path, base_currency: str) -> FileFeeds:
    """
    Providers reading ``{root}/{company_id}/<feed>.(json|jsonl|csv)``.

    Feed file stems: ``stock``, ``deliveries``, ``stock_changes``,
    ``channel_stock``.  The suffix is picked per company at fetch time.
    """
    root = Path(root)

    def resolver(stem: str) -> Callable[[str], Path]:
        return lambda company_id: _pick(root / company_id, stem)

    return FileFeeds(
        stock=FileStockSnapshotProvider(resolver("stock")),
        deliveries=FileDeliveryLedgerProvider(resolver("deliveries"), base_currency),
        stock_changes=FileStockChangeLedgerProvider(resolver("stock_changes"), base_currency),
        channel=FileChannelInventoryProvider(resolver("channel_stock")),
    )
