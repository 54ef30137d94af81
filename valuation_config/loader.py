"""
Configuration Loader (``valuation_config.loader``).

Responsibility
--------------
Loads YAML files, deep-merges overrides onto the packaged defaults and
parses the result into the frozen ``valuation_config.schema`` dataclasses.
Runtime callers go through ``valuation_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or invalid value  -> ``ConfigurationError`` naming the key.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from valuation_config.schema import (
    AgeThresholds,
    ExchangeRateSettings,
    ValuationConfig,
    ValuationSettings,
)
from valuation_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with ``override`` merged into ``base`` recursively."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(key, "must be a mapping")
    return value


def parse_age_thresholds(data: dict[str, Any]) -> AgeThresholds:
    return AgeThresholds(
        aging_from_days=int(data.get("aging_from_days", 183)),
        old_from_days=int(data.get("old_from_days", 548)),
    )


def parse_exchange_rates(data: dict[str, Any]) -> ExchangeRateSettings:
    """Parse the ``exchange_rates`` section."""
    try:
        epoch = parse_date(data.get("epoch", "2020-01-01"))
    except ValueError as exc:
        raise ConfigurationError("exchange_rates.epoch", str(exc)) from exc

    series = data.get("series") or {}
    if not isinstance(series, dict):
        raise ConfigurationError("exchange_rates.series", "must be a mapping")

    return ExchangeRateSettings(
        provider=str(data.get("provider", "riksbank")),
        epoch=epoch,
        api_base_url=str(data.get("api_base_url", ExchangeRateSettings.api_base_url)),
        series={str(k).upper(): str(v) for k, v in series.items()},
        fallback_policy=str(data.get("fallback_policy", "parity")),
        backoff_seconds=float(data.get("backoff_seconds", 60)),
        max_attempts=int(data.get("max_attempts", 3)),
        request_timeout_seconds=float(data.get("request_timeout_seconds", 30)),
    )


def parse_config(data: dict[str, Any]) -> ValuationConfig:
    """
    Parse a fully merged configuration dict into a ``ValuationConfig``.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical merged document.
    """
    database = _section(data, "database")
    return ValuationConfig(
        base_currency=str(data.get("base_currency", "SEK")),
        age_thresholds=parse_age_thresholds(_section(data, "age_thresholds")),
        exchange_rates=parse_exchange_rates(_section(data, "exchange_rates")),
        valuation=ValuationSettings(
            max_workers=int(_section(data, "valuation").get("max_workers", 8)),
        ),
        database_url=str(database.get("url", "sqlite:///exchange_rates.db")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Compute SHA-256 checksum of canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
