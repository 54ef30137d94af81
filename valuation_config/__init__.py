"""
valuation_config -- single public entrypoint for valuation configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services and scripts receive the returned
    ``ValuationConfig`` and never read YAML files themselves.

Architecture position:
    Configuration -- sits above ``valuation_kernel`` and below
    ``valuation_services`` / ``valuation_ingestion``.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ConfigurationError`` -- a value fails schema validation.

Audit relevance:
    Every call emits a ``VALUATION_CONFIG_TRACE`` log entry carrying the
    checksum of the merged document, so a report can be tied back to the
    exact configuration that produced it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from valuation_config.loader import deep_merge, load_yaml_file, parse_config
from valuation_config.schema import (
    FALLBACK_ERROR,
    FALLBACK_PARITY,
    AgeThresholds,
    ExchangeRateSettings,
    ValuationConfig,
    ValuationSettings,
)
from valuation_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ValuationConfig:
    """The public configuration entrypoint.

    Args:
        path: Optional YAML file deep-merged over the packaged defaults.
        overrides: Optional dict deep-merged last (scripts, tests).

    Returns:
        A validated, frozen ``ValuationConfig``.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(Path(path)))
    if overrides:
        data = deep_merge(data, overrides)

    config = parse_config(data)

    logger.info(
        "VALUATION_CONFIG_TRACE",
        extra={
            "trace_type": "VALUATION_CONFIG_TRACE",
            "config_path": str(path) if path is not None else None,
            "checksum": config.checksum,
            "base_currency": config.base_currency,
            "fallback_policy": config.exchange_rates.fallback_policy,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "AgeThresholds",
    "ExchangeRateSettings",
    "ValuationConfig",
    "ValuationSettings",
    "FALLBACK_PARITY",
    "FALLBACK_ERROR",
]
