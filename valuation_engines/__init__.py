"""
Module: valuation_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the valuation service.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import valuation_kernel and valuation_config schema types only.
    MUST NOT import valuation_services or valuation_ingestion.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      ``as_of`` is passed in by the service, which reads its Clock once.
    - Decimal-only arithmetic through Money.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``valuation_engines.tracer``).
"""

from valuation_engines.aging import AgeBucket, age_buckets, calculate_age_days, classify_age
from valuation_engines.tracer import compute_input_fingerprint, traced_engine
from valuation_engines.valuation import (
    LayerBuildResult,
    LedgerIndex,
    PortfolioSummary,
    ProductValuation,
    SizeValuation,
    ValuationTotals,
    VariantValuation,
    build_layers,
    build_product_tree,
    reconcile_channel_only,
    summarize,
    value_size,
)

__all__ = [
    "AgeBucket",
    "age_buckets",
    "calculate_age_days",
    "classify_age",
    "compute_input_fingerprint",
    "traced_engine",
    "LayerBuildResult",
    "LedgerIndex",
    "PortfolioSummary",
    "ProductValuation",
    "SizeValuation",
    "ValuationTotals",
    "VariantValuation",
    "build_layers",
    "build_product_tree",
    "reconcile_channel_only",
    "summarize",
    "value_size",
]
