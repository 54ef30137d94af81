"""
Valuation - FIFO layer construction, roll-ups and channel-only reconciliation.
"""

from valuation_engines.valuation.aggregation import (
    UNASSIGNED_PRODUCT,
    PortfolioSummary,
    ProductValuation,
    SizeValuation,
    ValuationTotals,
    VariantValuation,
    build_product_tree,
    summarize,
    value_size,
)
from valuation_engines.valuation.layers import (
    LayerBuildResult,
    RateLookup,
    build_layers,
    primary_source_of,
)
from valuation_engines.valuation.matching import LedgerIndex, MatchedEntries
from valuation_engines.valuation.reconciler import (
    ChannelConflict,
    ChannelReconciliation,
    reconcile_channel_only,
)

__all__ = [
    "build_layers",
    "primary_source_of",
    "LayerBuildResult",
    "RateLookup",
    "LedgerIndex",
    "MatchedEntries",
    "value_size",
    "build_product_tree",
    "summarize",
    "reconcile_channel_only",
    "ChannelConflict",
    "ChannelReconciliation",
    "SizeValuation",
    "VariantValuation",
    "ProductValuation",
    "PortfolioSummary",
    "ValuationTotals",
    "UNASSIGNED_PRODUCT",
]
