"""
valuation_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (valuation_engines/) with providers, the rate repository and the
    clock.  This is the only layer that may hold database sessions, call
    external providers, or read wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        valuation_services/ -> valuation_engines/   (allowed)
        valuation_services/ -> valuation_ingestion/ (allowed)
        valuation_services/ -> valuation_kernel/    (allowed)
        valuation_engines/  -> valuation_services/  (FORBIDDEN)
        valuation_kernel/   -> valuation_services/  (FORBIDDEN)

Audit relevance:
    This package is the import surface for scripts and other consumers.
"""

from valuation_services.exchange_rate_service import ExchangeRateResolver
from valuation_services.rate_repository import (
    InMemoryRateRepository,
    RateObservation,
    RateRepository,
    SqlAlchemyRateRepository,
)
from valuation_services.report_serializer import report_to_dict
from valuation_services.valuation_service import (
    DataQualityIssue,
    InventoryValuationService,
    ValuationReport,
)

__all__ = [
    "DataQualityIssue",
    "ExchangeRateResolver",
    "InMemoryRateRepository",
    "InventoryValuationService",
    "RateObservation",
    "RateRepository",
    "SqlAlchemyRateRepository",
    "ValuationReport",
    "report_to_dict",
]
