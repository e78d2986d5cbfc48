"""
TaxBot analytics engine.

Turns fetched Solana transactions into a tax estimate.
Modules: classifier, aggregator, pipeline.
"""

from backend_taxbot.analytics.aggregator import TaxSummary, aggregate
from backend_taxbot.analytics.classifier import ClassifiedEvent, EventType, classify
from backend_taxbot.analytics.pipeline import (
    AssetHolding,
    QueryState,
    WalletReport,
    WalletTaxPipeline,
    validate_address,
)

__all__ = [
    "AssetHolding",
    "ClassifiedEvent",
    "EventType",
    "QueryState",
    "TaxSummary",
    "WalletReport",
    "WalletTaxPipeline",
    "aggregate",
    "classify",
    "validate_address",
]
