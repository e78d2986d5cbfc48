"""
Pricing package: USD unit prices and token metadata, both cached per process.
"""

from backend_taxbot.pricing.metadata import MetadataResolver, TokenMetadata
from backend_taxbot.pricing.price_cache import PriceCache, PriceEntry
from backend_taxbot.pricing.sources import JupiterPriceSource, PriceSource, TokenListSource

__all__ = [
    "JupiterPriceSource",
    "MetadataResolver",
    "PriceCache",
    "PriceEntry",
    "PriceSource",
    "TokenListSource",
    "TokenMetadata",
]
