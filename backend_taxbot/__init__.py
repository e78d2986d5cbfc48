"""
Backend TaxBot: Solana wallet tax estimator.

Fetches recent wallet activity over Solana RPC, classifies each transaction by
its balance effect, values movements in USD and rolls them into a tax summary.
"""

__version__ = "0.1.0"
