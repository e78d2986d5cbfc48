"""
Structured logging for Backend TaxBot.

Use get_logger() in all modules for JSON, aggregation-friendly output.
"""

from backend_taxbot.taxbot_logging.logger import bind_wallet, get_logger

__all__ = ["bind_wallet", "get_logger"]
