"""
structlog setup for the tax service.

A wallet query logs one snake_case event per step (wallet_query_start,
fetcher_partial_data_loss, price_source_failed, ...) with keyword context.
Records leave as one JSON object per line on stdout, keyed by event_type and
stamped with an ISO 8601 UTC timestamp; bind_wallet() adds wallet_id so a
single query can be followed through the fetcher, caches and classifier.

Depends on structlog and the stdlib only: every backend_taxbot module
imports this one.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

ROOT_LOGGER_NAME = "backend_taxbot"

EventDict = dict[str, Any]


def _level_value(name: str) -> int:
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _add_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _normalize_event(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """event -> event_type, and mirror it into message unless one was passed."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "event_type" in event_dict:
        event_dict.setdefault("message", str(event_dict["event_type"]))
    return event_dict


def _renderer(fmt: str) -> Any:
    if fmt == "json":
        # default=str renders enum and Pubkey context values
        return structlog.processors.JSONRenderer(default=str)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_structlog(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _add_timestamp,
            _normalize_event,
            _renderer(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level_value(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger with `logger` bound to the module name.

        logger = get_logger(__name__)
        logger.info("price_cache_miss", asset_id=mint)
        # {"event_type": "price_cache_miss", "asset_id": "...", "level": "info",
        #  "logger": "backend_taxbot.pricing.price_cache", "timestamp": "..."}
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet_id: str) -> structlog.BoundLogger:
    """Logger for one wallet query; every event carries wallet_id."""
    return get_logger(ROOT_LOGGER_NAME).bind(wallet_id=wallet_id)
