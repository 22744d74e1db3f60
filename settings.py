"""
Centralized configuration for ingestion and remote sync.

Environment variables:
    DATABASE_URL                → remote store; empty means "not configured" (cache-only)
    SNAPSHOT_CACHE_DIR          → directory holding the local snapshot cache
    SYNC_BATCH_SIZE             → default insert batch size
    SYNC_REVENUE_BATCH_SIZE     → insert batch size for revenue lines
    SYNC_RETRY_MAX              → attempt ceiling for batch and row writes
    SYNC_RETRY_DELAY_S          → base delay between attempts (multiplied by attempt number)
    SYNC_BATCH_PAUSE_S          → fixed pause between successive batches
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

RECORD_KINDS: tuple[str, ...] = (
    "revenue",
    "purchase",
    "inventory",
    "supplier",
    "quote_request",
    "sales_plan",
    "cost_reduction",
)

# Aliases accepted from clients and older exports.
KIND_ALIASES = {
    "revenue": "revenue",
    "item_revenue": "revenue",
    "purchase": "purchase",
    "purchases": "purchase",
    "inventory": "inventory",
    "stock": "inventory",
    "supplier": "supplier",
    "suppliers": "supplier",
    "quote_request": "quote_request",
    "quote": "quote_request",
    "quotes": "quote_request",
    "rfq": "quote_request",
    "sales_plan": "sales_plan",
    "sales": "sales_plan",
    "plan": "sales_plan",
    "cost_reduction": "cost_reduction",
    "cr": "cost_reduction",
}


@dataclass(frozen=True)
class SyncSettings:
    """Resolved configuration for the ingestion and sync layer."""

    database_url: str
    snapshot_cache_dir: str
    batch_size: int
    revenue_batch_size: int
    retry_max: int
    retry_delay_s: float
    batch_pause_s: float
    sql_echo: bool = False

    @property
    def remote_configured(self) -> bool:
        return bool(self.database_url)

    def batch_size_for(self, kind: str) -> int:
        if kind == "revenue":
            return self.revenue_batch_size
        return self.batch_size


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid int for %s=%s; falling back to %s", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid float for %s=%s; falling back to %s", name, value, default)
        return default


@lru_cache(maxsize=1)
def load_settings() -> SyncSettings:
    """Load and cache sync configuration from environment variables."""

    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        logger.warning("DATABASE_URL not configured; records will be kept in the local snapshot cache only")

    return SyncSettings(
        database_url=database_url,
        snapshot_cache_dir=os.getenv("SNAPSHOT_CACHE_DIR", ".snapshot_cache"),
        batch_size=max(1, _env_int("SYNC_BATCH_SIZE", 500)),
        revenue_batch_size=max(1, _env_int("SYNC_REVENUE_BATCH_SIZE", 200)),
        retry_max=max(1, _env_int("SYNC_RETRY_MAX", 3)),
        retry_delay_s=max(0.0, _env_float("SYNC_RETRY_DELAY_S", 0.05)),
        batch_pause_s=max(0.0, _env_float("SYNC_BATCH_PAUSE_S", 0.05)),
        sql_echo=os.getenv("NODE_ENV") == "development",
    )


def resolve_kind(value: Optional[Any]) -> Optional[str]:
    """Normalize a client-supplied record kind (hyphens, case, plurals)."""
    if value is None:
        return None
    text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    if not text:
        return None
    return KIND_ALIASES.get(text)
