# model/settings/__init__.py
"""
Global settings with fail-open reads.

The backends only move values in and out of storage. The policy functions
below decide what a missing or unreadable value means, so that a fresh or
half-migrated deployment never locks the public purchase flow:

- purchase_enabled: missing, null or unreadable -> True; only a stored False
  disables purchasing.
- mercado_pago_fee_percent: missing, unparseable, out of [0, 100] or
  unreadable -> DEFAULT_FEE_PERCENT.

Writes are not fail-open: storage errors propagate to the caller.
"""
import logging
import math
import os
from typing import Optional, Union

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from ...errors import InvalidArgument
from ...infra.sql import Gated
from ._redis import SettingsStore as RedisSettingsStore
from ._sql import SettingsStore as SqlSettingsStore

logger = logging.getLogger(__name__)

BACKEND = os.getenv("SETTINGS_BACKEND", "sql").lower()  # 'sql' | 'redis'

PURCHASE_ENABLED = "purchase_enabled"
FEE_PERCENT = "mercado_pago_fee_percent"

DEFAULT_PURCHASE_ENABLED = True
DEFAULT_FEE_PERCENT = 5.0
FEE_PERCENT_MIN = 0.0
FEE_PERCENT_MAX = 100.0

SettingsStore = Union[SqlSettingsStore, RedisSettingsStore]


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              gated: Optional[Gated] = None) -> SettingsStore:
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("SettingsStore(redis) requires r=redis.Redis")
        return RedisSettingsStore(r=r)
    if db is None:
        raise RuntimeError("SettingsStore(sql) requires db=AsyncSession")
    if gated is None:
        raise RuntimeError("SettingsStore(sql) requires gated=Gated")
    return SqlSettingsStore(db=db, gated=gated)


async def is_purchase_enabled(store: SettingsStore) -> bool:
    try:
        value = await store.get_bool(PURCHASE_ENABLED)
    except Exception:
        # e.g. app_settings not migrated yet, or an undecodable value;
        # no read failure may block purchases
        logger.warning("purchase_enabled unreadable, defaulting to %s",
                       DEFAULT_PURCHASE_ENABLED, exc_info=True)
        return DEFAULT_PURCHASE_ENABLED
    return value is not False


async def set_purchase_enabled(store: SettingsStore, enabled: bool) -> None:
    await store.set_bool(PURCHASE_ENABLED, bool(enabled))
    logger.info("purchase_enabled set", extra={"enabled": bool(enabled)})


def parse_fee_percent(raw: Optional[str]) -> Optional[float]:
    """Stored text -> percent, or None when it is not a usable value."""
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    if not FEE_PERCENT_MIN <= value <= FEE_PERCENT_MAX:
        return None
    return value


async def get_fee_percent(store: SettingsStore) -> float:
    try:
        raw = await store.get_text(FEE_PERCENT)
    except Exception:
        logger.warning("fee percent unreadable, defaulting to %s",
                       DEFAULT_FEE_PERCENT, exc_info=True)
        return DEFAULT_FEE_PERCENT
    value = parse_fee_percent(raw)
    return DEFAULT_FEE_PERCENT if value is None else value


async def set_fee_percent(store: SettingsStore, percent) -> float:
    # validate before touching storage
    if isinstance(percent, bool) or not isinstance(percent, (int, float)):
        raise InvalidArgument("fee percent must be a number",
                              details=f"got {percent!r}")
    # compare before float(): huge ints overflow it, NaN fails both bounds
    if not FEE_PERCENT_MIN <= percent <= FEE_PERCENT_MAX:
        raise InvalidArgument(
            "fee percent out of range",
            details=f"expected {FEE_PERCENT_MIN:g}..{FEE_PERCENT_MAX:g}, "
                    f"got {percent!r}",
        )
    value = float(percent)
    await store.set_text(FEE_PERCENT, str(value))
    logger.info("fee percent set", extra={"fee_percent": value})
    return value


__all__ = [
    "SettingsStore", "SqlSettingsStore", "RedisSettingsStore", "new_store",
    "BACKEND", "is_purchase_enabled", "set_purchase_enabled",
    "get_fee_percent", "set_fee_percent", "parse_fee_percent",
    "DEFAULT_FEE_PERCENT", "PURCHASE_ENABLED", "FEE_PERCENT",
]
