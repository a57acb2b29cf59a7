# model/lots.py
"""
Pricing lots.

Exactly one lot is meant to be on sale at a time. `activate_lot` is the only
writer that turns a lot on and it does so by switching every other lot off in
the same transaction, after taking row locks on the whole table so that two
concurrent activations cannot both commit a different winner.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFound, storage_failure
from ..helpers import to_iso
from ..infra.sql import GatedAsyncSession
from .db import Lot

logger = logging.getLogger(__name__)

SQL_SELECT_LOT = """
    SELECT id, name, abada_price_cents, pulseira_price_cents, active,
           created_at
    FROM lots
"""


def lot_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "abadaPriceCents": int(row["abada_price_cents"]),
        "pulseiraPriceCents": int(row["pulseira_price_cents"]),
        # raw SQL on sqlite hands booleans back as 0/1
        "active": bool(row["active"]),
        "createdAt": to_iso(row["created_at"]),
    }


# UN-GATED internal function
async def _count_active(db) -> int:
    return int((await db.execute(
        text("SELECT COUNT(*) FROM lots WHERE active = :t"), {"t": True}
    )).scalar_one())


async def activate_lot(gs: GatedAsyncSession, lot_id: str) -> Dict[str, Any]:
    """
    Make `lot_id` the single active lot.

    Returns {"activatedLot": {...}, "activeCount": n}; n is expected to be 1.
    Raises NotFound (nothing changed) when the lot does not exist.
    """
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                # row locks on every lot; a concurrent activation waits here
                # until we commit and then sees our result
                await db.execute(
                    select(Lot.id).order_by(Lot.id).with_for_update()
                )

                exists = (await db.execute(
                    text("SELECT id FROM lots WHERE id = :id"), {"id": lot_id}
                )).first()
                if exists is None:
                    raise NotFound("lot not found", details=f"id: {lot_id}")

                await db.execute(
                    text("UPDATE lots SET active = :f WHERE active = :t"),
                    {"f": False, "t": True},
                )
                await db.execute(
                    text("UPDATE lots SET active = :t WHERE id = :id"),
                    {"t": True, "id": lot_id},
                )

                row = (await db.execute(
                    text(SQL_SELECT_LOT + " WHERE id = :id"), {"id": lot_id}
                )).mappings().one()
                active_count = await _count_active(db)
    except SQLAlchemyError as e:
        logger.error("activate lot %s failed", lot_id, exc_info=True)
        raise storage_failure("error activating lot", e) from e

    logger.info("lot activated",
                extra={"lot_id": lot_id, "active_count": active_count})
    return {"activatedLot": lot_to_dict(row), "activeCount": active_count}


async def deactivate_lot(gs: GatedAsyncSession, lot_id: str) -> Dict[str, Any]:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                res = await db.execute(
                    text("UPDATE lots SET active = :f WHERE id = :id"),
                    {"f": False, "id": lot_id},
                )
                if res.rowcount == 0:
                    raise NotFound("lot not found", details=f"id: {lot_id}")
                row = (await db.execute(
                    text(SQL_SELECT_LOT + " WHERE id = :id"), {"id": lot_id}
                )).mappings().one()
    except SQLAlchemyError as e:
        logger.error("deactivate lot %s failed", lot_id, exc_info=True)
        raise storage_failure("error deactivating lot", e) from e

    logger.info("lot deactivated", extra={"lot_id": lot_id})
    return {"deactivatedLot": lot_to_dict(row)}


async def get_active_lot(gs: GatedAsyncSession) -> Dict[str, Any]:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                row = (await db.execute(
                    text(SQL_SELECT_LOT + """
                        WHERE active = :t
                        ORDER BY created_at DESC
                        LIMIT 1
                    """),
                    {"t": True},
                )).mappings().first()
    except SQLAlchemyError as e:
        raise storage_failure("error reading active lot", e) from e
    if row is None:
        raise NotFound("no active lot")
    return lot_to_dict(row)


async def list_lots(gs: GatedAsyncSession) -> List[Dict[str, Any]]:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                rows = (await db.execute(
                    text(SQL_SELECT_LOT + " ORDER BY active DESC, "
                                          "created_at DESC")
                )).mappings().all()
    except SQLAlchemyError as e:
        raise storage_failure("error listing lots", e) from e
    return [lot_to_dict(r) for r in rows]


async def count_active_lots(gs: GatedAsyncSession) -> int:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                return await _count_active(db)
    except SQLAlchemyError as e:
        raise storage_failure("error counting active lots", e) from e
