# model/orders.py
"""
Order removal and archival.

Hard deletes always remove `order_items` before their `orders` row inside a
single transaction; the schema does not cascade. Archival is the
non-destructive way to clear the admin list between events: it only stamps
`archived_at` and never touches items.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import InvalidArgument, NotFound, storage_failure
from ..helpers import now_ts
from ..infra.sql import GatedAsyncSession
from .db import ATIVA, CANCELADO, PAGO, PENDENTE, RETIRADA, RETIRADO

logger = logging.getLogger(__name__)

# archived by default: everything that is no longer waiting for payment
SETTLED_STATUSES = (PAGO, RETIRADO, CANCELADO)

PURGE_SCOPES = ("ARCHIVED", "ALL")
PURGE_ARCHIVED_BATCH = 5000


async def delete_order(gs: GatedAsyncSession, order_id: str) -> Dict[str, Any]:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                order = (await db.execute(
                    text("""
                        SELECT id, status, payment_status
                        FROM orders WHERE id = :id
                    """),
                    {"id": order_id},
                )).mappings().first()
                if order is None:
                    raise NotFound("order not found", details=f"id: {order_id}")

                items = await db.execute(
                    text("DELETE FROM order_items WHERE order_id = :id"),
                    {"id": order_id},
                )
                deleted = await db.execute(
                    text("DELETE FROM orders WHERE id = :id"),
                    {"id": order_id},
                )
                if deleted.rowcount == 0:
                    # deleted by someone else between our read and delete
                    raise NotFound("order not found", details=f"id: {order_id}")
    except SQLAlchemyError as e:
        logger.error("delete order %s failed", order_id, exc_info=True)
        raise storage_failure("error deleting order", e) from e

    logger.info("order deleted", extra={
        "order_id": order_id,
        "status": order["status"],
        "payment_status": order["payment_status"],
        "items_deleted": items.rowcount,
    })
    return {"ok": True, "deleted": True}


def parse_archive_options(body: Any) -> Tuple[bool, Optional[str]]:
    """
    Turn a request body into (include_pendentes, status).

    Anything that is not a JSON object (including an unparseable body, passed
    in as None) is treated as the empty options object. `includePendentes`
    must be literally true to count; `status` must be a non-empty string.
    """
    if not isinstance(body, Mapping):
        body = {}
    include_pendentes = body.get("includePendentes") is True
    status = body.get("status")
    if not isinstance(status, str) or not status:
        status = None
    return include_pendentes, status


async def archive_orders(
    gs: GatedAsyncSession,
    include_pendentes: bool = False,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Stamp `archived_at` on every not-yet-archived order matching the filter.

    Filter priority: an explicit `status` wins; otherwise PENDENTE orders are
    left alone unless `include_pendentes` is set. Rows already archived never
    match, so repeating a call archives nothing new.
    """
    where = "archived_at IS NULL"
    params: Dict[str, Any] = {}
    stmt_bind = []
    if status:
        where += " AND status = :status"
        params["status"] = status
    elif not include_pendentes:
        where += " AND status IN :statuses"
        params["statuses"] = list(SETTLED_STATUSES)
        stmt_bind.append(bindparam("statuses", expanding=True))

    # one timestamp for the whole batch
    params["now"] = now_ts()
    stmt = text(f"UPDATE orders SET archived_at = :now WHERE {where}")
    if stmt_bind:
        stmt = stmt.bindparams(*stmt_bind)

    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                res = await db.execute(stmt, params)
    except SQLAlchemyError as e:
        logger.error("archive orders failed", exc_info=True)
        raise storage_failure("error archiving orders", e) from e

    logger.info("orders archived", extra={
        "archived": res.rowcount,
        "status": status,
        "include_pendentes": include_pendentes,
    })
    return {"ok": True, "archivedCount": res.rowcount}


async def purge_orders(gs: GatedAsyncSession, scope: Any) -> Dict[str, Any]:
    """
    Hard-delete orders: every archived order (scope ARCHIVED, at most
    PURGE_ARCHIVED_BATCH per call) or every order (scope ALL).
    """
    if scope not in PURGE_SCOPES:
        raise InvalidArgument(
            "invalid scope", details=f"expected one of {', '.join(PURGE_SCOPES)}"
        )

    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                if scope == "ALL":
                    items = await db.execute(text("DELETE FROM order_items"))
                    orders = await db.execute(text("DELETE FROM orders"))
                else:
                    ids = (await db.execute(
                        text("""
                            SELECT id FROM orders
                            WHERE archived_at IS NOT NULL
                            LIMIT :lim
                        """),
                        {"lim": PURGE_ARCHIVED_BATCH},
                    )).scalars().all()
                    if not ids:
                        return {"ok": True, "scope": scope,
                                "deletedOrders": 0, "deletedItems": 0}
                    items = await db.execute(
                        text("DELETE FROM order_items WHERE order_id IN :ids")
                        .bindparams(bindparam("ids", expanding=True)),
                        {"ids": list(ids)},
                    )
                    orders = await db.execute(
                        text("DELETE FROM orders WHERE id IN :ids")
                        .bindparams(bindparam("ids", expanding=True)),
                        {"ids": list(ids)},
                    )
    except SQLAlchemyError as e:
        logger.error("purge orders (%s) failed", scope, exc_info=True)
        raise storage_failure("error purging orders", e) from e

    logger.warning("orders purged", extra={
        "scope": scope,
        "deleted_orders": orders.rowcount,
        "deleted_items": items.rowcount,
    })
    return {
        "ok": True,
        "scope": scope,
        "deletedOrders": orders.rowcount,
        "deletedItems": items.rowcount,
    }


async def order_stats(
    gs: GatedAsyncSession, fee_percent: float
) -> Dict[str, Any]:
    """Dashboard counters; archived orders are excluded everywhere."""
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                by_status = dict((await db.execute(text("""
                    SELECT status, COUNT(*) FROM orders
                    WHERE archived_at IS NULL
                    GROUP BY status
                """))).all())
                revenue_cents = (await db.execute(
                    text("""
                        SELECT COALESCE(SUM(total_value_cents), 0) FROM orders
                        WHERE archived_at IS NULL AND status = :s
                    """),
                    {"s": PAGO},
                )).scalar_one()
                courtesies = dict((await db.execute(text("""
                    SELECT status, COUNT(*) FROM courtesies GROUP BY status
                """))).all())
    except SQLAlchemyError as e:
        raise storage_failure("error reading stats", e) from e

    revenue = int(revenue_cents) / 100
    return {
        "orders": {
            "total": sum(int(n) for n in by_status.values()),
            "pendentes": int(by_status.get(PENDENTE, 0)),
            "pagos": int(by_status.get(PAGO, 0)),
            "retirados": int(by_status.get(RETIRADO, 0)),
            "cancelados": int(by_status.get(CANCELADO, 0)),
        },
        "courtesies": {
            "total": sum(int(n) for n in courtesies.values()),
            "ativas": int(courtesies.get(ATIVA, 0)),
            "retiradas": int(courtesies.get(RETIRADA, 0)),
        },
        "receitaTotal": revenue,
        "feePercent": fee_percent,
        "receitaLiquida": round(revenue * (1 - fee_percent / 100), 2),
    }
