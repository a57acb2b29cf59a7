from __future__ import annotations

import os
from typing import Any, Awaitable, Callable

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi import Form
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from .errors import CoreError, InvalidArgument, StorageFailure
from .errors import redact, storage_failure
from .helpers import ct_equal
from .infra.logs import configure_logging
from .infra.sql import GatedAsyncSession, make_async_engine
from .infra.timings import install_shutdown_flush, snapshot, timeit
from .model import courtesies, lots, orders, promo
from .model import settings
from .model.db import Base
from .model.settings import SettingsStore, new_store

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./vouali.db")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# mutating lot responses must never be served from a cache
NO_STORE = {"Cache-Control": "no-store, max-age=0"}

logger = configure_logging("vouali", LOG_LEVEL)

engine, SessionAsync, _, gated = make_async_engine(DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


async def gated_session(
    db: AsyncSession = Depends(get_db),
) -> GatedAsyncSession:
    return GatedAsyncSession(session=db, gated=gated)


async def settings_store(
    request: Request, db: AsyncSession = Depends(get_db),
) -> SettingsStore:
    if settings.BACKEND == "redis":
        return new_store(r=request.app.state.redis)
    return new_store(db=db, gated=gated)


app = FastAPI(
    title="Vouali Admin",
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

# shutdown handler posting our operation timings, if configured
install_shutdown_flush(app)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    logger.info("vouali admin starting", extra={
        "settings_backend": settings.BACKEND,
        "database": engine.url.render_as_string(hide_password=True),
    })


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _redis_start():
    if settings.BACKEND == "redis":
        REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _engine_stop():
    await engine.dispose()


# ----------------------------
# Errors
# ----------------------------
@app.exception_handler(CoreError)
async def _core_error(request: Request, exc: CoreError):
    body: dict[str, Any] = {"detail": exc.message}
    if exc.details:
        body["details"] = exc.details
    return ORJSONResponse(body, status_code=exc.status_code)


# ----------------------------
# Helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="not authorized")


async def json_body(request: Request) -> Any:
    """Request body as JSON, or None when it is empty or not JSON."""
    raw = await request.body()
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None


# ----------------------------
# Admin session
# ----------------------------
@app.post("/admin/login")
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
):
    ok_user = ct_equal(username.strip(), ADMIN_USERNAME)
    ok_pass = ct_equal(password, ADMIN_PASSWORD)
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        return {"ok": True}
    logger.warning("admin login rejected", extra={"username": username})
    raise HTTPException(status_code=401, detail="invalid credentials")


@app.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return {"ok": True}


# ----------------------------
# Lots
# ----------------------------
@app.get("/api/admin/lots", dependencies=[Depends(require_admin)])
async def api_admin_lots(gs: GatedAsyncSession = Depends(gated_session)):
    async with timeit("lots.list"):
        return await lots.list_lots(gs)


@app.post("/api/admin/lots/{lot_id}/activate",
          dependencies=[Depends(require_admin)])
async def api_activate_lot(
    lot_id: str, gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("lots.activate"):
        result = await lots.activate_lot(gs, lot_id)
    return ORJSONResponse(result, headers=NO_STORE)


@app.post("/api/admin/lots/{lot_id}/deactivate",
          dependencies=[Depends(require_admin)])
async def api_deactivate_lot(
    lot_id: str, gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("lots.deactivate"):
        result = await lots.deactivate_lot(gs, lot_id)
    return ORJSONResponse(result, headers=NO_STORE)


@app.get("/api/lot/active")
async def api_active_lot(gs: GatedAsyncSession = Depends(gated_session)):
    async with timeit("lots.active"):
        lot = await lots.get_active_lot(gs)
    return ORJSONResponse(lot, headers={
        "Cache-Control": "no-store, no-cache, must-revalidate",
    })


# ----------------------------
# Orders
# ----------------------------
@app.delete("/api/admin/orders/{order_id}",
            dependencies=[Depends(require_admin)])
async def api_delete_order(
    order_id: str, gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("orders.delete"):
        return await orders.delete_order(gs, order_id)


@app.post("/api/admin/orders/archive", dependencies=[Depends(require_admin)])
async def api_archive_orders(
    request: Request, gs: GatedAsyncSession = Depends(gated_session),
):
    # an unparseable body archives with the default filter
    include_pendentes, status = orders.parse_archive_options(
        await json_body(request)
    )
    async with timeit("orders.archive"):
        return await orders.archive_orders(
            gs, include_pendentes=include_pendentes, status=status
        )


@app.post("/api/admin/orders/purge", dependencies=[Depends(require_admin)])
async def api_purge_orders(
    request: Request, gs: GatedAsyncSession = Depends(gated_session),
):
    body = await json_body(request)
    scope = body.get("scope") if isinstance(body, dict) else None
    async with timeit("orders.purge"):
        return await orders.purge_orders(gs, scope)


@app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
async def api_admin_stats(
    gs: GatedAsyncSession = Depends(gated_session),
    store: SettingsStore = Depends(settings_store),
):
    fee = await settings.get_fee_percent(store)
    async with timeit("orders.stats"):
        return await orders.order_stats(gs, fee)


# ----------------------------
# Courtesies
# ----------------------------
@app.post("/api/admin/courtesies/purge",
          dependencies=[Depends(require_admin)])
async def api_purge_courtesies(
    gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("courtesies.purge"):
        result = await courtesies.purge_all_courtesies(gs)
    return {"success": True, **result}


# ----------------------------
# Promo cards
# ----------------------------
@app.get("/api/admin/promo-cards/{card_id}/media",
         dependencies=[Depends(require_admin)])
async def api_list_media(
    card_id: str, gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("promo.list_media"):
        return await promo.list_media(gs, card_id)


@app.delete("/api/admin/promo-cards/{card_id}/media/{media_id}",
            dependencies=[Depends(require_admin)])
async def api_delete_media(
    card_id: str, media_id: str,
    gs: GatedAsyncSession = Depends(gated_session),
):
    async with timeit("promo.delete_media"):
        return await promo.delete_media(gs, card_id, media_id)


# ----------------------------
# Settings
# ----------------------------
@app.get("/api/public/purchase-status")
async def api_purchase_status(
    store: SettingsStore = Depends(settings_store),
):
    async with timeit("settings.purchase_enabled"):
        return {"purchaseEnabled": await settings.is_purchase_enabled(store)}


@app.get("/api/admin/settings", dependencies=[Depends(require_admin)])
async def api_get_settings(store: SettingsStore = Depends(settings_store)):
    return {
        "purchaseEnabled": await settings.is_purchase_enabled(store),
        "mercadoPagoTaxaPercent": await settings.get_fee_percent(store),
    }


@app.patch("/api/admin/settings", dependencies=[Depends(require_admin)])
async def api_patch_settings(
    request: Request, store: SettingsStore = Depends(settings_store),
):
    body = await json_body(request)
    if not isinstance(body, dict):
        raise InvalidArgument("invalid body")
    if "purchaseEnabled" not in body and "mercadoPagoTaxaPercent" not in body:
        raise InvalidArgument(
            "nothing to update",
            details="expected purchaseEnabled and/or mercadoPagoTaxaPercent",
        )
    enabled = body.get("purchaseEnabled")
    if "purchaseEnabled" in body and not isinstance(enabled, bool):
        raise InvalidArgument("invalid purchaseEnabled")

    try:
        # fee first: it validates before writing, so a bad fee writes nothing
        if "mercadoPagoTaxaPercent" in body:
            await settings.set_fee_percent(
                store, body["mercadoPagoTaxaPercent"]
            )
        if "purchaseEnabled" in body:
            await settings.set_purchase_enabled(store, enabled)
    except SQLAlchemyError as e:
        raise storage_failure("error saving settings", e) from e
    except RedisError as e:
        raise StorageFailure("error saving settings",
                             details=redact(str(e))) from e

    return {
        "purchaseEnabled": await settings.is_purchase_enabled(store),
        "mercadoPagoTaxaPercent": await settings.get_fee_percent(store),
    }


# ----------------------------
# Health / diagnostics
# ----------------------------
async def _safe_check(
    label: str, fn: Callable[[], Awaitable[Any]]
) -> dict[str, Any]:
    try:
        return {"label": label, "ok": True, "value": await fn()}
    except StorageFailure as e:
        return {"label": label, "ok": False, "error": e.details}
    except SQLAlchemyError as e:
        return {"label": label, "ok": False,
                "error": storage_failure(label, e).details}


@app.get("/api/health")
async def api_health(db: AsyncSession = Depends(get_db)):
    async def scalar(sql: str, **params):
        async with gated():
            async with db.begin():
                return (await db.execute(text(sql), params)).scalar_one()

    checks = [
        await _safe_check("db:connect", lambda: scalar("SELECT 1")),
        await _safe_check("db:table:lots",
                          lambda: scalar("SELECT COUNT(*) FROM lots")),
        await _safe_check("db:table:lots_active",
                          lambda: lots.count_active_lots(
                              GatedAsyncSession(session=db, gated=gated))),
        await _safe_check("db:table:orders",
                          lambda: scalar("SELECT COUNT(*) FROM orders")),
        await _safe_check("db:table:promo_cards",
                          lambda: scalar("SELECT COUNT(*) FROM promo_cards")),
    ]
    ok = all(c["ok"] for c in checks)
    return ORJSONResponse(
        {"ok": ok, "checks": checks},
        status_code=200 if ok else 500,
    )


@app.get("/api/admin/timings", dependencies=[Depends(require_admin)])
async def api_admin_timings():
    return {"items": snapshot()}
