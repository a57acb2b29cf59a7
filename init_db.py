import asyncio
import logging
import os

from sqlalchemy import text

from vouali.helpers import new_id, now_ts
from vouali.infra.logs import configure_logging
from vouali.infra.sql import GatedAsyncSession, make_async_engine
from vouali.model.db import Base
from vouali.model.lots import activate_lot
from vouali.model.settings import PURCHASE_ENABLED

logger = logging.getLogger("vouali.init_db")

# Defaults for a fresh deployment
FIRST_LOT_NAME = "Lote 1"
FIRST_LOT_ABADA_CENTS = 5000     # R$ 50,00
FIRST_LOT_PULSEIRA_CENTS = 2000  # R$ 20,00


async def create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("schema existing / created")


async def seed_settings(gs: GatedAsyncSession):
    db = gs.session
    async with gs.gated():
        async with db.begin():
            # never overwrite an operator's choice
            await db.execute(text("""
                INSERT INTO app_settings (key, value_bool) VALUES (:k, :v)
                ON CONFLICT (key) DO NOTHING
            """), {"k": PURCHASE_ENABLED, "v": True})
    logger.info("default settings present / created")


async def seed_first_lot(gs: GatedAsyncSession):
    db = gs.session
    async with gs.gated():
        async with db.begin():
            row = (await db.execute(
                text("SELECT id FROM lots WHERE name = :n"),
                {"n": FIRST_LOT_NAME},
            )).first()
            if row is None:
                lot_id = new_id()
                await db.execute(text("""
                    INSERT INTO lots (id, name, abada_price_cents,
                                      pulseira_price_cents, active, created_at)
                    VALUES (:id, :n, :a, :p, :f, :ts)
                """), {
                    "id": lot_id, "n": FIRST_LOT_NAME,
                    "a": FIRST_LOT_ABADA_CENTS, "p": FIRST_LOT_PULSEIRA_CENTS,
                    "f": False, "ts": now_ts(),
                })
            else:
                lot_id = row[0]
    result = await activate_lot(gs, lot_id)
    logger.info("first lot active", extra={
        "lot": result["activatedLot"]["name"],
        "active_count": result["activeCount"],
    })


async def main(database_url: str):
    engine, SessionAsync, _, gated = make_async_engine(database_url)
    try:
        await create_schema(engine)
        async with SessionAsync() as session:
            gs = GatedAsyncSession(session=session, gated=gated)
            await seed_settings(gs)
            await seed_first_lot(gs)
    finally:
        await engine.dispose()


if __name__ == '__main__':
    configure_logging("vouali", os.getenv("LOG_LEVEL", "INFO"))
    asyncio.run(main(os.getenv("DATABASE_URL", "sqlite:///./vouali.db")))
