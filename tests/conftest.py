import os
import tempfile
from contextlib import asynccontextmanager

import pytest
from sqlalchemy import text

# vouali.server builds its engine at import time
_TMP = tempfile.mkdtemp(prefix="vouali-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/server.db"
os.environ["SETTINGS_BACKEND"] = "sql"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "test-password"
os.environ["LOG_LEVEL"] = "WARNING"

from vouali.helpers import new_id, now_ts  # noqa: E402
from vouali.infra.sql import GatedAsyncSession, make_async_engine  # noqa: E402
from vouali.model.db import (  # noqa: E402
    Base, Courtesy, CourtesyItem, Lot, Order, OrderItem, PromoCard,
    PromoCardMedia,
)


class Database:
    """Test handle on a private SQLite file."""

    def __init__(self, engine, SessionAsync, gated):
        self.engine = engine
        self.SessionAsync = SessionAsync
        self.gated = gated

    @asynccontextmanager
    async def gs(self):
        async with self.SessionAsync() as session:
            yield GatedAsyncSession(session=session, gated=self.gated)

    async def add(self, *rows):
        async with self.SessionAsync() as session:
            async with session.begin():
                session.add_all(rows)

    async def scalar(self, sql: str, **params):
        async with self.SessionAsync() as session:
            return (await session.execute(text(sql), params)).scalar_one()

    async def scalars(self, sql: str, **params):
        async with self.SessionAsync() as session:
            return list((await session.execute(text(sql), params)).scalars())

    async def execute(self, sql: str, **params):
        async with self.SessionAsync() as session:
            async with session.begin():
                await session.execute(text(sql), params)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db(tmp_path):
    engine, SessionAsync, _, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'test.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield Database(engine, SessionAsync, gated)
    await engine.dispose()


@pytest.fixture
async def bare_db(tmp_path):
    """A database nobody has migrated yet."""
    engine, SessionAsync, _, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'bare.db'}"
    )
    yield Database(engine, SessionAsync, gated)
    await engine.dispose()


# ----------------------------
# row factories
# ----------------------------
def make_lot(name="Lote", active=False, created_at=None, **kw):
    return Lot(
        id=kw.pop("id", new_id()),
        name=name,
        abada_price_cents=kw.pop("abada_price_cents", 5000),
        pulseira_price_cents=kw.pop("pulseira_price_cents", 2000),
        active=active,
        created_at=now_ts() if created_at is None else created_at,
    )


def make_order(status="PAGO", archived_at=None, total_value_cents=5000, **kw):
    return Order(
        id=kw.pop("id", new_id()),
        status=status,
        payment_status=kw.pop("payment_status", None),
        total_value_cents=total_value_cents,
        customer_email=kw.pop("customer_email", "fan@example.com"),
        created_at=now_ts(),
        archived_at=archived_at,
    )


def make_order_items(order, n=2):
    return [
        OrderItem(id=new_id(), order_id=order.id, kind="ABADA", qty=1,
                  unit_price_cents=5000)
        for _ in range(n)
    ]


def make_courtesy(status="ATIVA", n_items=1):
    c = Courtesy(id=new_id(), name="Convidado", status=status,
                 created_at=now_ts())
    items = [CourtesyItem(id=new_id(), courtesy_id=c.id, kind="PULSEIRA",
                          qty=1) for _ in range(n_items)]
    return [c, *items]


def make_card(title="Promo"):
    return PromoCard(id=new_id(), title=title, active=True, display_order=0)


def make_media(card, display_order=0, media_type="image"):
    return PromoCardMedia(
        id=new_id(),
        promo_card_id=card.id,
        media_url=f"/uploads/{new_id()}.jpg",
        media_type=media_type,
        display_order=display_order,
    )
