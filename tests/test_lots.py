import anyio
import pytest

from vouali.errors import NotFound, StorageFailure
from vouali.model import lots

from .conftest import make_lot

pytestmark = pytest.mark.anyio


async def active_ids(db):
    return set(await db.scalars("SELECT id FROM lots WHERE active = 1"))


async def test_activate_switches_the_single_active_lot(db):
    a = make_lot("Lote 1", active=True)
    b = make_lot("Lote 2")
    c = make_lot("Lote 3")
    await db.add(a, b, c)

    async with db.gs() as gs:
        result = await lots.activate_lot(gs, b.id)
    assert result["activeCount"] == 1
    assert result["activatedLot"]["id"] == b.id
    assert result["activatedLot"]["active"] is True
    assert await active_ids(db) == {b.id}

    async with db.gs() as gs:
        result = await lots.activate_lot(gs, c.id)
    assert result["activeCount"] == 1
    assert await active_ids(db) == {c.id}


async def test_activate_repairs_several_active_lots(db):
    # written by something outside the lot manager
    a = make_lot("A", active=True)
    b = make_lot("B", active=True)
    c = make_lot("C")
    await db.add(a, b, c)

    async with db.gs() as gs:
        result = await lots.activate_lot(gs, c.id)
    assert result["activeCount"] == 1
    assert await active_ids(db) == {c.id}


async def test_activate_same_lot_again_changes_nothing(db):
    a = make_lot("A", active=True)
    b = make_lot("B")
    await db.add(a, b)

    for _ in range(2):
        async with db.gs() as gs:
            result = await lots.activate_lot(gs, a.id)
        assert result["activeCount"] == 1
        assert await active_ids(db) == {a.id}


async def test_activate_unknown_lot_leaves_active_set_untouched(db):
    a = make_lot("A", active=True)
    b = make_lot("B")
    await db.add(a, b)

    with pytest.raises(NotFound):
        async with db.gs() as gs:
            await lots.activate_lot(gs, "does-not-exist")
    assert await active_ids(db) == {a.id}


async def test_concurrent_activations_leave_exactly_one_active(db):
    rows = [make_lot(f"Lote {i}") for i in range(6)]
    await db.add(*rows)

    async def activate(lot_id):
        async with db.gs() as gs:
            await lots.activate_lot(gs, lot_id)

    async with anyio.create_task_group() as tg:
        for row in rows:
            tg.start_soon(activate, row.id)

    active = await active_ids(db)
    assert len(active) == 1
    assert active <= {r.id for r in rows}


async def test_deactivate_lot(db):
    a = make_lot("A", active=True)
    await db.add(a)

    async with db.gs() as gs:
        result = await lots.deactivate_lot(gs, a.id)
    assert result["deactivatedLot"]["active"] is False
    assert await active_ids(db) == set()

    with pytest.raises(NotFound):
        async with db.gs() as gs:
            await lots.deactivate_lot(gs, "nope")


async def test_get_active_lot(db):
    with pytest.raises(NotFound):
        async with db.gs() as gs:
            await lots.get_active_lot(gs)

    a = make_lot("Lote FEMININO", abada_price_cents=7000)
    await db.add(a)
    async with db.gs() as gs:
        await lots.activate_lot(gs, a.id)
    async with db.gs() as gs:
        lot = await lots.get_active_lot(gs)
    assert lot["id"] == a.id
    assert lot["abadaPriceCents"] == 7000
    assert lot["createdAt"].endswith("+00:00")


async def test_list_lots_puts_active_first(db):
    old = make_lot("old", created_at=1_000.0)
    new = make_lot("new", created_at=2_000.0)
    on = make_lot("on", active=True, created_at=500.0)
    await db.add(old, new, on)

    async with db.gs() as gs:
        listed = await lots.list_lots(gs)
    assert [row["name"] for row in listed] == ["on", "new", "old"]

    async with db.gs() as gs:
        assert await lots.count_active_lots(gs) == 1


async def test_storage_error_is_typed_and_carries_driver_message(db):
    await db.execute("DROP TABLE lots")

    with pytest.raises(StorageFailure) as exc_info:
        async with db.gs() as gs:
            await lots.activate_lot(gs, "x")
    assert "no such table" in exc_info.value.details
    assert "sqlite://" not in exc_info.value.details
