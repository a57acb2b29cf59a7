import pytest
from sqlalchemy import text

import init_db
from vouali.infra.sql import make_async_engine

pytestmark = pytest.mark.anyio


async def test_bootstrap_is_repeatable(tmp_path):
    url = f"sqlite:///{tmp_path / 'boot.db'}"
    await init_db.main(url)
    await init_db.main(url)

    engine, SessionAsync, _, _ = make_async_engine(url)
    try:
        async with SessionAsync() as session:
            lots = (await session.execute(text(
                "SELECT name, active FROM lots"
            ))).all()
            enabled = (await session.execute(text(
                "SELECT value_bool FROM app_settings "
                "WHERE key = 'purchase_enabled'"
            ))).scalar_one()
    finally:
        await engine.dispose()

    assert [(name, bool(active)) for name, active in lots] == [
        ("Lote 1", True)
    ]
    assert bool(enabled) is True
