import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from vouali.errors import InvalidArgument
from vouali.model import settings
from vouali.model.settings import (
    DEFAULT_FEE_PERCENT, FEE_PERCENT, PURCHASE_ENABLED, RedisSettingsStore,
    SqlSettingsStore,
)

pytestmark = pytest.mark.anyio


class FakeRedis:
    """The two hash commands the settings store uses."""

    def __init__(self):
        self.hashes = {}

    async def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    async def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value
        return 1


class UndecodableRedis(FakeRedis):
    async def hget(self, name, key):
        # what redis-py raises for non-UTF-8 bytes with decode_responses=True
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")


class BrokenStore:
    def __init__(self, exc):
        self.exc = exc
        self.writes = 0

    async def get_bool(self, key):
        raise self.exc

    async def get_text(self, key):
        raise self.exc

    async def set_bool(self, key, value):
        self.writes += 1

    async def set_text(self, key, value):
        self.writes += 1


def sql_store(db, gs):
    return SqlSettingsStore(db=gs.session, gated=gs.gated)


@pytest.fixture(params=["sql", "redis"])
async def store(request, db):
    if request.param == "redis":
        yield RedisSettingsStore(r=FakeRedis())
        return
    async with db.gs() as gs:
        yield sql_store(db, gs)


# ----------------------------
# purchase_enabled
# ----------------------------
async def test_purchase_enabled_defaults_to_true(store):
    assert await settings.is_purchase_enabled(store) is True


async def test_only_explicit_false_disables_purchases(store):
    await settings.set_purchase_enabled(store, False)
    assert await settings.is_purchase_enabled(store) is False
    await settings.set_purchase_enabled(store, True)
    assert await settings.is_purchase_enabled(store) is True


async def test_null_purchase_enabled_row_counts_as_enabled(db):
    await db.execute(
        "INSERT INTO app_settings (key, value_text) VALUES (:k, 'x')",
        k=PURCHASE_ENABLED,
    )
    async with db.gs() as gs:
        assert await settings.is_purchase_enabled(sql_store(db, gs)) is True


@pytest.mark.parametrize("exc", [
    OperationalError("SELECT", {}, Exception("no such table: app_settings")),
    RedisConnectionError("connection refused"),
    OSError("network unreachable"),
])
async def test_unreadable_store_fails_open(exc):
    store = BrokenStore(exc)
    assert await settings.is_purchase_enabled(store) is True
    assert await settings.get_fee_percent(store) == DEFAULT_FEE_PERCENT


async def test_unmigrated_database_fails_open(bare_db):
    async with bare_db.gs() as gs:
        store = sql_store(bare_db, gs)
        assert await settings.is_purchase_enabled(store) is True
        assert await settings.get_fee_percent(store) == DEFAULT_FEE_PERCENT


@pytest.mark.parametrize("exc", [
    UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
    RuntimeError("unexpected"),
])
async def test_any_read_error_resolves_to_defaults(exc):
    store = BrokenStore(exc)
    assert await settings.is_purchase_enabled(store) is True
    assert await settings.get_fee_percent(store) == DEFAULT_FEE_PERCENT


async def test_undecodable_redis_value_fails_open():
    store = RedisSettingsStore(r=UndecodableRedis())
    assert await settings.is_purchase_enabled(store) is True
    assert await settings.get_fee_percent(store) == DEFAULT_FEE_PERCENT


# ----------------------------
# fee percent
# ----------------------------
async def test_fee_percent_defaults(store):
    assert await settings.get_fee_percent(store) == 5.0


@pytest.mark.parametrize("value", [0, 9.5, 100])
async def test_fee_percent_roundtrip_at_bounds(store, value):
    assert await settings.set_fee_percent(store, value) == float(value)
    assert await settings.get_fee_percent(store) == float(value)


@pytest.mark.parametrize("value", [150, -1, 100.01, float("nan"),
                                   float("inf"), 10**400, True, "9",
                                   None])
async def test_fee_percent_rejects_before_writing(value):
    store = BrokenStore(RuntimeError("unused"))
    with pytest.raises(InvalidArgument):
        await settings.set_fee_percent(store, value)
    assert store.writes == 0


async def test_rejected_fee_keeps_stored_value(store):
    await settings.set_fee_percent(store, 7)
    with pytest.raises(InvalidArgument):
        await settings.set_fee_percent(store, 150)
    assert await settings.get_fee_percent(store) == 7.0


@pytest.mark.parametrize("raw", ["abc", "", "150", "-0.5", "nan", "inf"])
async def test_garbage_fee_text_reads_as_default(store, raw):
    await store.set_text(FEE_PERCENT, raw)
    assert await settings.get_fee_percent(store) == DEFAULT_FEE_PERCENT


@pytest.mark.parametrize("raw, expected", [
    (None, None),
    ("9", 9.0),
    (" 2.5 ", 2.5),
    ("100", 100.0),
    ("1e2", 100.0),
    ("100.5", None),
    ("x", None),
])
def test_parse_fee_percent(raw, expected):
    assert settings.parse_fee_percent(raw) == expected


# ----------------------------
# factory
# ----------------------------
def test_new_store_requires_its_backend_handles(monkeypatch):
    monkeypatch.setattr(settings, "BACKEND", "sql")
    with pytest.raises(RuntimeError):
        settings.new_store()
    monkeypatch.setattr(settings, "BACKEND", "redis")
    with pytest.raises(RuntimeError):
        settings.new_store(db=object(), gated=object())
    assert isinstance(settings.new_store(r=FakeRedis()), RedisSettingsStore)
