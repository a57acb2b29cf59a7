from __future__ import annotations
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...infra.sql import Gated


class SettingsStore:
    """`app_settings` rows: one per key, a bool and a text column."""

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def get_bool(self, key: str) -> Optional[bool]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT value_bool FROM app_settings WHERE key = :k"),
                    {"k": key},
                )).first()
        if row is None or row[0] is None:
            return None
        return bool(row[0])

    async def set_bool(self, key: str, value: bool) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO app_settings (key, value_bool)
                    VALUES (:k, :v)
                    ON CONFLICT (key) DO UPDATE SET value_bool = EXCLUDED.value_bool
                """), {"k": key, "v": bool(value)})

    async def get_text(self, key: str) -> Optional[str]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT value_text FROM app_settings WHERE key = :k"),
                    {"k": key},
                )).first()
        return None if row is None else row[0]

    async def set_text(self, key: str, value: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO app_settings (key, value_text)
                    VALUES (:k, :v)
                    ON CONFLICT (key) DO UPDATE SET value_text = EXCLUDED.value_text
                """), {"k": key, "v": value})
