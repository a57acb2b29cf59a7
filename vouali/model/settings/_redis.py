from __future__ import annotations
from typing import Optional
import redis.asyncio as redis

# ---- keys
SETTINGS_HASH = "app_settings"


def k_bool(key: str) -> str: return f"{key}:bool"
def k_text(key: str) -> str: return f"{key}:text"


class SettingsStore:
    """All settings live in one hash; bools are stored as "1"/"0"."""

    def __init__(self, *, r: redis.Redis) -> None:
        # values are strings: the client runs with decode_responses=True
        self.r = r

    async def get_bool(self, key: str) -> Optional[bool]:
        v = await self.r.hget(SETTINGS_HASH, k_bool(key))
        if v is None or v == "":
            return None
        return v == "1"

    async def set_bool(self, key: str, value: bool) -> None:
        await self.r.hset(SETTINGS_HASH, k_bool(key), "1" if value else "0")

    async def get_text(self, key: str) -> Optional[str]:
        return await self.r.hget(SETTINGS_HASH, k_text(key))

    async def set_text(self, key: str, value: str) -> None:
        await self.r.hset(SETTINGS_HASH, k_text(key), value)
