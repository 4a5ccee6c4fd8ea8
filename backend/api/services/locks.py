from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


def offer_key(offer_id: int) -> str:
    return f"offer:{offer_id}"


def product_key(product_id: int) -> str:
    return f"product:{product_id}"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


class KeyedLockManager:
    """Per-key asyncio locks serialising work on one offer, product or user.

    All keys for a unit of work are taken in one ``hold`` call and acquired in
    sorted order, so two holders can never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        for key in ordered:
            self._refs[key] = self._refs.get(key, 0) + 1
            self._locks.setdefault(key, asyncio.Lock())
        acquired: list[str] = []
        try:
            for key in ordered:
                await self._locks[key].acquire()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
            for key in ordered:
                self._refs[key] -= 1
                if not self._refs[key]:
                    del self._refs[key]
                    del self._locks[key]
