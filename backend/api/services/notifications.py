from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from redis.asyncio import Redis


class NotificationService:
    """Redis-backed per-user event lists that clients poll after a mutation."""

    def __init__(
        self,
        redis_url: str,
        namespace: str = "meraki",
        *,
        backlog: int = 100,
        redis_client: Optional[Redis] = None,
    ) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._backlog = backlog
        self._redis: Optional[Redis] = redis_client

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = Redis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)

    async def close(self) -> None:
        if self._redis is not None:
            close = getattr(self._redis, "aclose", None)
            if callable(close):
                await close()
            else:
                await self._redis.close()
            self._redis = None

    def _inbox_key(self, user_id: int) -> str:
        return f"{self._namespace}:notifications:{user_id}"

    def _channel(self) -> str:
        return f"{self._namespace}:events"

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("NotificationService is not connected")
        return self._redis

    @staticmethod
    def _json_dumps(payload: Any) -> str:
        def _default(obj: Any) -> Any:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            if isinstance(obj, (UUID, Decimal)):
                return str(obj)
            raise TypeError(f"Object of type {type(obj)!r} is not JSON serializable")

        return json.dumps(payload, default=_default)

    async def notify(self, user_id: int, event: dict[str, Any]) -> None:
        redis = self._require_redis()
        envelope = {
            "user_id": user_id,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            **event,
        }
        raw = self._json_dumps(envelope)
        key = self._inbox_key(user_id)
        await redis.lpush(key, raw)
        await redis.ltrim(key, 0, self._backlog - 1)
        await redis.publish(self._channel(), raw)

    async def poll(self, user_id: int, limit: int = 50) -> list[dict[str, Any]]:
        """Drain up to ``limit`` pending events, oldest first."""
        redis = self._require_redis()
        key = self._inbox_key(user_id)
        async with redis.pipeline(transaction=True) as pipe:
            pipe.lrange(key, -limit, -1)
            pipe.ltrim(key, 0, -limit - 1)
            raw_items, _ = await pipe.execute()
        return [json.loads(item) for item in reversed(raw_items)]

    async def pending(self, user_id: int) -> int:
        redis = self._require_redis()
        return int(await redis.llen(self._inbox_key(user_id)))
