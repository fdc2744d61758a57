from __future__ import annotations
from typing import Optional
import redis.asyncio as redis


class KVStore:
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    async def get(self, key: str) -> Optional[str]:
        return await self.r.get(key)

    async def set(self, key: str, value: str,
                  ttl: Optional[int] = None) -> None:
        await self.r.set(key, value, ex=ttl)

    async def set_if_absent(self, key: str, value: str,
                            ttl: Optional[int] = None) -> bool:
        ok = await self.r.set(key, value, nx=True, ex=ttl)
        return bool(ok)

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        pipe = self.r.pipeline(transaction=True)
        pipe.incr(key)
        if ttl:
            # only sets a ttl when the key has none yet
            pipe.expire(key, ttl, nx=True)
        n, *_ = await pipe.execute()
        return int(n)

    async def delete(self, key: str) -> None:
        await self.r.delete(key)
