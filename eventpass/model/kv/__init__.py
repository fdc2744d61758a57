# model/kv/__init__.py
from typing import Optional
import redis.asyncio as redis

from ... import config
from ._memory import KVStore as MemoryKVStore
from ._redis import KVStore as RedisKVStore

BACKEND = config.KV_BACKEND  # 'memory' | 'redis'

KVStore = RedisKVStore if BACKEND == "redis" else MemoryKVStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, r: Optional[redis.Redis] = None,
              backend: str = BACKEND,
              max_entries: int = 10_000):
    if backend == "redis":
        if r is None:
            raise RuntimeError("KVStore(redis) requires r=redis.Redis")
        return RedisKVStore(r=r)
    return MemoryKVStore(max_entries=max_entries)


__all__ = ["KVStore", "MemoryKVStore", "RedisKVStore", "new_store",
           "BACKEND"]
