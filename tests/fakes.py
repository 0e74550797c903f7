# -*- coding: utf-8 -*-
"""
Тестовые двойники внешних зависимостей: Redis и часы.
"""

import asyncio
import fnmatch
from datetime import datetime, timedelta
from typing import Dict, List, Optional


class FakeRedis:
    """In-memory замена ``redis.asyncio.Redis`` с нужным подмножеством команд."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.deleted: List[str] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        self.ttls.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                self.deleted.append(key)
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*", count: Optional[int] = None):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        return None


class BrokenRedis(FakeRedis):
    """Redis, у которого падает каждая команда."""

    async def get(self, key):
        raise ConnectionError("redis is down")

    async def set(self, key, value):
        raise ConnectionError("redis is down")

    async def setex(self, key, ttl, value):
        raise ConnectionError("redis is down")

    async def delete(self, *keys):
        raise ConnectionError("redis is down")

    async def scan_iter(self, match="*", count=None):
        raise ConnectionError("redis is down")
        yield  # pragma: no cover


class SlowRedis(FakeRedis):
    """Redis, который отвечает дольше таймаута операции."""

    def __init__(self, delay: float = 1.0):
        super().__init__()
        self.delay = delay

    async def get(self, key):
        await asyncio.sleep(self.delay)
        return await super().get(key)

    async def setex(self, key, ttl, value):
        await asyncio.sleep(self.delay)
        return await super().setex(key, ttl, value)


class FrozenClock:
    """Управляемые часы: ``clock()`` возвращает текущее значение."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 1, 10, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now
