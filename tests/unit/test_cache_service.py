# -*- coding: utf-8 -*-
"""
Unit тесты сервиса кэширования
"""

import json

import pytest

from exam_attempts.config.redis_settings import RedisSettings
from exam_attempts.service.cache_service import CacheKeys, CacheService
from tests.fakes import BrokenRedis, FakeRedis, SlowRedis


@pytest.fixture
def settings():
    return RedisSettings(cache_key_prefix="exam", cache_operation_timeout=0.05)


class TestCacheKeys:
    def test_key_layout(self):
        keys = CacheKeys("exam")

        assert keys.attempt(7) == "exam:attempt:7"
        assert keys.attempt_answers(7) == "exam:attempt:7:answers"
        assert keys.attempt_question(7, 3) == "exam:attempt:7:question:3"
        assert keys.answer_exists(7, 3) == "exam:attempt:7:has:3"
        assert keys.answer(11) == "exam:answer:id:11"
        assert keys.assessment_questions(5) == "exam:assessment:5:questions"

    def test_unknown_key_type(self):
        with pytest.raises(ValueError):
            CacheKeys("exam")._key("unknown")


class TestCacheService:
    @pytest.mark.asyncio
    async def test_set_and_get_with_ttl(self, settings):
        # Arrange
        redis = FakeRedis()
        cache = CacheService(redis, config=settings)

        # Act
        await cache.set("exam:k", {"a": 1}, ttl=60)
        value = await cache.get("exam:k")

        # Assert
        assert value == {"a": 1}
        assert redis.ttls["exam:k"] == 60

    @pytest.mark.asyncio
    async def test_corrupted_value_is_miss(self, settings):
        redis = FakeRedis()
        redis.store["exam:k"] = "{not json"
        cache = CacheService(redis, config=settings)

        assert await cache.get("exam:k") is None

    @pytest.mark.asyncio
    async def test_invalidate_pattern_uses_scan(self, settings):
        """Паттерн удаляет только производные ключи попытки"""
        # Arrange
        redis = FakeRedis()
        cache = CacheService(redis, config=settings)
        for key in ("exam:attempt:1", "exam:attempt:1:answers",
                    "exam:attempt:1:has:2", "exam:attempt:10:answers"):
            redis.store[key] = json.dumps(1)

        # Act
        deleted = await cache.invalidate_attempt(1)

        # Assert
        assert deleted == 3
        assert list(redis.store) == ["exam:attempt:10:answers"]

    @pytest.mark.asyncio
    async def test_get_or_set_caches_only_values(self, settings):
        # Arrange
        redis = FakeRedis()
        cache = CacheService(redis, config=settings)
        calls = []

        async def fetch(value):
            calls.append(value)
            return value

        # Act
        first = await cache.get_or_set("exam:x", fetch, 30, {"v": 1})
        second = await cache.get_or_set("exam:x", fetch, 30, {"v": 2})
        missing = await cache.get_or_set("exam:none", fetch, 30, None)

        # Assert
        assert first == second == {"v": 1}
        assert len(calls) == 2
        assert "exam:none" not in redis.store
        assert missing is None


class TestFailOpen:
    """Недоступный кэш не ломает вызовы"""

    @pytest.mark.asyncio
    async def test_broken_redis_behaves_as_miss(self, settings):
        cache = CacheService(BrokenRedis(), config=settings)

        assert await cache.get("exam:k") is None
        assert await cache.set("exam:k", 1, ttl=5) is False
        assert await cache.delete("exam:k") == 0
        assert await cache.invalidate_pattern("exam:*") == 0

    @pytest.mark.asyncio
    async def test_broken_redis_get_or_set_falls_back_to_fetch(self, settings):
        cache = CacheService(BrokenRedis(), config=settings)

        result = await cache.get_or_set("exam:k", lambda: {"fresh": True}, 5)

        assert result == {"fresh": True}

    @pytest.mark.asyncio
    async def test_slow_redis_times_out(self, settings):
        """Медленный Redis трактуется как промах по таймауту"""
        redis = SlowRedis(delay=1.0)
        redis.store["exam:k"] = json.dumps("stale")
        cache = CacheService(redis, config=settings)

        assert await cache.get("exam:k") is None
        assert await cache.set_string("exam:k", "1", 5) is False


@pytest.mark.asyncio
async def test_lazy_client_from_settings(settings):
    """Клиент Redis создаётся из настроек только при первом обращении"""
    from redis.asyncio import Redis

    cache = CacheService(config=settings)

    client = await cache.get_redis()

    assert isinstance(client, Redis)
    assert client.connection_pool.connection_kwargs["decode_responses"] is True
    await cache.close()
