"""
Сервис кэширования для интеграции с Redis.

Этот модуль предоставляет высокоуровневый интерфейс для операций кэширования
с автоматической сериализацией/десериализацией и управлением TTL.

Кэш работает по принципу fail-open: любая ошибка или превышение
``cache_operation_timeout`` логируется и трактуется как промах (для чтения)
или как no-op (для записи и инвалидации). Исключения Redis наружу не выходят.
"""

import asyncio
import json
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from pydantic import BaseModel
from redis.asyncio import Redis

from exam_attempts.config.redis_settings import (RedisSettings,
                                                 get_redis_connection_params,
                                                 redis_settings)

logger = logging.getLogger(__name__)

# Шаблоны ключей (без префикса пространства имён)
CACHE_KEYS = {
    "attempt": "attempt:{attempt_id}",
    "attempt_all": "attempt:{attempt_id}:*",
    "attempt_answers": "attempt:{attempt_id}:answers",
    "attempt_question": "attempt:{attempt_id}:question:{question_id}",
    "answer_exists": "attempt:{attempt_id}:has:{question_id}",
    "answer": "answer:id:{answer_id}",
    "assessment_questions": "assessment:{assessment_id}:questions",
}


class CacheKeys:
    """Построитель ключей кэша в пространстве имён ``prefix``."""

    def __init__(self, prefix: str = redis_settings.cache_key_prefix):
        self.prefix = prefix

    def _key(self, key_type: str, **kwargs) -> str:
        template = CACHE_KEYS.get(key_type)
        if not template:
            raise ValueError(f"Unknown cache key type: {key_type}")
        return f"{self.prefix}:{template.format(**kwargs)}"

    def attempt(self, attempt_id: int) -> str:
        return self._key("attempt", attempt_id=attempt_id)

    def attempt_pattern(self, attempt_id: int) -> str:
        """Все производные ключи попытки (ответы, флаги существования)."""
        return self._key("attempt_all", attempt_id=attempt_id)

    def attempt_answers(self, attempt_id: int) -> str:
        return self._key("attempt_answers", attempt_id=attempt_id)

    def attempt_question(self, attempt_id: int, question_id: int) -> str:
        return self._key(
            "attempt_question", attempt_id=attempt_id, question_id=question_id
        )

    def answer_exists(self, attempt_id: int, question_id: int) -> str:
        return self._key(
            "answer_exists", attempt_id=attempt_id, question_id=question_id
        )

    def answer(self, answer_id: int) -> str:
        return self._key("answer", answer_id=answer_id)

    def assessment_questions(self, assessment_id: int) -> str:
        return self._key("assessment_questions", assessment_id=assessment_id)


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class CacheService:
    """Высокоуровневый сервис кэширования для операций с Redis."""

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        config: RedisSettings = redis_settings,
    ):
        """
        Инициализирует сервис кэширования.

        Args:
            redis_client: Готовый клиент (в тестах: in-memory двойник).
                Если не передан, создаётся лениво из настроек.
            config: Настройки TTL и таймаутов
        """
        self._redis: Optional[Redis] = redis_client
        self._config = config
        self.keys = CacheKeys(config.cache_key_prefix)

    @property
    def ttl_fast(self) -> int:
        return self._config.cache_ttl_fast

    @property
    def ttl_exists(self) -> int:
        return self._config.cache_ttl_exists

    @property
    def ttl_static(self) -> int:
        return self._config.cache_ttl_static

    async def get_redis(self) -> Redis:
        """
        Получить подключение к Redis (ленивая инициализация).

        Returns:
            Экземпляр подключения к Redis
        """
        if self._redis is None:
            self._redis = redis.Redis(**get_redis_connection_params())
            logger.info("Клиент Redis создан")
        return self._redis

    async def close(self):
        """Закрыть подключение к Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Подключение к Redis закрыто")

    def _serialize(self, data: Any) -> str:
        return json.dumps(data, default=_json_default, ensure_ascii=False)

    def _deserialize(self, data: str) -> Any:
        return json.loads(data)

    async def _guarded(
        self, operation: str, key: str, call: Callable[[Redis], Awaitable[Any]], fallback
    ) -> Any:
        """Выполняет обращение к Redis с таймаутом; сбой даёт ``fallback``."""
        try:
            redis_client = await self.get_redis()
            return await asyncio.wait_for(
                call(redis_client), timeout=self._config.cache_operation_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Таймаут кэша при {operation} '{key}'")
            return fallback
        except Exception as e:
            logger.error(f"Ошибка кэша при {operation} '{key}': {type(e).__name__}: {e}")
            return fallback

    async def get(self, key: str) -> Optional[Any]:
        """
        Получить значение из кэша.

        Args:
            key: Ключ кэша

        Returns:
            Кэшированное значение или None если не найдено
        """
        data = await self._guarded("get", key, lambda r: r.get(key), None)
        if data is None:
            return None
        try:
            return self._deserialize(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Ошибка десериализации ключа кэша '{key}': {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Установить значение в кэш.

        Args:
            key: Ключ кэша
            value: Значение для кэширования
            ttl: Время жизни в секундах

        Returns:
            True если успешно, False в противном случае
        """
        try:
            serialized_value = self._serialize(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Ошибка сериализации значения для '{key}': {e}")
            return False

        async def _write(r: Redis):
            if ttl:
                await r.setex(key, ttl, serialized_value)
            else:
                await r.set(key, serialized_value)
            return True

        return await self._guarded("set", key, _write, False)

    async def get_string(self, key: str) -> Optional[str]:
        """Прочитать сырое строковое значение (флаги существования)."""
        return await self._guarded("get", key, lambda r: r.get(key), None)

    async def set_string(self, key: str, value: str, ttl: int) -> bool:
        """Записать сырое строковое значение с TTL."""

        async def _write(r: Redis):
            await r.setex(key, ttl, value)
            return True

        return await self._guarded("set", key, _write, False)

    async def delete(self, *keys: str) -> int:
        """
        Удалить ключи из кэша.

        Returns:
            Количество удалённых ключей (0 при ошибке)
        """
        if not keys:
            return 0
        joined = ", ".join(keys)
        return await self._guarded("delete", joined, lambda r: r.delete(*keys), 0)

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Удалить все ключи, соответствующие паттерну.

        Использует SCAN вместо KEYS, чтобы не блокировать Redis.

        Args:
            pattern: Паттерн ключей Redis (например, "exam:attempt:1:*")

        Returns:
            Количество удаленных ключей
        """

        async def _scan_and_delete(r: Redis) -> int:
            keys = [key async for key in r.scan_iter(match=pattern, count=500)]
            if not keys:
                return 0
            return await r.delete(*keys)

        deleted = await self._guarded("invalidate", pattern, _scan_and_delete, 0)
        if deleted:
            logger.info(
                f"Инвалидировано {deleted} ключей, соответствующих паттерну: {pattern}"
            )
        return deleted

    async def get_or_set(
        self, key: str, fetch_func: Callable, ttl: Optional[int] = None, *args, **kwargs
    ) -> Any:
        """
        Получить значение из кэша или выполнить функцию и кэшировать результат.

        Ошибки ``fetch_func`` (хранилище) пробрасываются, ошибки кэша: нет.

        Args:
            key: Ключ кэша
            fetch_func: Функция для выполнения при промахе кэша
            ttl: Время жизни в секундах
            *args: Аргументы для fetch_func
            **kwargs: Именованные аргументы для fetch_func

        Returns:
            Кэшированное или свежеполученное значение
        """
        cached_value = await self.get(key)
        if cached_value is not None:
            logger.debug(f"Попадание в кэш для ключа: {key}")
            return cached_value

        logger.debug(f"Промах кэша для ключа: {key}")
        if asyncio.iscoroutinefunction(fetch_func):
            result = await fetch_func(*args, **kwargs)
        else:
            result = fetch_func(*args, **kwargs)

        if result is not None:
            await self.set(key, result, ttl)
        return result

    async def invalidate_attempt(self, attempt_id: int) -> int:
        """
        Инвалидировать попытку и все её производные ключи.

        Args:
            attempt_id: ID попытки

        Returns:
            Количество удаленных ключей
        """
        deleted = await self.delete(self.keys.attempt(attempt_id))
        deleted += await self.invalidate_pattern(self.keys.attempt_pattern(attempt_id))
        return deleted

    async def invalidate_answer(
        self, answer_id: int, attempt_id: int, question_id: int
    ) -> int:
        """Инвалидировать ответ и списки его попытки."""
        return await self.delete(
            self.keys.answer(answer_id),
            self.keys.attempt_answers(attempt_id),
            self.keys.attempt_question(attempt_id, question_id),
            self.keys.answer_exists(attempt_id, question_id),
        )

    async def invalidate_assessment_questions(self, assessment_id: int) -> int:
        return await self.delete(self.keys.assessment_questions(assessment_id))
