# -*- coding: utf-8 -*-
"""
Общие фикстуры для тестирования
"""

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)
from sqlalchemy.pool import NullPool

from exam_attempts.config.redis_settings import RedisSettings
from exam_attempts.domain.models import Base
from exam_attempts.service import create_services
from exam_attempts.service.cache_service import CacheService
from tests.fakes import FakeRedis, FrozenClock


def _install_sqlite_locking(engine) -> None:
    """
    Каждая транзакция начинается с BEGIN IMMEDIATE.

    Пишущие транзакции SQLite сериализуются так же, как строки под
    SELECT ... FOR UPDATE в PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Отключаем собственный BEGIN драйвера
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest.fixture
async def test_engine(tmp_path):
    """Файловая SQLite база на каждый тест (нужны несколько соединений)."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'exam_attempts.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )
    _install_sqlite_locking(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache_config():
    return RedisSettings(
        cache_key_prefix="test",
        cache_ttl_fast=300,
        cache_ttl_exists=30,
        cache_ttl_static=3600,
        cache_operation_timeout=0.2,
    )


@pytest.fixture
def cache(fake_redis, cache_config):
    return CacheService(fake_redis, config=cache_config)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def services(session_factory, cache, clock):
    return create_services(session_factory=session_factory, cache=cache, clock=clock)
