# -*- coding: utf-8 -*-
"""
Клиент для работы с базой данных PostgreSQL.

Движок создаётся лениво при первом обращении, чтобы импорт пакета не требовал
драйвера БД (тесты подставляют свою фабрику сессий).
"""
from typing import Optional

from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession,
                                    async_sessionmaker, create_async_engine)

from exam_attempts.config.logger import configure_logger
from exam_attempts.config.settings import settings
from exam_attempts.domain.models import Base

logger = configure_logger(__name__)

_async_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Возвращает асинхронный движок, создавая его при первом вызове."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.db_echo,
            pool_pre_ping=True,  # Проверяем соединение перед использованием
            pool_recycle=settings.db_pool_recycle,
        )
        logger.info(f"🗄️ Создан движок БД ({settings.get_config_source()})")
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Фабрика асинхронных сессий поверх глобального движка."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Объекты остаются доступными после коммита
        )
    return _session_factory


async def init_db() -> None:
    """
    Создаёт все таблицы по моделям. Для продакшена используйте alembic.

    Raises:
        SQLAlchemyError: Ошибки при создании таблиц
    """
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        Base.registry.configure()


async def dispose_engine() -> None:
    """Закрывает пул соединений."""
    global _async_engine, _session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _session_factory = None
