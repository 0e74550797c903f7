# -*- coding: utf-8 -*-
"""
exam_attempts/repository/base.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Базовые операции репозитория.

Функции без состояния поверх ``AsyncSession``. Они не коммитят: граница
транзакции принадлежит ``UnitOfWork`` вызывающего сервиса.
"""

from __future__ import annotations

from typing import Any, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.models import Base
from exam_attempts.utils.exceptions import NotFoundError

T = TypeVar("T", bound=Base)

logger = configure_logger(__name__)

# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


async def find_item(
    session: AsyncSession, model: Type[T], item_id: int, for_update: bool = False
) -> Optional[T]:
    """Retrieve a single item by ID or None."""
    stmt = select(model).where(getattr(model, "id") == item_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_item(
    session: AsyncSession, model: Type[T], item_id: int, for_update: bool = False
) -> T:
    """Retrieve a single item by ID, raising NotFoundError when absent."""
    item = await find_item(session, model, item_id, for_update=for_update)
    if item is None:
        raise NotFoundError(resource_type=model.__name__, resource_id=item_id)
    return item


async def create_item(session: AsyncSession, model: Type[T], **kwargs: Any) -> T:
    """Create a new item and flush it to obtain the primary key."""
    instance = model(**kwargs)
    session.add(instance)
    await session.flush()
    await session.refresh(instance)
    logger.debug(f"Создан {model.__name__} с ID {instance.id}")
    return instance

