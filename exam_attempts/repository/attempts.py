# -*- coding: utf-8 -*-
"""
exam_attempts/repository/attempts.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Запросы к таблице попыток.

Переходы в терминальное состояние выполняются условным UPDATE
``WHERE status = 'in_progress'``: из двух конкурентных переходов побеждает
ровно один, проигравший получает ``InvalidStateError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.enums import FINISHED_STATUSES, AttemptStatus
from exam_attempts.domain.models import AssessmentAttempt, StudentAnswer
from exam_attempts.domain.schemas import AttemptFilters
from exam_attempts.utils.exceptions import InvalidStateError, NotFoundError

logger = configure_logger(__name__)


async def get_attempt(
    session: AsyncSession, attempt_id: int, for_update: bool = False
) -> AssessmentAttempt:
    """Попытка по ID или NotFoundError. Всегда перечитывает строку из БД."""
    stmt = (
        select(AssessmentAttempt)
        .where(AssessmentAttempt.id == attempt_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    attempt = (await session.execute(stmt)).scalars().first()
    if attempt is None:
        raise NotFoundError(resource_type="Attempt", resource_id=attempt_id)
    return attempt


async def get_in_progress_attempt(
    session: AsyncSession, attempt_id: int, for_update: bool = True
) -> AssessmentAttempt:
    """Попытка, которая обязана быть в состоянии IN_PROGRESS."""
    attempt = await get_attempt(session, attempt_id, for_update=for_update)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise InvalidStateError("Attempt", attempt_id, attempt.status.value)
    return attempt


async def get_active_attempt(
    session: AsyncSession,
    student_id: int,
    assessment_id: int,
    for_update: bool = False,
) -> Optional[AssessmentAttempt]:
    stmt = select(AssessmentAttempt).where(
        AssessmentAttempt.student_id == student_id,
        AssessmentAttempt.assessment_id == assessment_id,
        AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalars().first()


async def count_finished_attempts(
    session: AsyncSession, student_id: int, assessment_id: int
) -> int:
    """Количество попыток, расходующих лимит (COMPLETED и TIMED_OUT)."""
    stmt = select(func.count(AssessmentAttempt.id)).where(
        AssessmentAttempt.student_id == student_id,
        AssessmentAttempt.assessment_id == assessment_id,
        AssessmentAttempt.status.in_(FINISHED_STATUSES),
    )
    return int((await session.execute(stmt)).scalar_one())


async def last_finished_attempt(
    session: AsyncSession, student_id: int, assessment_id: int
) -> Optional[AssessmentAttempt]:
    stmt = (
        select(AssessmentAttempt)
        .where(
            AssessmentAttempt.student_id == student_id,
            AssessmentAttempt.assessment_id == assessment_id,
            AssessmentAttempt.status.in_(FINISHED_STATUSES),
            AssessmentAttempt.completed_at.is_not(None),
        )
        .order_by(AssessmentAttempt.completed_at.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def max_attempt_number(
    session: AsyncSession, student_id: int, assessment_id: int
) -> int:
    stmt = select(func.max(AssessmentAttempt.attempt_number)).where(
        AssessmentAttempt.student_id == student_id,
        AssessmentAttempt.assessment_id == assessment_id,
    )
    return int((await session.execute(stmt)).scalar() or 0)


async def list_attempts(
    session: AsyncSession, filters: AttemptFilters
) -> List[AssessmentAttempt]:
    """Список попыток по фильтрам, новые сначала."""
    stmt = select(AssessmentAttempt)
    if filters.student_id is not None:
        stmt = stmt.where(AssessmentAttempt.student_id == filters.student_id)
    if filters.assessment_id is not None:
        stmt = stmt.where(AssessmentAttempt.assessment_id == filters.assessment_id)
    if filters.status is not None:
        stmt = stmt.where(AssessmentAttempt.status == filters.status)
    if filters.started_from is not None:
        stmt = stmt.where(AssessmentAttempt.started_at >= filters.started_from)
    if filters.started_to is not None:
        stmt = stmt.where(AssessmentAttempt.started_at <= filters.started_to)

    stmt = stmt.order_by(AssessmentAttempt.started_at.desc(), AssessmentAttempt.id.desc())
    if filters.skip > 0:
        stmt = stmt.offset(filters.skip)
    if filters.limit > 0:
        stmt = stmt.limit(filters.limit)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_if_in_progress(
    session: AsyncSession, attempt_id: int, **values: Any
) -> None:
    """
    Условный UPDATE попытки, которая ещё в процессе.

    Raises:
        NotFoundError: Попытки нет
        InvalidStateError: Попытка уже в терминальном состоянии
    """
    stmt = (
        update(AssessmentAttempt)
        .where(
            AssessmentAttempt.id == attempt_id,
            AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 1:
        return

    # Ничего не обновили: различаем "нет попытки" и "неверное состояние"
    attempt = await get_attempt(session, attempt_id)
    raise InvalidStateError("Attempt", attempt_id, attempt.status.value)


async def transition(
    session: AsyncSession,
    attempt_id: int,
    new_status: AttemptStatus,
    now: datetime,
    **values: Any,
) -> None:
    """Переводит попытку в терминальное состояние, фиксируя completed_at."""
    if not new_status.is_terminal:
        raise ValueError(f"{new_status} is not a terminal status")
    await update_if_in_progress(
        session, attempt_id, status=new_status, completed_at=now, **values
    )
    logger.info(f"🔁 Попытка {attempt_id} переведена в статус {new_status.value}")


async def update_completed_result(
    session: AsyncSession,
    attempt_id: int,
    score: float,
    percentage: float,
    passed: bool,
) -> bool:
    """Пересчитанный результат завершённой попытки (после ручной оценки)."""
    stmt = (
        update(AssessmentAttempt)
        .where(
            AssessmentAttempt.id == attempt_id,
            AssessmentAttempt.status == AttemptStatus.COMPLETED,
        )
        .values(score=score, percentage=percentage, passed=passed)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).rowcount == 1


async def timed_out_candidates(
    session: AsyncSession, for_update: bool = False
) -> List[AssessmentAttempt]:
    """Попытки IN_PROGRESS с исчерпанным временем."""
    stmt = (
        select(AssessmentAttempt)
        .where(
            AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
            AssessmentAttempt.time_remaining <= 0,
        )
        .order_by(AssessmentAttempt.id)
    )
    if for_update:
        stmt = stmt.with_for_update(skip_locked=True)
    return list((await session.execute(stmt)).scalars().all())


async def mark_timed_out(
    session: AsyncSession, attempt_ids: Sequence[int], now: datetime
) -> int:
    """Массово переводит попытки в TIMED_OUT; возвращает число переведённых."""
    if not attempt_ids:
        return 0
    stmt = (
        update(AssessmentAttempt)
        .where(
            AssessmentAttempt.id.in_(attempt_ids),
            AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(status=AttemptStatus.TIMED_OUT, completed_at=now, time_remaining=0)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount


async def delete_attempt(session: AsyncSession, attempt_id: int) -> None:
    """Удаляет попытку вместе с её ответами."""
    attempt = await get_attempt(session, attempt_id, for_update=True)
    await session.execute(
        delete(StudentAnswer).where(StudentAnswer.attempt_id == attempt.id)
    )
    await session.execute(
        delete(AssessmentAttempt).where(AssessmentAttempt.id == attempt.id)
    )
