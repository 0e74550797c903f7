# -*- coding: utf-8 -*-
"""
exam_attempts/repository/answers.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Запросы к таблице ответов студентов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.models import AssessmentAttempt, StudentAnswer
from exam_attempts.utils.exceptions import NotFoundError

logger = configure_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def get_answer(
    session: AsyncSession, answer_id: int, for_update: bool = False
) -> StudentAnswer:
    stmt = (
        select(StudentAnswer)
        .where(StudentAnswer.id == answer_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    answer = (await session.execute(stmt)).scalars().first()
    if answer is None:
        raise NotFoundError(resource_type="Answer", resource_id=answer_id)
    return answer


async def find_answer(
    session: AsyncSession, attempt_id: int, question_id: int
) -> Optional[StudentAnswer]:
    stmt = (
        select(StudentAnswer)
        .where(
            StudentAnswer.attempt_id == attempt_id,
            StudentAnswer.question_id == question_id,
        )
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def answers_by_attempt(
    session: AsyncSession, attempt_id: int, flagged_only: bool = False
) -> List[StudentAnswer]:
    stmt = select(StudentAnswer).where(StudentAnswer.attempt_id == attempt_id)
    if flagged_only:
        stmt = stmt.where(StudentAnswer.is_flagged.is_(True))
    stmt = stmt.order_by(StudentAnswer.id).execution_options(populate_existing=True)
    return list((await session.execute(stmt)).scalars().all())


async def answers_by_ids(
    session: AsyncSession, answer_ids: List[int]
) -> Dict[int, StudentAnswer]:
    if not answer_ids:
        return {}
    stmt = (
        select(StudentAnswer)
        .where(StudentAnswer.id.in_(answer_ids))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {a.id: a for a in (await session.execute(stmt)).scalars().all()}


async def upsert_answer(
    session: AsyncSession,
    attempt_id: int,
    question_id: int,
    value: Any,
    time_spent: int,
    now: datetime,
    is_correct: Optional[bool] = None,
    score: Optional[float] = None,
) -> int:
    """
    INSERT ... ON CONFLICT (attempt_id, question_id) DO UPDATE.

    Повторная отправка сохраняет ID ответа, сбрасывает ручную оценку и
    накапливает затраченное время.

    Returns:
        int: ID ответа
    """
    dialect = session.get_bind().dialect.name
    insert_fn = _DIALECT_INSERTS.get(dialect)
    if insert_fn is None:
        raise NotImplementedError(f"Upsert не поддерживается для диалекта {dialect}")

    stmt = insert_fn(StudentAnswer).values(
        attempt_id=attempt_id,
        question_id=question_id,
        value=value,
        time_spent=time_spent,
        last_modified_at=now,
        is_correct=is_correct,
        score=score,
        is_flagged=False,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[StudentAnswer.attempt_id, StudentAnswer.question_id],
        set_={
            "value": stmt.excluded.value,
            "time_spent": StudentAnswer.time_spent + stmt.excluded.time_spent,
            "last_modified_at": stmt.excluded.last_modified_at,
            "is_correct": stmt.excluded.is_correct,
            "score": stmt.excluded.score,
            "graded_by": None,
            "graded_at": None,
            "feedback": None,
        },
    ).returning(StudentAnswer.id)

    answer_id = (await session.execute(stmt)).scalar_one()
    logger.debug(
        f"💾 Ответ {answer_id} сохранён (попытка {attempt_id}, вопрос {question_id})"
    )
    return answer_id


async def update_answer(session: AsyncSession, answer_id: int, **values: Any) -> None:
    stmt = (
        update(StudentAnswer)
        .where(StudentAnswer.id == answer_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        raise NotFoundError(resource_type="Answer", resource_id=answer_id)


async def count_answers(session: AsyncSession, attempt_id: int) -> int:
    stmt = select(func.count(StudentAnswer.id)).where(
        StudentAnswer.attempt_id == attempt_id
    )
    return int((await session.execute(stmt)).scalar_one())


async def answered_question_ids(session: AsyncSession, attempt_id: int) -> List[int]:
    stmt = (
        select(StudentAnswer.question_id)
        .where(StudentAnswer.attempt_id == attempt_id)
        .order_by(StudentAnswer.question_id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def time_spent_by_question(
    session: AsyncSession, attempt_id: int
) -> Dict[int, int]:
    stmt = select(StudentAnswer.question_id, StudentAnswer.time_spent).where(
        StudentAnswer.attempt_id == attempt_id
    )
    return {row.question_id: row.time_spent for row in await session.execute(stmt)}


async def total_score(session: AsyncSession, attempt_id: int) -> float:
    stmt = select(func.coalesce(func.sum(StudentAnswer.score), 0.0)).where(
        StudentAnswer.attempt_id == attempt_id
    )
    return float((await session.execute(stmt)).scalar_one())


async def count_ungraded(session: AsyncSession, attempt_id: int) -> int:
    stmt = select(func.count(StudentAnswer.id)).where(
        StudentAnswer.attempt_id == attempt_id,
        StudentAnswer.score.is_(None),
    )
    return int((await session.execute(stmt)).scalar_one())


async def pending_grading(
    session: AsyncSession, assessment_id: int, limit: int = 100
) -> List[StudentAnswer]:
    """Ответы по аттестации, у которых ещё нет балла."""
    stmt = (
        select(StudentAnswer)
        .join(AssessmentAttempt, AssessmentAttempt.id == StudentAnswer.attempt_id)
        .where(
            AssessmentAttempt.assessment_id == assessment_id,
            StudentAnswer.score.is_(None),
        )
        .order_by(StudentAnswer.last_modified_at, StudentAnswer.id)
    )
    if limit > 0:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def delete_answer(session: AsyncSession, answer_id: int) -> None:
    result = await session.execute(
        delete(StudentAnswer).where(StudentAnswer.id == answer_id)
    )
    if result.rowcount == 0:
        raise NotFoundError(resource_type="Answer", resource_id=answer_id)
