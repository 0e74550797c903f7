# -*- coding: utf-8 -*-
"""
exam_attempts/repository/assessment_questions.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Связи аттестация-вопрос и их порядок.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.models import Assessment, AssessmentQuestion, Question
from exam_attempts.repository.base import get_item

logger = configure_logger(__name__)


async def get_assessment(
    session: AsyncSession, assessment_id: int, for_update: bool = False
) -> Assessment:
    return await get_item(session, Assessment, assessment_id, for_update=for_update)


async def ordered_links(
    session: AsyncSession, assessment_id: int, for_update: bool = False
) -> List[Tuple[AssessmentQuestion, Question]]:
    """Связи с вопросами, упорядоченные по ``order``."""
    stmt = (
        select(AssessmentQuestion, Question)
        .join(Question, Question.id == AssessmentQuestion.question_id)
        .where(AssessmentQuestion.assessment_id == assessment_id)
        .order_by(AssessmentQuestion.order, AssessmentQuestion.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def questions_with_links(
    session: AsyncSession, assessment_id: int, question_ids: Sequence[int]
) -> List[Tuple[Question, Optional[AssessmentQuestion]]]:
    """Вопросы по ID вместе со связью, если она ещё существует."""
    if not question_ids:
        return []
    stmt = (
        select(Question, AssessmentQuestion)
        .outerjoin(
            AssessmentQuestion,
            (AssessmentQuestion.question_id == Question.id)
            & (AssessmentQuestion.assessment_id == assessment_id),
        )
        .where(Question.id.in_(question_ids))
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def find_link(
    session: AsyncSession, assessment_id: int, question_id: int
) -> Optional[AssessmentQuestion]:
    stmt = select(AssessmentQuestion).where(
        AssessmentQuestion.assessment_id == assessment_id,
        AssessmentQuestion.question_id == question_id,
    )
    return (await session.execute(stmt)).scalars().first()


async def linked_question_ids(session: AsyncSession, assessment_id: int) -> List[int]:
    stmt = (
        select(AssessmentQuestion.question_id)
        .where(AssessmentQuestion.assessment_id == assessment_id)
        .order_by(AssessmentQuestion.order, AssessmentQuestion.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def next_order(session: AsyncSession, assessment_id: int) -> int:
    stmt = select(func.coalesce(func.max(AssessmentQuestion.order), 0)).where(
        AssessmentQuestion.assessment_id == assessment_id
    )
    return int((await session.execute(stmt)).scalar_one()) + 1


async def assign_orders(
    session: AsyncSession, assessment_id: int, question_ids: Sequence[int]
) -> None:
    """Присваивает порядок 1..N по списку ID."""
    for position, question_id in enumerate(question_ids, start=1):
        await session.execute(
            update(AssessmentQuestion)
            .where(
                AssessmentQuestion.assessment_id == assessment_id,
                AssessmentQuestion.question_id == question_id,
            )
            .values(order=position)
            .execution_options(synchronize_session=False)
        )
    logger.debug(
        f"🔢 Порядок {len(question_ids)} вопросов аттестации {assessment_id} обновлён"
    )
