# -*- coding: utf-8 -*-
"""
Фикстуры-построители данных для тестов попыток
"""

from typing import Any, List, Optional, Sequence, Tuple, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.domain.enums import AssessmentStatus, QuestionType
from exam_attempts.domain.models import (Assessment, AssessmentQuestion,
                                         Question)
from exam_attempts.repository.base import create_item

SessionFactory = async_sessionmaker[AsyncSession]


async def persist(session_factory: SessionFactory, model: Type, **kwargs: Any):
    """Создать запись в отдельной короткой транзакции"""
    async with session_factory() as session:
        instance = await create_item(session, model, **kwargs)
        await session.commit()
        return instance


async def fetch(session_factory: SessionFactory, model: Type, item_id: int):
    """Прочитать запись напрямую из БД в обход кэша"""
    async with session_factory() as session:
        result = await session.execute(select(model).where(model.id == item_id))
        return result.scalars().first()


async def fetch_all(session_factory: SessionFactory, model: Type, **filters) -> List:
    async with session_factory() as session:
        result = await session.execute(select(model).filter_by(**filters))
        return list(result.scalars().all())


async def create_test_assessment(
    session_factory: SessionFactory, **overrides: Any
) -> Assessment:
    """Создать активную аттестацию"""
    values = {
        "title": "Итоговая аттестация",
        "status": AssessmentStatus.ACTIVE,
        "duration": 30,
        "passing_score": 60,
        "max_attempts": 3,
        "retake_delay_minutes": 0,
        "randomize_questions": False,
        "created_by": 100,
    }
    values.update(overrides)
    return await persist(session_factory, Assessment, **values)


async def create_test_questions(
    session_factory: SessionFactory,
    count: int = 3,
    question_type: QuestionType = QuestionType.SINGLE_CHOICE,
    points: float = 1.0,
    correct_answer: Any = "A",
) -> List[Question]:
    """Создать тестовые вопросы"""
    questions = []
    for i in range(count):
        questions.append(
            await persist(
                session_factory,
                Question,
                text=f"Вопрос {i + 1}",
                question_type=question_type,
                points=points,
                options=["A", "B", "C", "D"],
                correct_answer=correct_answer,
            )
        )
    return questions


async def link_questions(
    session_factory: SessionFactory,
    assessment_id: int,
    questions: Sequence[Question],
    points: Optional[float] = None,
) -> List[AssessmentQuestion]:
    """Связать вопросы с аттестацией в порядке списка"""
    links = []
    for order, question in enumerate(questions, start=1):
        links.append(
            await persist(
                session_factory,
                AssessmentQuestion,
                assessment_id=assessment_id,
                question_id=question.id,
                order=order,
                points=points,
                required=True,
            )
        )
    return links


async def create_assessment_with_questions(
    session_factory: SessionFactory,
    question_count: int = 3,
    question_type: QuestionType = QuestionType.SINGLE_CHOICE,
    points: float = 1.0,
    correct_answer: Any = "A",
    **assessment_overrides: Any,
) -> Tuple[Assessment, List[Question]]:
    """Аттестация с привязанными вопросами"""
    assessment = await create_test_assessment(session_factory, **assessment_overrides)
    questions = await create_test_questions(
        session_factory,
        count=question_count,
        question_type=question_type,
        points=points,
        correct_answer=correct_answer,
    )
    await link_questions(session_factory, assessment.id, questions)
    return assessment, questions
