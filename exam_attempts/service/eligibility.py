# -*- coding: utf-8 -*-
"""
exam_attempts/service/eligibility.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Проверка права студента начать новую попытку.

Проверка выполняется внутри транзакции старта и лишь сужает окно гонки:
окончательно инвариант "одна активная попытка" держит частичный уникальный
индекс в БД.
"""

from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.enums import AssessmentStatus
from exam_attempts.domain.schemas import AttemptValidation
from exam_attempts.repository import attempts as attempts_repo
from exam_attempts.repository.assessment_questions import get_assessment

logger = configure_logger(__name__)


class EligibilityEvaluator:
    """Правила допуска к новой попытке."""

    async def evaluate(
        self,
        session: AsyncSession,
        student_id: int,
        assessment_id: int,
        now: datetime,
    ) -> AttemptValidation:
        """
        Проверяет, может ли студент начать новую попытку.

        Args:
            session: Сессия текущей транзакции
            student_id: ID студента
            assessment_id: ID аттестации
            now: Текущее время (naive UTC)

        Returns:
            AttemptValidation: Результат проверки с причиной отказа

        Raises:
            NotFoundError: Аттестация не найдена
        """
        assessment = await get_assessment(session, assessment_id)
        attempts_used = await attempts_repo.count_finished_attempts(
            session, student_id, assessment_id
        )

        def reject(reason: str, **extra) -> AttemptValidation:
            logger.warning(
                f"🚫 Студент {student_id} не может начать аттестацию "
                f"{assessment_id}: {reason}"
            )
            return AttemptValidation(
                can_start=False,
                reason=reason,
                attempts_used=attempts_used,
                max_attempts=assessment.max_attempts,
                assessment_status=assessment.status,
                **extra,
            )

        if assessment.status != AssessmentStatus.ACTIVE:
            return reject(f"Аттестация не активна (статус {assessment.status.value})")

        if assessment.due_date is not None and now > assessment.due_date:
            return reject("Срок сдачи аттестации истёк")

        active = await attempts_repo.get_active_attempt(
            session, student_id, assessment_id
        )
        if active is not None:
            return reject(f"Уже есть активная попытка {active.id}")

        if attempts_used >= assessment.max_attempts:
            return reject(
                f"Исчерпан лимит попыток ({attempts_used}/{assessment.max_attempts})"
            )

        if assessment.retake_delay_minutes > 0:
            last = await attempts_repo.last_finished_attempt(
                session, student_id, assessment_id
            )
            if last is not None:
                next_time = last.completed_at + timedelta(
                    minutes=assessment.retake_delay_minutes
                )
                if next_time > now:
                    return reject(
                        "Пересдача будет доступна позже",
                        next_attempt_time=next_time,
                    )

        return AttemptValidation(
            can_start=True,
            attempts_used=attempts_used,
            max_attempts=assessment.max_attempts,
            assessment_status=assessment.status,
        )

    async def remaining_attempts(
        self, session: AsyncSession, student_id: int, assessment_id: int
    ) -> int:
        assessment = await get_assessment(session, assessment_id)
        used = await attempts_repo.count_finished_attempts(
            session, student_id, assessment_id
        )
        return max(assessment.max_attempts - used, 0)

    async def next_attempt_number(
        self, session: AsyncSession, student_id: int, assessment_id: int
    ) -> int:
        return (
            await attempts_repo.max_attempt_number(session, student_id, assessment_id)
        ) + 1
