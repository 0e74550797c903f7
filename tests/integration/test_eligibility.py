# -*- coding: utf-8 -*-
"""
Интеграционные тесты правил допуска к попытке
"""

from datetime import timedelta

import pytest

from exam_attempts.domain.enums import AssessmentStatus, AttemptStatus
from exam_attempts.domain.models import AssessmentAttempt
from exam_attempts.repository.unit_of_work import read_session
from exam_attempts.service.eligibility import EligibilityEvaluator
from exam_attempts.utils.exceptions import IneligibleAttemptError, NotFoundError
from tests.fixtures import create_assessment_with_questions, persist

STUDENT_ID = 501


async def _finished_attempt(session_factory, assessment_id, number, status, completed_at):
    return await persist(
        session_factory,
        AssessmentAttempt,
        student_id=STUDENT_ID,
        assessment_id=assessment_id,
        attempt_number=number,
        status=status,
        started_at=completed_at - timedelta(minutes=10),
        completed_at=completed_at,
        time_remaining=0,
    )


async def _evaluate(session_factory, assessment_id, now):
    async with read_session(session_factory, "evaluate") as session:
        return await EligibilityEvaluator().evaluate(
            session, STUDENT_ID, assessment_id, now
        )


@pytest.mark.asyncio
class TestEligibility:
    async def test_fresh_student_can_start(self, session_factory, clock):
        assessment, _ = await create_assessment_with_questions(session_factory)

        validation = await _evaluate(session_factory, assessment.id, clock())

        assert validation.can_start
        assert validation.attempts_used == 0
        assert validation.max_attempts == 3

    async def test_inactive_assessment(self, session_factory, clock):
        assessment, _ = await create_assessment_with_questions(
            session_factory, status=AssessmentStatus.DRAFT
        )

        validation = await _evaluate(session_factory, assessment.id, clock())

        assert not validation.can_start
        assert validation.assessment_status == AssessmentStatus.DRAFT

    async def test_due_date_passed(self, session_factory, clock):
        assessment, _ = await create_assessment_with_questions(
            session_factory, due_date=clock() - timedelta(days=1)
        )

        validation = await _evaluate(session_factory, assessment.id, clock())

        assert not validation.can_start
        assert "Срок" in validation.reason

    async def test_max_attempts_counts_completed_and_timed_out(
        self, session_factory, clock
    ):
        """Брошенные попытки не расходуют лимит"""
        # Arrange
        assessment, _ = await create_assessment_with_questions(
            session_factory, max_attempts=2
        )
        earlier = clock() - timedelta(hours=2)
        await _finished_attempt(
            session_factory, assessment.id, 1, AttemptStatus.ABANDONED, earlier
        )
        await _finished_attempt(
            session_factory, assessment.id, 2, AttemptStatus.COMPLETED, earlier
        )

        # Act
        allowed = await _evaluate(session_factory, assessment.id, clock())
        await _finished_attempt(
            session_factory, assessment.id, 3, AttemptStatus.TIMED_OUT, earlier
        )
        denied = await _evaluate(session_factory, assessment.id, clock())

        # Assert
        assert allowed.can_start and allowed.attempts_used == 1
        assert not denied.can_start
        assert denied.attempts_used == 2

    async def test_retake_delay(self, session_factory, clock):
        """Пересдача недоступна до истечения задержки"""
        # Arrange
        assessment, _ = await create_assessment_with_questions(
            session_factory, retake_delay_minutes=60
        )
        completed_at = clock() - timedelta(minutes=20)
        await _finished_attempt(
            session_factory, assessment.id, 1, AttemptStatus.COMPLETED, completed_at
        )

        # Act
        validation = await _evaluate(session_factory, assessment.id, clock())
        later = await _evaluate(
            session_factory, assessment.id, clock() + timedelta(minutes=41)
        )

        # Assert
        assert not validation.can_start
        assert validation.next_attempt_time == completed_at + timedelta(minutes=60)
        assert later.can_start

    async def test_start_raises_with_validation(self, services, session_factory):
        assessment, _ = await create_assessment_with_questions(
            session_factory, status=AssessmentStatus.ARCHIVED
        )

        with pytest.raises(IneligibleAttemptError) as exc_info:
            await services.attempts.start(STUDENT_ID, assessment.id)

        assert exc_info.value.validation.can_start is False

    async def test_unknown_assessment(self, services):
        with pytest.raises(NotFoundError):
            await services.attempts.start(STUDENT_ID, 9999)


@pytest.mark.asyncio
async def test_remaining_and_next_number(session_factory, clock):
    assessment, _ = await create_assessment_with_questions(session_factory)
    await _finished_attempt(
        session_factory, assessment.id, 4, AttemptStatus.COMPLETED, clock()
    )
    evaluator = EligibilityEvaluator()

    async with read_session(session_factory, "evaluate") as session:
        remaining = await evaluator.remaining_attempts(session, STUDENT_ID, assessment.id)
        number = await evaluator.next_attempt_number(session, STUDENT_ID, assessment.id)

    assert remaining == 2
    assert number == 5
