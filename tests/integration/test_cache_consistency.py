# -*- coding: utf-8 -*-
"""
Интеграционные тесты согласованности кэша
"""

import pytest

from exam_attempts.domain.enums import AttemptStatus
from exam_attempts.service import create_services
from exam_attempts.service.cache_service import CacheService
from exam_attempts.utils.exceptions import ValidationError
from tests.fakes import BrokenRedis
from tests.fixtures import create_assessment_with_questions

STUDENT_ID = 42


@pytest.mark.asyncio
class TestCacheInvalidation:
    async def test_attempt_read_is_cached(self, services, session_factory, fake_redis):
        # Arrange
        assessment, _ = await create_assessment_with_questions(session_factory)
        started = await services.attempts.start(STUDENT_ID, assessment.id)
        key = services.cache.keys.attempt(started.attempt.id)

        # Act
        await services.attempts.get(started.attempt.id)

        # Assert
        assert key in fake_redis.store
        assert fake_redis.ttls[key] == services.cache.ttl_fast

    async def test_write_invalidates_cached_attempt(
        self, services, session_factory, fake_redis
    ):
        """После записи чтение видит новое состояние"""
        # Arrange
        assessment, _ = await create_assessment_with_questions(session_factory)
        started = await services.attempts.start(STUDENT_ID, assessment.id)
        attempt_id = started.attempt.id
        await services.attempts.get(attempt_id)

        # Act
        await services.attempts.complete(attempt_id)
        attempt = await services.attempts.get(attempt_id)

        # Assert
        assert services.cache.keys.attempt(attempt_id) in fake_redis.deleted
        assert attempt.status == AttemptStatus.COMPLETED

    async def test_failed_write_keeps_cache(self, services, session_factory, fake_redis):
        """Откат транзакции не трогает кэш"""
        # Arrange
        assessment, _ = await create_assessment_with_questions(session_factory)
        started = await services.attempts.start(STUDENT_ID, assessment.id)
        attempt_id = started.attempt.id
        await services.attempts.get(attempt_id)
        fake_redis.deleted.clear()

        # Act
        with pytest.raises(ValidationError):
            await services.attempts.update_progress(attempt_id, 99, 0)

        # Assert
        assert fake_redis.deleted == []
        assert services.cache.keys.attempt(attempt_id) in fake_redis.store

    async def test_answer_upsert_invalidates_answer_lists(
        self, services, session_factory, fake_redis
    ):
        # Arrange
        assessment, questions = await create_assessment_with_questions(session_factory)
        started = await services.attempts.start(STUDENT_ID, assessment.id)
        attempt_id = started.attempt.id
        await services.answers.upsert(attempt_id, questions[0].id, "A")
        cached = await services.answers.get_by_attempt(attempt_id)

        # Act
        await services.answers.upsert(attempt_id, questions[1].id, "B")
        fresh = await services.answers.get_by_attempt(attempt_id)

        # Assert
        assert len(cached) == 1
        assert len(fresh) == 2

    async def test_reorder_invalidates_question_order(
        self, services, session_factory, fake_redis
    ):
        assessment, questions = await create_assessment_with_questions(session_factory)
        await services.sequencer.ordered_questions(assessment.id)
        key = services.cache.keys.assessment_questions(assessment.id)
        assert fake_redis.ttls[key] == services.cache.ttl_static

        reversed_ids = [q.id for q in reversed(questions)]
        await services.sequencer.reorder(assessment.id, reversed_ids)
        ordered = await services.sequencer.ordered_questions(assessment.id)

        assert [q.question_id for q in ordered] == reversed_ids


@pytest.mark.asyncio
async def test_services_work_without_redis(session_factory, cache_config, clock):
    """Полный сценарий проходит при недоступном Redis"""
    # Arrange
    services = create_services(
        session_factory=session_factory,
        cache=CacheService(BrokenRedis(), config=cache_config),
        clock=clock,
    )
    assessment, questions = await create_assessment_with_questions(session_factory)

    # Act
    started = await services.attempts.start(STUDENT_ID, assessment.id)
    await services.answers.upsert(started.attempt.id, questions[0].id, "A")
    completed = await services.attempts.complete(started.attempt.id)

    # Assert
    assert completed.status == AttemptStatus.COMPLETED
    assert await services.answers.has_answer(started.attempt.id, questions[0].id)
