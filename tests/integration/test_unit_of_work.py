# -*- coding: utf-8 -*-
"""
Интеграционные тесты единицы работы
"""

import asyncio

import pytest

from exam_attempts.domain.enums import AssessmentStatus
from exam_attempts.domain.models import Assessment, AssessmentQuestion
from exam_attempts.repository.base import create_item
from exam_attempts.repository.unit_of_work import UnitOfWork
from exam_attempts.utils.exceptions import ConflictError
from tests.fixtures import create_assessment_with_questions, fetch_all


def _assessment_values(title: str) -> dict:
    return dict(
        title=title,
        status=AssessmentStatus.DRAFT,
        duration=10,
        passing_score=50,
        max_attempts=1,
        created_by=1,
    )


@pytest.mark.asyncio
class TestUnitOfWork:
    async def test_commit_runs_after_commit_callbacks(self, session_factory):
        """После commit выполняются колбэки, данные видны новой сессии"""
        # Arrange
        calls = []

        async def callback():
            calls.append("done")

        # Act
        async with UnitOfWork(session_factory, "create_assessment") as uow:
            await create_item(uow.session, Assessment, **_assessment_values("A"))
            uow.after_commit(callback)
            assert calls == []

        # Assert
        assert calls == ["done"]
        assert len(await fetch_all(session_factory, Assessment, title="A")) == 1

    async def test_error_rolls_back_and_skips_callbacks(self, session_factory):
        calls = []

        async def callback():
            calls.append("done")

        with pytest.raises(RuntimeError):
            async with UnitOfWork(session_factory, "create_assessment") as uow:
                await create_item(uow.session, Assessment, **_assessment_values("B"))
                uow.after_commit(callback)
                raise RuntimeError("boom")

        assert calls == []
        assert await fetch_all(session_factory, Assessment, title="B") == []

    async def test_cancellation_rolls_back(self, session_factory):
        """Отмена задачи посреди транзакции не оставляет частичных записей"""
        # Arrange
        started = asyncio.Event()
        calls = []

        async def callback():
            calls.append("done")

        async def work():
            async with UnitOfWork(session_factory, "create_assessment") as uow:
                await create_item(uow.session, Assessment, **_assessment_values("C"))
                uow.after_commit(callback)
                started.set()
                await asyncio.sleep(10)

        # Act
        task = asyncio.create_task(work())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # Assert
        assert calls == []
        assert await fetch_all(session_factory, Assessment, title="C") == []

    async def test_integrity_error_becomes_conflict(self, session_factory):
        # Arrange
        assessment, questions = await create_assessment_with_questions(
            session_factory, question_count=1
        )

        # Act & Assert
        with pytest.raises(ConflictError):
            async with UnitOfWork(session_factory, "link_question") as uow:
                await create_item(
                    uow.session,
                    AssessmentQuestion,
                    assessment_id=assessment.id,
                    question_id=questions[0].id,
                    order=2,
                )

    async def test_failing_callback_does_not_raise(self, session_factory):
        """Падение колбэка после commit не отменяет зафиксированные данные"""

        async def broken():
            raise ConnectionError("cache down")

        async with UnitOfWork(session_factory, "create_assessment") as uow:
            await create_item(uow.session, Assessment, **_assessment_values("D"))
            uow.after_commit(broken)

        assert len(await fetch_all(session_factory, Assessment, title="D")) == 1

    async def test_cancel_after_commit_finishes_callbacks(self, session_factory):
        """Отмена во время инвалидации не пропускает оставшиеся колбэки"""
        # Arrange
        entered = asyncio.Event()
        release = asyncio.Event()
        finished = asyncio.Event()
        calls = []

        async def slow():
            entered.set()
            await release.wait()
            calls.append("slow")

        async def last():
            calls.append("last")
            finished.set()

        async def work():
            async with UnitOfWork(session_factory, "create_assessment") as uow:
                await create_item(uow.session, Assessment, **_assessment_values("E"))
                uow.after_commit(slow)
                uow.after_commit(last)

        # Act
        task = asyncio.create_task(work())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()
        await asyncio.wait_for(finished.wait(), timeout=1)

        # Assert
        assert calls == ["slow", "last"]
        assert len(await fetch_all(session_factory, Assessment, title="E")) == 1
