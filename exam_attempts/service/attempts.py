# -*- coding: utf-8 -*-
"""
exam_attempts/service/attempts.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Жизненный цикл попытки: старт, возобновление, прогресс, время и завершение.

Состояния: ``in_progress`` -> ``completed | abandoned | timed_out``.
Терминальные состояния окончательны. Каждая мутация выполняется в одной
``UnitOfWork``; кэш инвалидируется только после успешного commit.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.enums import AttemptStatus
from exam_attempts.domain.models import Assessment, AssessmentAttempt
from exam_attempts.domain.schemas import (AttemptFilters, AttemptProgress,
                                          AttemptRead, AttemptSession)
from exam_attempts.domain.session_data import (SessionDataV1,
                                               dump_session_data,
                                               load_session_data)
from exam_attempts.repository import answers as answers_repo
from exam_attempts.repository import attempts as attempts_repo
from exam_attempts.repository.assessment_questions import get_assessment
from exam_attempts.repository.base import create_item
from exam_attempts.repository.unit_of_work import UnitOfWork, read_session
from exam_attempts.service.cache_service import CacheService
from exam_attempts.service.eligibility import EligibilityEvaluator
from exam_attempts.service.grading import attempt_max_points, percentage_of
from exam_attempts.service.sequencer import QuestionSequencer
from exam_attempts.utils.exceptions import (IneligibleAttemptError,
                                            InvalidStateError,
                                            PermissionDeniedError,
                                            ValidationError)

logger = configure_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Текущее время в UTC без tzinfo (так хранится в БД)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_overdue(attempt: AssessmentAttempt, assessment: Assessment, now: datetime) -> bool:
    """Время попытки исчерпано по счётчику или по настенным часам."""
    if attempt.time_remaining <= 0:
        return True
    return now >= attempt.started_at + timedelta(minutes=assessment.duration)


class AttemptService:
    """Конечный автомат попытки."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        sequencer: QuestionSequencer,
        eligibility: Optional[EligibilityEvaluator] = None,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._sequencer = sequencer
        self._eligibility = eligibility or EligibilityEvaluator()
        self._clock = clock

    # ------------------------------------------------------------------
    # Вспомогательные
    # ------------------------------------------------------------------

    def _invalidate_after_commit(self, uow: UnitOfWork, attempt_ids: Iterable[int]) -> None:
        distinct_ids = sorted(set(attempt_ids))

        async def _invalidate():
            for attempt_id in distinct_ids:
                await self._cache.invalidate_attempt(attempt_id)

        uow.after_commit(_invalidate)

    @staticmethod
    async def _reload(session: AsyncSession, attempt_id: int) -> AttemptRead:
        return AttemptRead.model_validate(
            await attempts_repo.get_attempt(session, attempt_id)
        )

    # ------------------------------------------------------------------
    # Старт и возобновление
    # ------------------------------------------------------------------

    async def _expire_overdue_active(self, student_id: int, assessment_id: int) -> None:
        """Переводит в TIMED_OUT просроченную активную попытку этой пары."""
        now = self._clock()
        async with UnitOfWork(self._session_factory, "expire_overdue_attempt") as uow:
            active = await attempts_repo.get_active_attempt(
                uow.session, student_id, assessment_id, for_update=True
            )
            if active is None:
                return
            assessment = await get_assessment(uow.session, assessment_id)
            if not is_overdue(active, assessment, now):
                return
            await attempts_repo.transition(
                uow.session, active.id, AttemptStatus.TIMED_OUT, now, time_remaining=0
            )
            self._invalidate_after_commit(uow, [active.id])

        logger.info(
            f"⏰ Просроченная попытка {active.id} студента {student_id} "
            f"переведена в timed_out перед новым стартом"
        )

    async def start(self, student_id: int, assessment_id: int) -> AttemptSession:
        """
        Начинает новую попытку.

        Args:
            student_id: ID студента
            assessment_id: ID аттестации

        Returns:
            AttemptSession: Попытка и вопросы в порядке прохождения

        Raises:
            NotFoundError: Аттестация не найдена
            IneligibleAttemptError: Студент не может начать попытку
            ConflictError: Параллельный старт успел создать активную попытку
            ValidationError: В аттестации нет вопросов
        """
        await self._expire_overdue_active(student_id, assessment_id)

        now = self._clock()
        async with UnitOfWork(self._session_factory, "start_attempt") as uow:
            session = uow.session
            validation = await self._eligibility.evaluate(
                session, student_id, assessment_id, now
            )
            if not validation.can_start:
                raise IneligibleAttemptError(validation.reason, validation)

            assessment = await get_assessment(session, assessment_id)
            questions = await self._sequencer.load_ordered(session, assessment_id)
            if not questions:
                raise ValidationError(f"В аттестации {assessment_id} нет вопросов")

            seed = (
                self._sequencer.new_seed() if assessment.randomize_questions else None
            )
            data = SessionDataV1(
                seed=seed, question_ids=[q.question_id for q in questions]
            )
            attempt_number = await self._eligibility.next_attempt_number(
                session, student_id, assessment_id
            )

            attempt = await create_item(
                session,
                AssessmentAttempt,
                student_id=student_id,
                assessment_id=assessment_id,
                attempt_number=attempt_number,
                status=AttemptStatus.IN_PROGRESS,
                started_at=now,
                total_questions=len(questions),
                time_remaining=assessment.duration * 60,
                session_data=dump_session_data(data),
            )
            attempt_read = AttemptRead.model_validate(attempt)

        questions = self._sequencer.arrange(questions, seed)

        logger.info(
            f"🚀 Студент {student_id} начал попытку {attempt_read.id} "
            f"(№{attempt_number}) аттестации {assessment_id}, "
            f"вопросов: {len(questions)}"
        )
        return AttemptSession(attempt=attempt_read, questions=questions)

    async def resume(self, attempt_id: int, student_id: int) -> AttemptSession:
        """
        Возвращает активную попытку с тем же порядком вопросов, что при старте.

        Raises:
            NotFoundError: Попытка не найдена
            PermissionDeniedError: Попытка принадлежит другому студенту
            InvalidStateError: Попытка завершена или её время истекло
        """
        attempt = await self.get_for_student(attempt_id, student_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidStateError("Attempt", attempt_id, attempt.status.value)

        async with read_session(self._session_factory, "resume_attempt") as session:
            assessment = await get_assessment(session, attempt.assessment_id)
            row = await attempts_repo.get_attempt(session, attempt_id)
            overdue = is_overdue(row, assessment, self._clock())

        if overdue:
            timed_out = await self.time_out(attempt_id)
            raise InvalidStateError("Attempt", attempt_id, timed_out.status.value)

        questions = await self._sequencer.sequence_for_attempt(attempt)
        logger.info(f"▶️ Студент {student_id} возобновил попытку {attempt_id}")
        return AttemptSession(attempt=attempt, questions=questions)

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    async def get(self, attempt_id: int) -> AttemptRead:
        """
        Попытка по ID (cache-aside).

        Raises:
            NotFoundError: Попытка не найдена
        """
        key = self._cache.keys.attempt(attempt_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return AttemptRead.model_validate(cached)

        async with read_session(self._session_factory, "get_attempt") as session:
            attempt = await self._reload(session, attempt_id)

        await self._cache.set(key, attempt, self._cache.ttl_fast)
        return attempt

    async def get_for_student(self, attempt_id: int, student_id: int) -> AttemptRead:
        attempt = await self.get(attempt_id)
        if attempt.student_id != student_id:
            logger.warning(
                f"🔒 Студент {student_id} запросил чужую попытку {attempt_id}"
            )
            raise PermissionDeniedError("Попытка принадлежит другому студенту")
        return attempt

    async def get_active(
        self, student_id: int, assessment_id: int
    ) -> Optional[AttemptRead]:
        async with read_session(self._session_factory, "get_active_attempt") as session:
            attempt = await attempts_repo.get_active_attempt(
                session, student_id, assessment_id
            )
            return AttemptRead.model_validate(attempt) if attempt else None

    async def list(self, filters: Optional[AttemptFilters] = None) -> List[AttemptRead]:
        filters = filters or AttemptFilters()
        if (
            filters.started_from is not None
            and filters.started_to is not None
            and filters.started_from > filters.started_to
        ):
            raise ValidationError("Начало периода позже его конца")

        async with read_session(self._session_factory, "list_attempts") as session:
            attempts = await attempts_repo.list_attempts(session, filters)
            return [AttemptRead.model_validate(a) for a in attempts]

    async def by_student(
        self, student_id: int, skip: int = 0, limit: int = 100
    ) -> List[AttemptRead]:
        return await self.list(
            AttemptFilters(student_id=student_id, skip=skip, limit=limit)
        )

    async def by_assessment(
        self, assessment_id: int, skip: int = 0, limit: int = 100
    ) -> List[AttemptRead]:
        return await self.list(
            AttemptFilters(assessment_id=assessment_id, skip=skip, limit=limit)
        )

    async def by_status(
        self, status: AttemptStatus, skip: int = 0, limit: int = 100
    ) -> List[AttemptRead]:
        return await self.list(AttemptFilters(status=status, skip=skip, limit=limit))

    async def by_date_range(
        self, start: datetime, end: datetime, skip: int = 0, limit: int = 100
    ) -> List[AttemptRead]:
        return await self.list(
            AttemptFilters(started_from=start, started_to=end, skip=skip, limit=limit)
        )

    async def get_progress(self, attempt_id: int) -> AttemptProgress:
        attempt = await self.get(attempt_id)
        completion = (
            round(attempt.questions_answered / attempt.total_questions * 100, 2)
            if attempt.total_questions
            else 0.0
        )
        return AttemptProgress(
            attempt_id=attempt.id,
            status=attempt.status,
            current_question_index=attempt.current_question_index,
            questions_answered=attempt.questions_answered,
            total_questions=attempt.total_questions,
            time_remaining=attempt.time_remaining,
            time_spent=attempt.time_spent,
            completion_percentage=completion,
        )

    # ------------------------------------------------------------------
    # Обновления активной попытки
    # ------------------------------------------------------------------

    async def update_progress(
        self, attempt_id: int, current_question_index: int, questions_answered: int
    ) -> AttemptRead:
        """
        Обновляет позицию студента в попытке.

        Raises:
            NotFoundError: Попытка не найдена
            InvalidStateError: Попытка не в процессе
            ValidationError: Значения вне диапазона вопросов
        """
        async with UnitOfWork(self._session_factory, "update_progress") as uow:
            attempt = await attempts_repo.get_in_progress_attempt(
                uow.session, attempt_id
            )
            total = attempt.total_questions
            if not 0 <= current_question_index < max(total, 1):
                raise ValidationError(
                    f"Индекс вопроса {current_question_index} вне диапазона 0..{total - 1}"
                )
            if not 0 <= questions_answered <= total:
                raise ValidationError(
                    f"Число отвеченных вопросов {questions_answered} вне диапазона 0..{total}"
                )
            await attempts_repo.update_if_in_progress(
                uow.session,
                attempt_id,
                current_question_index=current_question_index,
                questions_answered=questions_answered,
            )
            self._invalidate_after_commit(uow, [attempt_id])
            result = await self._reload(uow.session, attempt_id)

        logger.debug(
            f"📍 Попытка {attempt_id}: вопрос {current_question_index}, "
            f"отвечено {questions_answered}/{result.total_questions}"
        )
        return result

    async def update_time_remaining(self, attempt_id: int, seconds: int) -> AttemptRead:
        """
        Уменьшает оставшееся время. Отрицательные значения приводятся к 0.

        Raises:
            ValidationError: Новое значение больше текущего
        """
        seconds = max(int(seconds), 0)
        async with UnitOfWork(self._session_factory, "update_time_remaining") as uow:
            attempt = await attempts_repo.get_in_progress_attempt(
                uow.session, attempt_id
            )
            if seconds > attempt.time_remaining:
                raise ValidationError(
                    f"Оставшееся время не может увеличиться "
                    f"({attempt.time_remaining} -> {seconds})"
                )
            elapsed = attempt.time_remaining - seconds
            await attempts_repo.update_if_in_progress(
                uow.session,
                attempt_id,
                time_remaining=seconds,
                time_spent=attempt.time_spent + elapsed,
            )
            self._invalidate_after_commit(uow, [attempt_id])
            result = await self._reload(uow.session, attempt_id)

        if seconds == 0:
            logger.info(f"⌛ У попытки {attempt_id} закончилось время")
        return result

    async def update_score(
        self, attempt_id: int, score: float, percentage: float, passed: bool
    ) -> AttemptRead:
        if score < 0:
            raise ValidationError("Балл не может быть отрицательным")
        if not 0 <= percentage <= 100:
            raise ValidationError("Процент должен быть в диапазоне 0..100")

        async with UnitOfWork(self._session_factory, "update_score") as uow:
            await attempts_repo.update_if_in_progress(
                uow.session, attempt_id, score=score, percentage=percentage, passed=passed
            )
            self._invalidate_after_commit(uow, [attempt_id])
            return await self._reload(uow.session, attempt_id)

    async def update_session_data(
        self, attempt_id: int, extra: Dict[str, Any]
    ) -> AttemptRead:
        """
        Объединяет состояние клиента с сохранённым.

        Снимок вопросов и seed не меняются.
        """
        async with UnitOfWork(self._session_factory, "update_session_data") as uow:
            attempt = await attempts_repo.get_in_progress_attempt(
                uow.session, attempt_id
            )
            data = load_session_data(attempt.session_data).with_client_state(extra)
            await attempts_repo.update_if_in_progress(
                uow.session, attempt_id, session_data=dump_session_data(data)
            )
            self._invalidate_after_commit(uow, [attempt_id])
            return await self._reload(uow.session, attempt_id)

    # ------------------------------------------------------------------
    # Терминальные переходы
    # ------------------------------------------------------------------

    async def complete(
        self,
        attempt_id: int,
        score: Optional[float] = None,
        percentage: Optional[float] = None,
        passed: Optional[bool] = None,
    ) -> AttemptRead:
        """
        Завершает попытку и фиксирует результат.

        Недостающие значения результата вычисляются по баллам ответов.

        Raises:
            NotFoundError: Попытка не найдена
            InvalidStateError: Попытка уже в терминальном состоянии
        """
        now = self._clock()
        async with UnitOfWork(self._session_factory, "complete_attempt") as uow:
            session = uow.session
            attempt = await attempts_repo.get_in_progress_attempt(session, attempt_id)
            assessment = await get_assessment(session, attempt.assessment_id)

            if score is None:
                score = await answers_repo.total_score(session, attempt_id)
            if percentage is None:
                max_points = await attempt_max_points(
                    session, self._sequencer, attempt
                )
                percentage = percentage_of(score, max_points)
            if passed is None:
                passed = percentage >= assessment.passing_score

            answered = await answers_repo.count_answers(session, attempt_id)
            await attempts_repo.transition(
                session,
                attempt_id,
                AttemptStatus.COMPLETED,
                now,
                score=score,
                percentage=percentage,
                passed=passed,
                questions_answered=answered,
            )
            self._invalidate_after_commit(uow, [attempt_id])
            result = await self._reload(session, attempt_id)

        logger.info(
            f"🏁 Попытка {attempt_id} студента {result.student_id} завершена: "
            f"{score} баллов ({percentage}%), "
            f"{'сдано' if passed else 'не сдано'}"
        )
        return result

    async def _terminate(
        self, attempt_id: int, status: AttemptStatus, operation: str, **values
    ) -> AttemptRead:
        now = self._clock()
        async with UnitOfWork(self._session_factory, operation) as uow:
            await attempts_repo.transition(uow.session, attempt_id, status, now, **values)
            self._invalidate_after_commit(uow, [attempt_id])
            return await self._reload(uow.session, attempt_id)

    async def abandon(self, attempt_id: int) -> AttemptRead:
        return await self._terminate(
            attempt_id, AttemptStatus.ABANDONED, "abandon_attempt"
        )

    async def time_out(self, attempt_id: int) -> AttemptRead:
        return await self._terminate(
            attempt_id, AttemptStatus.TIMED_OUT, "time_out_attempt", time_remaining=0
        )

    async def bulk_update_status(
        self, attempt_ids: List[int], status: AttemptStatus
    ) -> int:
        """
        Переводит набор попыток в терминальный статус атомарно.

        Если хотя бы одна попытка отсутствует или уже завершена, не меняется
        ни одна; исключение несёт ID первой такой попытки.

        Raises:
            ValidationError: Статус не терминальный
            NotFoundError: Попытка не найдена (resource_id: её ID)
            InvalidStateError: Попытка уже завершена (resource_id: её ID)
        """
        if not status.is_terminal:
            raise ValidationError(
                f"Массово можно установить только терминальный статус, не {status.value}"
            )
        unique_ids = list(dict.fromkeys(attempt_ids))
        if not unique_ids:
            return 0

        now = self._clock()
        values = {"time_remaining": 0} if status == AttemptStatus.TIMED_OUT else {}
        async with UnitOfWork(self._session_factory, "bulk_update_status") as uow:
            for attempt_id in unique_ids:
                await attempts_repo.get_in_progress_attempt(uow.session, attempt_id)
            for attempt_id in unique_ids:
                await attempts_repo.transition(
                    uow.session, attempt_id, status, now, **values
                )
            self._invalidate_after_commit(uow, unique_ids)

        logger.info(
            f"📦 {len(unique_ids)} попыток переведены в статус {status.value}"
        )
        return len(unique_ids)

    # ------------------------------------------------------------------
    # Таймауты и очистка
    # ------------------------------------------------------------------

    async def timed_out_candidates(self) -> List[AttemptRead]:
        """Активные попытки с исчерпанным временем."""
        async with read_session(self._session_factory, "timed_out_candidates") as session:
            attempts = await attempts_repo.timed_out_candidates(session)
            return [AttemptRead.model_validate(a) for a in attempts]

    async def expire_timed_out_attempts(self) -> List[int]:
        """
        Переводит все кандидаты в TIMED_OUT одной транзакцией.

        Предназначено для внешнего планировщика.

        Returns:
            List[int]: ID переведённых попыток
        """
        now = self._clock()
        async with UnitOfWork(self._session_factory, "expire_timed_out") as uow:
            candidates = await attempts_repo.timed_out_candidates(
                uow.session, for_update=True
            )
            ids = [a.id for a in candidates]
            await attempts_repo.mark_timed_out(uow.session, ids, now)
            self._invalidate_after_commit(uow, ids)

        if ids:
            logger.info(f"⏰ Переведено в timed_out попыток: {len(ids)}")
        return ids

    async def delete(self, attempt_id: int) -> None:
        """Удаляет попытку вместе с ответами."""
        async with UnitOfWork(self._session_factory, "delete_attempt") as uow:
            answers = await answers_repo.answers_by_attempt(uow.session, attempt_id)
            answer_keys = [self._cache.keys.answer(a.id) for a in answers]
            await attempts_repo.delete_attempt(uow.session, attempt_id)

            async def _invalidate():
                await self._cache.invalidate_attempt(attempt_id)
                await self._cache.delete(*answer_keys)

            uow.after_commit(_invalidate)

        logger.info(f"🗑️ Попытка {attempt_id} удалена")
