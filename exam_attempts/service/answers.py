# -*- coding: utf-8 -*-
"""
exam_attempts/service/answers.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Ответы студентов: сохранение, оценивание, флаги и время.

Сохранение выполняется как upsert по паре (попытка, вопрос) на уровне БД, поэтому два
конкурентных ответа на один вопрос оставляют одну строку с последним
значением. Объективные вопросы оцениваются сразу при сохранении.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.enums import AttemptStatus
from exam_attempts.domain.models import (AssessmentAttempt,
                                         AssessmentQuestion, Question,
                                         StudentAnswer)
from exam_attempts.domain.schemas import AnswerGrade, AnswerRead
from exam_attempts.domain.session_data import load_session_data
from exam_attempts.repository import answers as answers_repo
from exam_attempts.repository import assessment_questions as links_repo
from exam_attempts.repository import attempts as attempts_repo
from exam_attempts.repository.unit_of_work import UnitOfWork, read_session
from exam_attempts.service.attempts import Clock, utc_now
from exam_attempts.service.cache_service import CacheService
from exam_attempts.service.grading import attempt_result, auto_grade
from exam_attempts.service.sequencer import QuestionSequencer
from exam_attempts.utils.exceptions import NotFoundError, ValidationError

logger = configure_logger(__name__)

_FLAG_YES = "1"
_FLAG_NO = "0"


def effective_points(question: Question, link: Optional[AssessmentQuestion]) -> float:
    if link is not None and link.points is not None:
        return link.points
    return question.points


class AnswerService:
    """Журнал ответов попытки."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        sequencer: QuestionSequencer,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._sequencer = sequencer
        self._clock = clock

    # ------------------------------------------------------------------
    # Вспомогательные
    # ------------------------------------------------------------------

    async def _attempt_question_ids(
        self, session: AsyncSession, attempt: AssessmentAttempt
    ) -> List[int]:
        """Вопросы попытки: снимок при старте или текущий состав аттестации."""
        data = load_session_data(attempt.session_data)
        if data.question_ids:
            return data.question_ids
        return await links_repo.linked_question_ids(session, attempt.assessment_id)

    @staticmethod
    async def _question_with_link(
        session: AsyncSession, assessment_id: int, question_id: int
    ) -> Tuple[Question, Optional[AssessmentQuestion]]:
        rows = await links_repo.questions_with_links(
            session, assessment_id, [question_id]
        )
        if not rows:
            raise NotFoundError(resource_type="Question", resource_id=question_id)
        return rows[0]

    def _invalidate_answers_after_commit(
        self, uow: UnitOfWork, answers: List[Tuple[int, int, int]]
    ) -> None:
        """Инвалидация по (answer_id, attempt_id, question_id), каждая попытка один раз."""
        attempt_ids = sorted({attempt_id for _, attempt_id, _ in answers})

        async def _invalidate():
            for answer_id, attempt_id, question_id in answers:
                await self._cache.invalidate_answer(answer_id, attempt_id, question_id)
            for attempt_id in attempt_ids:
                await self._cache.invalidate_attempt(attempt_id)

        uow.after_commit(_invalidate)

    async def _refresh_completed_result(
        self, session: AsyncSession, attempt_ids: List[int]
    ) -> None:
        """Пересчитывает итог завершённых попыток после ручной оценки."""
        for attempt_id in attempt_ids:
            attempt = await attempts_repo.get_attempt(session, attempt_id)
            if attempt.status != AttemptStatus.COMPLETED:
                continue
            assessment = await links_repo.get_assessment(session, attempt.assessment_id)
            score, percentage, passed = await attempt_result(
                session, self._sequencer, attempt, assessment
            )
            await attempts_repo.update_completed_result(
                session, attempt_id, score, percentage, passed
            )
            logger.info(
                f"🧮 Итог попытки {attempt_id} пересчитан: {score} ({percentage}%)"
            )

    # ------------------------------------------------------------------
    # Сохранение ответа
    # ------------------------------------------------------------------

    async def upsert(
        self, attempt_id: int, question_id: int, value: Any, time_spent: int = 0
    ) -> AnswerRead:
        """
        Сохраняет ответ студента (создаёт или перезаписывает).

        Args:
            attempt_id: ID попытки
            question_id: ID вопроса
            value: Ответ в JSON-совместимом виде
            time_spent: Секунды, добавляемые к затраченному на вопрос времени

        Returns:
            AnswerRead: Сохранённый ответ (ID не меняется при повторной отправке)

        Raises:
            NotFoundError: Попытка или вопрос не найдены
            InvalidStateError: Попытка не в процессе
            ValidationError: Вопрос не входит в попытку или время отрицательное
        """
        if time_spent < 0:
            raise ValidationError("Затраченное время не может быть отрицательным")

        now = self._clock()
        async with UnitOfWork(self._session_factory, "upsert_answer") as uow:
            session = uow.session
            attempt = await attempts_repo.get_in_progress_attempt(session, attempt_id)
            if question_id not in await self._attempt_question_ids(session, attempt):
                raise ValidationError(
                    f"Вопрос {question_id} не входит в попытку {attempt_id}"
                )

            question, link = await self._question_with_link(
                session, attempt.assessment_id, question_id
            )
            is_correct, score = auto_grade(
                question.question_type,
                question.correct_answer,
                value,
                effective_points(question, link),
            )

            answer_id = await answers_repo.upsert_answer(
                session,
                attempt_id,
                question_id,
                value,
                time_spent,
                now,
                is_correct=is_correct,
                score=score,
            )
            answered = await answers_repo.count_answers(session, attempt_id)
            await attempts_repo.update_if_in_progress(
                session, attempt_id, questions_answered=answered
            )
            self._invalidate_answers_after_commit(
                uow, [(answer_id, attempt_id, question_id)]
            )
            answer = AnswerRead.model_validate(
                await answers_repo.get_answer(session, answer_id)
            )

        logger.info(
            f"📝 Ответ {answer_id} на вопрос {question_id} попытки {attempt_id} "
            f"сохранён ({answer.grading.kind})"
        )
        return answer

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    async def get(self, answer_id: int) -> AnswerRead:
        """
        Ответ по ID (cache-aside).

        Raises:
            NotFoundError: Ответ не найден
        """
        key = self._cache.keys.answer(answer_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return AnswerRead.model_validate(cached)

        async with read_session(self._session_factory, "get_answer") as session:
            answer = AnswerRead.model_validate(
                await answers_repo.get_answer(session, answer_id)
            )

        await self._cache.set(key, answer, self._cache.ttl_fast)
        return answer

    async def get_by_attempt(self, attempt_id: int) -> List[AnswerRead]:
        """Все ответы попытки (cache-aside)."""
        key = self._cache.keys.attempt_answers(attempt_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return [AnswerRead.model_validate(item) for item in cached]

        async with read_session(self._session_factory, "get_answers") as session:
            await attempts_repo.get_attempt(session, attempt_id)
            answers = [
                AnswerRead.model_validate(a)
                for a in await answers_repo.answers_by_attempt(session, attempt_id)
            ]

        await self._cache.set(key, answers, self._cache.ttl_fast)
        return answers

    async def get_by_attempt_and_question(
        self, attempt_id: int, question_id: int
    ) -> Optional[AnswerRead]:
        key = self._cache.keys.attempt_question(attempt_id, question_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return AnswerRead.model_validate(cached)

        async with read_session(self._session_factory, "get_answer") as session:
            answer = await answers_repo.find_answer(session, attempt_id, question_id)
            result = AnswerRead.model_validate(answer) if answer else None

        if result is not None:
            await self._cache.set(key, result, self._cache.ttl_fast)
        return result

    async def has_answer(self, attempt_id: int, question_id: int) -> bool:
        """Есть ли ответ на вопрос (короткоживущий флаг в кэше)."""
        key = self._cache.keys.answer_exists(attempt_id, question_id)
        flag = await self._cache.get_string(key)
        if flag is not None:
            return flag == _FLAG_YES

        async with read_session(self._session_factory, "has_answer") as session:
            exists = (
                await answers_repo.find_answer(session, attempt_id, question_id)
            ) is not None

        await self._cache.set_string(
            key, _FLAG_YES if exists else _FLAG_NO, self._cache.ttl_exists
        )
        return exists

    async def get_flagged(self, attempt_id: int) -> List[AnswerRead]:
        async with read_session(self._session_factory, "get_flagged") as session:
            answers = await answers_repo.answers_by_attempt(
                session, attempt_id, flagged_only=True
            )
            return [AnswerRead.model_validate(a) for a in answers]

    async def time_spent_by_question(self, attempt_id: int) -> Dict[int, int]:
        async with read_session(self._session_factory, "time_spent") as session:
            await attempts_repo.get_attempt(session, attempt_id)
            return await answers_repo.time_spent_by_question(session, attempt_id)

    async def answered_question_ids(self, attempt_id: int) -> List[int]:
        async with read_session(self._session_factory, "answered_questions") as session:
            await attempts_repo.get_attempt(session, attempt_id)
            return await answers_repo.answered_question_ids(session, attempt_id)

    async def unanswered_question_ids(self, attempt_id: int) -> List[int]:
        """Вопросы попытки без ответа, в каноническом порядке снимка."""
        async with read_session(
            self._session_factory, "unanswered_questions"
        ) as session:
            attempt = await attempts_repo.get_attempt(session, attempt_id)
            question_ids = await self._attempt_question_ids(session, attempt)
            answered = set(
                await answers_repo.answered_question_ids(session, attempt_id)
            )
            return [qid for qid in question_ids if qid not in answered]

    async def pending_grading(
        self, assessment_id: int, limit: int = 100
    ) -> List[AnswerRead]:
        """Ответы аттестации, ожидающие оценки."""
        async with read_session(self._session_factory, "pending_grading") as session:
            answers = await answers_repo.pending_grading(session, assessment_id, limit)
            return [AnswerRead.model_validate(a) for a in answers]

    async def are_all_graded(self, attempt_id: int) -> bool:
        async with read_session(self._session_factory, "are_all_graded") as session:
            await attempts_repo.get_attempt(session, attempt_id)
            return await answers_repo.count_ungraded(session, attempt_id) == 0

    # ------------------------------------------------------------------
    # Оценивание
    # ------------------------------------------------------------------

    async def _apply_grade(
        self,
        session: AsyncSession,
        answer: StudentAnswer,
        grade: AnswerGrade,
    ) -> None:
        attempt = await attempts_repo.get_attempt(session, answer.attempt_id)
        question, link = await self._question_with_link(
            session, attempt.assessment_id, answer.question_id
        )
        max_points = effective_points(question, link)
        if grade.score > max_points:
            raise ValidationError(
                f"Балл {grade.score} больше максимума {max_points} "
                f"для ответа {answer.id}",
                item_id=answer.id,
            )
        values = {
            "score": grade.score,
            "graded_by": grade.grader_id,
            "graded_at": self._clock(),
        }
        # Не переданные is_correct и feedback сохраняют прежние значения
        if grade.is_correct is not None:
            values["is_correct"] = grade.is_correct
        if grade.feedback is not None:
            values["feedback"] = grade.feedback
        await answers_repo.update_answer(session, answer.id, **values)

    async def grade(
        self,
        answer_id: int,
        score: float,
        grader_id: int,
        is_correct: Optional[bool] = None,
        feedback: Optional[str] = None,
    ) -> AnswerRead:
        """
        Ручная оценка ответа; оценщик и время проставляются вместе.

        Raises:
            NotFoundError: Ответ не найден
            ValidationError: Балл отрицательный или больше максимума вопроса
        """
        if score < 0:
            raise ValidationError("Балл не может быть отрицательным", item_id=answer_id)
        grade = AnswerGrade(
            answer_id=answer_id,
            score=score,
            grader_id=grader_id,
            is_correct=is_correct,
            feedback=feedback,
        )

        async with UnitOfWork(self._session_factory, "grade_answer") as uow:
            answer = await answers_repo.get_answer(uow.session, answer_id, for_update=True)
            await self._apply_grade(uow.session, answer, grade)
            await self._refresh_completed_result(uow.session, [answer.attempt_id])
            self._invalidate_answers_after_commit(
                uow, [(answer.id, answer.attempt_id, answer.question_id)]
            )
            result = AnswerRead.model_validate(
                await answers_repo.get_answer(uow.session, answer_id)
            )

        logger.info(
            f"✅ Ответ {answer_id} оценён преподавателем {grader_id}: {score}"
        )
        return result

    async def bulk_grade(self, grades: List[AnswerGrade]) -> List[AnswerRead]:
        """
        Оценивает набор ответов в одной транзакции.

        При любой ошибке не применяется ни одна оценка; исключение указывает
        на первый ошибочный ответ.

        Raises:
            NotFoundError: Ответ не найден (resource_id: его ID)
            ValidationError: Повтор ID или недопустимый балл (item_id: ID ответа)
        """
        if not grades:
            return []

        seen = set()
        for grade in grades:
            if grade.answer_id in seen:
                raise ValidationError(
                    f"Ответ {grade.answer_id} встречается в пакете дважды",
                    item_id=grade.answer_id,
                )
            seen.add(grade.answer_id)

        async with UnitOfWork(self._session_factory, "bulk_grade") as uow:
            answers = await answers_repo.answers_by_ids(uow.session, list(seen))
            for grade in grades:
                answer = answers.get(grade.answer_id)
                if answer is None:
                    raise NotFoundError(resource_type="Answer", resource_id=grade.answer_id)
                await self._apply_grade(uow.session, answer, grade)

            attempt_ids = sorted({a.attempt_id for a in answers.values()})
            await self._refresh_completed_result(uow.session, attempt_ids)
            self._invalidate_answers_after_commit(
                uow,
                [(a.id, a.attempt_id, a.question_id) for a in answers.values()],
            )
            results = [
                AnswerRead.model_validate(
                    await answers_repo.get_answer(uow.session, grade.answer_id)
                )
                for grade in grades
            ]

        logger.info(
            f"✅ Пакетно оценено ответов: {len(results)} "
            f"(попыток: {len(attempt_ids)})"
        )
        return results

    # ------------------------------------------------------------------
    # Флаги, время, удаление
    # ------------------------------------------------------------------

    async def flag(self, answer_id: int, flagged: bool = True) -> AnswerRead:
        """Отмечает ответ для повторного просмотра."""
        async with UnitOfWork(self._session_factory, "flag_answer") as uow:
            answer = await answers_repo.get_answer(uow.session, answer_id, for_update=True)
            await answers_repo.update_answer(uow.session, answer_id, is_flagged=flagged)
            self._invalidate_answers_after_commit(
                uow, [(answer.id, answer.attempt_id, answer.question_id)]
            )
            result = AnswerRead.model_validate(
                await answers_repo.get_answer(uow.session, answer_id)
            )

        logger.debug(f"🚩 Ответ {answer_id}: флаг {'установлен' if flagged else 'снят'}")
        return result

    async def update_time_spent(self, answer_id: int, seconds: int) -> AnswerRead:
        """
        Устанавливает затраченное на вопрос время.

        Raises:
            ValidationError: Отрицательное время
            InvalidStateError: Попытка не в процессе
        """
        if seconds < 0:
            raise ValidationError("Затраченное время не может быть отрицательным")

        async with UnitOfWork(self._session_factory, "update_time_spent") as uow:
            answer = await answers_repo.get_answer(uow.session, answer_id, for_update=True)
            await attempts_repo.get_in_progress_attempt(uow.session, answer.attempt_id)
            await answers_repo.update_answer(
                uow.session, answer_id, time_spent=seconds, last_modified_at=self._clock()
            )
            self._invalidate_answers_after_commit(
                uow, [(answer.id, answer.attempt_id, answer.question_id)]
            )
            return AnswerRead.model_validate(
                await answers_repo.get_answer(uow.session, answer_id)
            )

    async def delete(self, answer_id: int) -> None:
        """Удаляет ответ; счётчик отвеченных активной попытки пересчитывается."""
        async with UnitOfWork(self._session_factory, "delete_answer") as uow:
            answer = await answers_repo.get_answer(uow.session, answer_id, for_update=True)
            key = (answer.id, answer.attempt_id, answer.question_id)
            attempt = await attempts_repo.get_attempt(
                uow.session, answer.attempt_id, for_update=True
            )
            await answers_repo.delete_answer(uow.session, answer_id)
            if attempt.status == AttemptStatus.IN_PROGRESS:
                answered = await answers_repo.count_answers(uow.session, attempt.id)
                await attempts_repo.update_if_in_progress(
                    uow.session, attempt.id, questions_answered=answered
                )
            self._invalidate_answers_after_commit(uow, [key])

        logger.info(f"🗑️ Ответ {answer_id} удалён")
