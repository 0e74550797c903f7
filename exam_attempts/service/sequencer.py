# -*- coding: utf-8 -*-
"""
exam_attempts/service/sequencer.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Порядок вопросов аттестации и детерминированное перемешивание.

Перемешивание: Фишер-Йейтс поверх ``random.Random(seed)``: один и тот же
seed на одном и том же наборе вопросов всегда даёт один и тот же порядок,
поэтому попытке достаточно сохранить seed и снимок ID вопросов.
"""

import random
import secrets
from typing import List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.config.logger import configure_logger
from exam_attempts.domain.models import AssessmentQuestion, Question
from exam_attempts.domain.schemas import (AttemptRead, InheritedPoints,
                                          OverriddenPoints, SequencedQuestion)
from exam_attempts.domain.session_data import SessionData, load_session_data
from exam_attempts.repository import assessment_questions as links_repo
from exam_attempts.repository.base import create_item, get_item
from exam_attempts.repository.unit_of_work import UnitOfWork, read_session
from exam_attempts.service.cache_service import CacheService
from exam_attempts.utils.exceptions import (ConflictError, NotFoundError,
                                            ValidationError)

logger = configure_logger(__name__)

T = TypeVar("T")

_SEED_UPPER_BOUND = 2**31 - 1


def to_sequenced(
    question: Question, link: Optional[AssessmentQuestion], order: int
) -> SequencedQuestion:
    """Собирает вопрос для выдачи с учётом переопределения баллов."""
    if link is not None and link.points is not None:
        points = OverriddenPoints(points=link.points, default_points=question.points)
    else:
        points = InheritedPoints(points=question.points)
    # До flush у новой связи required ещё не заполнен значением по умолчанию
    required = True if link is None or link.required is None else link.required
    return SequencedQuestion(
        question_id=question.id,
        order=order,
        text=question.text,
        question_type=question.question_type,
        points=points,
        required=required,
        options=question.options,
    )


class QuestionSequencer:
    """Упорядочивание и перемешивание вопросов аттестации."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
    ):
        self._session_factory = session_factory
        self._cache = cache

    # ------------------------------------------------------------------
    # Чистые функции
    # ------------------------------------------------------------------

    @staticmethod
    def new_seed() -> int:
        """Новый seed перемешивания."""
        return secrets.randbelow(_SEED_UPPER_BOUND) + 1

    @staticmethod
    def permute(items: Sequence[T], seed: int) -> List[T]:
        """
        Детерминированная перестановка Фишера-Йейтса.

        Args:
            items: Исходная последовательность (не изменяется)
            seed: Seed генератора

        Returns:
            Новый список той же длины с теми же элементами
        """
        shuffled = list(items)
        random.Random(seed).shuffle(shuffled)
        return shuffled

    @classmethod
    def arrange(
        cls, questions: Sequence[SequencedQuestion], seed: Optional[int]
    ) -> List[SequencedQuestion]:
        """Порядок выдачи: перестановка по seed и перенумерация позиций с 1."""
        arranged = cls.permute(questions, seed) if seed is not None else list(questions)
        return [
            q.model_copy(update={"order": position})
            for position, q in enumerate(arranged, start=1)
        ]

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    async def load_ordered(
        self, session: AsyncSession, assessment_id: int
    ) -> List[SequencedQuestion]:
        """Вопросы аттестации по возрастанию order, в рамках переданной сессии."""
        rows = await links_repo.ordered_links(session, assessment_id)
        return [
            to_sequenced(question, link, position)
            for position, (link, question) in enumerate(rows, start=1)
        ]

    async def ordered_questions(self, assessment_id: int) -> List[SequencedQuestion]:
        """
        Вопросы аттестации в каноническом порядке (cache-aside).

        Raises:
            NotFoundError: Аттестация не найдена
        """
        key = self._cache.keys.assessment_questions(assessment_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return [SequencedQuestion.model_validate(item) for item in cached]

        async with read_session(self._session_factory, "ordered_questions") as session:
            await links_repo.get_assessment(session, assessment_id)
            questions = await self.load_ordered(session, assessment_id)

        await self._cache.set(key, questions, self._cache.ttl_static)
        return questions

    async def sequence(
        self, assessment_id: int, seed: Optional[int] = None
    ) -> List[SequencedQuestion]:
        """Канонический порядок или перестановка по seed."""
        questions = await self.ordered_questions(assessment_id)
        return self.arrange(questions, seed)

    async def load_for_snapshot(
        self, session: AsyncSession, assessment_id: int, data: SessionData
    ) -> List[SequencedQuestion]:
        """Вопросы снимка попытки в порядке прохождения."""
        rows = await links_repo.questions_with_links(
            session, assessment_id, data.question_ids
        )
        by_id: dict[int, Tuple[Question, Optional[AssessmentQuestion]]] = {
            question.id: (question, link) for question, link in rows
        }
        ordered_ids = data.question_ids
        if data.seed is not None:
            ordered_ids = self.permute(ordered_ids, data.seed)

        # Вопрос могли удалить из банка после старта; пропускаем его
        return [
            to_sequenced(*by_id[qid], position)
            for position, qid in enumerate(
                (qid for qid in ordered_ids if qid in by_id), start=1
            )
        ]

    async def sequence_for_attempt(
        self, attempt: AttemptRead
    ) -> List[SequencedQuestion]:
        """Порядок вопросов конкретной попытки, такой же как при старте."""
        data = load_session_data(attempt.session_data)
        if not data.question_ids:
            # Попытка без снимка: текущий набор вопросов аттестации
            return await self.sequence(attempt.assessment_id, data.seed)

        async with read_session(
            self._session_factory, "sequence_for_attempt"
        ) as session:
            return await self.load_for_snapshot(session, attempt.assessment_id, data)

    # ------------------------------------------------------------------
    # Изменение порядка
    # ------------------------------------------------------------------

    def _invalidate_after_commit(self, uow: UnitOfWork, assessment_id: int) -> None:
        async def _invalidate():
            await self._cache.invalidate_assessment_questions(assessment_id)

        uow.after_commit(_invalidate)

    async def reorder(
        self, assessment_id: int, question_ids: Sequence[int]
    ) -> List[SequencedQuestion]:
        """
        Переназначает порядок 1..N в одной транзакции.

        Args:
            assessment_id: ID аттестации
            question_ids: Полный список связанных вопросов в новом порядке

        Raises:
            NotFoundError: Аттестация не найдена
            ValidationError: Список не совпадает с набором связанных вопросов
        """
        async with UnitOfWork(self._session_factory, "reorder_questions") as uow:
            await links_repo.get_assessment(uow.session, assessment_id)
            rows = await links_repo.ordered_links(
                uow.session, assessment_id, for_update=True
            )
            linked = [link.question_id for link, _ in rows]

            if len(set(question_ids)) != len(question_ids):
                raise ValidationError("Список вопросов содержит дубликаты")
            if set(question_ids) != set(linked):
                missing = sorted(set(linked) - set(question_ids))
                extra = sorted(set(question_ids) - set(linked))
                raise ValidationError(
                    f"Список вопросов не совпадает с аттестацией: "
                    f"нет {missing}, лишние {extra}"
                )

            await links_repo.assign_orders(uow.session, assessment_id, question_ids)
            self._invalidate_after_commit(uow, assessment_id)
            uow.session.expire_all()
            questions = await self.load_ordered(uow.session, assessment_id)

        logger.info(f"🔀 Порядок вопросов аттестации {assessment_id} изменён")
        return questions

    async def add_question(
        self,
        assessment_id: int,
        question_id: int,
        points: Optional[float] = None,
        required: bool = True,
    ) -> SequencedQuestion:
        """
        Добавляет вопрос в конец аттестации.

        Raises:
            NotFoundError: Аттестация или вопрос не найдены
            ConflictError: Вопрос уже связан с аттестацией
        """
        if points is not None and points < 0:
            raise ValidationError("Баллы не могут быть отрицательными")

        async with UnitOfWork(self._session_factory, "add_question") as uow:
            await links_repo.get_assessment(uow.session, assessment_id, for_update=True)
            question = await get_item(uow.session, Question, question_id)
            if await links_repo.find_link(uow.session, assessment_id, question_id):
                raise ConflictError(
                    f"Вопрос {question_id} уже связан с аттестацией {assessment_id}"
                )
            order = await links_repo.next_order(uow.session, assessment_id)
            link = await create_item(
                uow.session,
                AssessmentQuestion,
                assessment_id=assessment_id,
                question_id=question_id,
                order=order,
                points=points,
                required=required,
            )
            self._invalidate_after_commit(uow, assessment_id)
            result = to_sequenced(question, link, order)

        logger.info(
            f"➕ Вопрос {question_id} добавлен в аттестацию {assessment_id} "
            f"на позицию {order}"
        )
        return result

    async def remove_question(self, assessment_id: int, question_id: int) -> None:
        """
        Удаляет вопрос из аттестации и уплотняет порядок оставшихся.

        Снимки уже начатых попыток не меняются.

        Raises:
            NotFoundError: Связь не найдена
        """
        async with UnitOfWork(self._session_factory, "remove_question") as uow:
            await links_repo.get_assessment(uow.session, assessment_id, for_update=True)
            link = await links_repo.find_link(uow.session, assessment_id, question_id)
            if link is None:
                raise NotFoundError(
                    resource_type="AssessmentQuestion",
                    resource_id=question_id,
                    details=f"в аттестации {assessment_id}",
                )
            await uow.session.delete(link)
            await uow.session.flush()
            remaining = await links_repo.linked_question_ids(uow.session, assessment_id)
            await links_repo.assign_orders(uow.session, assessment_id, remaining)
            self._invalidate_after_commit(uow, assessment_id)

        logger.info(f"➖ Вопрос {question_id} удалён из аттестации {assessment_id}")
