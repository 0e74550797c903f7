# -*- coding: utf-8 -*-
"""
Автоматическая проверка ответов на объективные вопросы.
"""

from typing import Any, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from exam_attempts.domain.enums import QuestionType
from exam_attempts.domain.models import Assessment, AssessmentAttempt
from exam_attempts.domain.session_data import load_session_data
from exam_attempts.repository import answers as answers_repo
from exam_attempts.utils.text_comparison import best_text_match


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def is_answer_correct(
    question_type: QuestionType, correct_answer: Any, value: Any
) -> Optional[bool]:
    """
    Проверяет ответ на объективный вопрос.

    Returns:
        True/False для объективных вопросов, None если вопрос проверяется
        вручную или эталон не задан
    """
    if correct_answer is None or question_type == QuestionType.OPEN_TEXT:
        return None

    if question_type == QuestionType.SINGLE_CHOICE:
        if isinstance(value, (list, tuple)):
            value = value[0] if len(value) == 1 else None
        return value is not None and str(value) == str(correct_answer)

    if question_type == QuestionType.MULTIPLE_CHOICE:
        selected = {str(v) for v in _as_list(value)}
        return bool(selected) and selected == {str(v) for v in _as_list(correct_answer)}

    if question_type == QuestionType.TRUE_FALSE:
        given = _as_bool(value)
        return given is not None and given == _as_bool(correct_answer)

    if question_type == QuestionType.SHORT_ANSWER:
        if not isinstance(value, str) or not value.strip():
            return False
        accepted = [str(v) for v in _as_list(correct_answer)]
        is_correct, _ = best_text_match(value, accepted)
        return is_correct

    return None


def auto_grade(
    question_type: QuestionType, correct_answer: Any, value: Any, points: float
) -> Tuple[Optional[bool], Optional[float]]:
    """
    Оценивает ответ: полный балл за верный ответ, 0 за неверный.

    Returns:
        (is_correct, score) или (None, None) для ручной проверки
    """
    is_correct = is_answer_correct(question_type, correct_answer, value)
    if is_correct is None:
        return None, None
    return is_correct, (float(points) if is_correct else 0.0)


def percentage_of(score: float, max_points: float) -> float:
    if max_points <= 0:
        return 0.0
    return round(min(score / max_points * 100.0, 100.0), 2)


async def attempt_max_points(
    session: AsyncSession, sequencer, attempt: AssessmentAttempt
) -> float:
    """
    Максимум баллов попытки.

    Считается по снимку вопросов попытки, чтобы изменения состава аттестации
    после старта не влияли на процент.
    """
    data = load_session_data(attempt.session_data)
    if data.question_ids:
        questions = await sequencer.load_for_snapshot(
            session, attempt.assessment_id, data
        )
    else:
        questions = await sequencer.load_ordered(session, attempt.assessment_id)
    return sum(q.effective_points for q in questions)


async def attempt_result(
    session: AsyncSession,
    sequencer,
    attempt: AssessmentAttempt,
    assessment: Assessment,
) -> Tuple[float, float, bool]:
    """
    Итог попытки по сохранённым баллам ответов.

    Returns:
        (score, percentage, passed)
    """
    max_points = await attempt_max_points(session, sequencer, attempt)
    score = await answers_repo.total_score(session, attempt.id)
    percentage = percentage_of(score, max_points)
    return score, percentage, percentage >= assessment.passing_score
