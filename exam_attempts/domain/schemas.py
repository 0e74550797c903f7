# -*- coding: utf-8 -*-
"""
Pydantic-схемы подсистемы попыток.

Схемы чтения строятся из ORM объектов (``from_attributes``) и этими же схемами
значения кладутся в кэш (``model_dump(mode="json")``) и поднимаются обратно
(``model_validate``).
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from exam_attempts.domain.enums import (AssessmentStatus, AttemptStatus,
                                        QuestionType)

# ----------------------------- ATTEMPTS -------------------------------------


class AttemptRead(BaseModel):
    id: int
    student_id: int
    assessment_id: int
    attempt_number: int
    status: AttemptStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    current_question_index: int = 0
    questions_answered: int = 0
    total_questions: int = 0
    time_remaining: int = 0  # секунды
    time_spent: int = 0
    score: Optional[float] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None
    session_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    class Config:
        from_attributes = True


class AttemptProgress(BaseModel):
    attempt_id: int
    status: AttemptStatus
    current_question_index: int
    questions_answered: int
    total_questions: int
    time_remaining: int
    time_spent: int
    completion_percentage: float = Field(
        description="Доля отвеченных вопросов в процентах"
    )


class AttemptValidation(BaseModel):
    """Результат проверки права начать попытку."""

    can_start: bool
    reason: Optional[str] = None
    attempts_used: int = 0
    max_attempts: int = 0
    next_attempt_time: Optional[datetime] = None
    assessment_status: Optional[AssessmentStatus] = None


class AttemptFilters(BaseModel):
    student_id: Optional[int] = None
    assessment_id: Optional[int] = None
    status: Optional[AttemptStatus] = None
    started_from: Optional[datetime] = None
    started_to: Optional[datetime] = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=0, description="0: без ограничения")


# ----------------------------- GRADING --------------------------------------


class Ungraded(BaseModel):
    kind: Literal["ungraded"] = "ungraded"


class AutoGraded(BaseModel):
    """Объективный вопрос, оценён автоматически при сохранении ответа."""

    kind: Literal["auto"] = "auto"
    is_correct: bool
    score: float


class Graded(BaseModel):
    """Оценено преподавателем; оценщик и время всегда заданы вместе."""

    kind: Literal["graded"] = "graded"
    score: float
    graded_by: int
    graded_at: datetime
    is_correct: Optional[bool] = None


GradingState = Annotated[
    Union[Ungraded, AutoGraded, Graded], Field(discriminator="kind")
]


def grading_state(
    score: Optional[float],
    is_correct: Optional[bool],
    graded_by: Optional[int],
    graded_at: Optional[datetime],
) -> GradingState:
    """Собирает состояние оценивания из плоских колонок ответа."""
    if graded_by is not None and graded_at is not None:
        return Graded(
            score=score or 0.0,
            graded_by=graded_by,
            graded_at=graded_at,
            is_correct=is_correct,
        )
    if score is not None and is_correct is not None:
        return AutoGraded(is_correct=is_correct, score=score)
    return Ungraded()


# ----------------------------- ANSWERS --------------------------------------


class AnswerRead(BaseModel):
    id: int
    attempt_id: int
    question_id: int
    value: Optional[Any] = None
    is_correct: Optional[bool] = None
    score: Optional[float] = None
    graded_by: Optional[int] = None
    graded_at: Optional[datetime] = None
    feedback: Optional[str] = None
    is_flagged: bool = False
    time_spent: int = 0
    last_modified_at: datetime
    created_at: Optional[datetime] = None

    @property
    def grading(self) -> GradingState:
        return grading_state(
            self.score, self.is_correct, self.graded_by, self.graded_at
        )

    class Config:
        from_attributes = True


class AnswerGrade(BaseModel):
    """Одна оценка для пакетного оценивания."""

    answer_id: int
    score: float
    grader_id: int
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None

    @field_validator("score")
    @classmethod
    def validate_score(cls, v: float) -> float:
        """Балл не может быть отрицательным."""
        if v < 0:
            raise ValueError("score must be >= 0")
        return v


# ----------------------------- QUESTIONS ------------------------------------


class InheritedPoints(BaseModel):
    """Баллы берутся из вопроса."""

    kind: Literal["inherited"] = "inherited"
    points: float


class OverriddenPoints(BaseModel):
    """Баллы переопределены на уровне связи аттестация-вопрос."""

    kind: Literal["overridden"] = "overridden"
    points: float
    default_points: float


PointsSource = Annotated[
    Union[InheritedPoints, OverriddenPoints], Field(discriminator="kind")
]


class SequencedQuestion(BaseModel):
    question_id: int
    order: int
    text: str
    question_type: QuestionType
    points: PointsSource
    required: bool = True
    options: Optional[List[Any]] = None

    @property
    def effective_points(self) -> float:
        return self.points.points


class AttemptSession(BaseModel):
    """Попытка вместе с вопросами в порядке прохождения."""

    attempt: AttemptRead
    questions: List[SequencedQuestion]
