# -*- coding: utf-8 -*-
"""
exam_attempts/domain/enums.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Определение классов перечислений для домена попыток.
"""

import enum


class QuestionType(str, enum.Enum):
    """Поддерживаемые типы вопросов."""

    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"  # Сверяется с эталоном нечётко
    OPEN_TEXT = "open_text"  # Субъективный, оценивается преподавателем


class AssessmentStatus(str, enum.Enum):
    """Статусы аттестации."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class AttemptStatus(str, enum.Enum):
    """Статусы для жизненного цикла попытки."""

    IN_PROGRESS = "in_progress"  # Единственное нетерминальное состояние
    COMPLETED = "completed"  # Студент завершил попытку
    ABANDONED = "abandoned"  # Попытка снята администратором
    TIMED_OUT = "timed_out"  # Истекло время

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


# Статусы, которые расходуют лимит попыток
FINISHED_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.TIMED_OUT})


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Значения перечисления для хранения в БД (вместо имён)."""
    return [member.value for member in enum_cls]
