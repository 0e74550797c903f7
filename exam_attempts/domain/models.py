# -*- coding: utf-8 -*-
"""
exam_attempts/domain/models.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
ORM модели SQLAlchemy 2.0 для аттестаций, попыток и ответов.

Инварианты, которые должны выдерживать конкурентные запросы, закреплены на
уровне хранилища:

* не более одной попытки IN_PROGRESS на пару (студент, аттестация):
  частичный уникальный индекс ``uq_attempt_active_per_student``;
* не более одного ответа на пару (попытка, вопрос): ``uq_answer_attempt_question``;
* ``graded_by`` и ``graded_at`` заполнены либо оба, либо ни одного.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (JSON, Boolean, CheckConstraint, DateTime, Enum, Float,
                        ForeignKey, Index, Integer, String, Text,
                        UniqueConstraint, func, text)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from exam_attempts.domain.enums import (AssessmentStatus, AttemptStatus,
                                        QuestionType, enum_values)


class Base(DeclarativeBase):
    """Базовый класс декларативных моделей."""


def _enum(enum_cls, name: str) -> Enum:
    # Храним значения ("in_progress"), а не имена членов перечисления
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=enum_values,
        validate_strings=True,
    )


class Assessment(Base):
    """Аттестация. CRUD аттестаций живёт вне этого пакета, здесь только чтение."""

    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[AssessmentStatus] = mapped_column(
        _enum(AssessmentStatus, "assessment_status"),
        default=AssessmentStatus.DRAFT,
        nullable=False,
        index=True,
    )
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # минуты
    passing_score: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    retake_delay_minutes: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    randomize_questions: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    question_links: Mapped[List["AssessmentQuestion"]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("max_attempts >= 1", name="ck_assessments_max_attempts"),
        CheckConstraint("duration > 0", name="ck_assessments_duration"),
    )


class Question(Base):
    """Вопрос банка вопросов (только чтение)."""

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[QuestionType] = mapped_column(
        _enum(QuestionType, "question_type"), nullable=False
    )
    points: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    options: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    correct_answer: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)


class AssessmentQuestion(Base):
    """Связь аттестации и вопроса с порядком и переопределением баллов."""

    __tablename__ = "assessment_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    assessment: Mapped["Assessment"] = relationship(back_populates="question_links")
    question: Mapped["Question"] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "assessment_id", "question_id", name="uq_assessment_question_pair"
        ),
        CheckConstraint('"order" >= 1', name="ck_assessment_questions_order"),
    )


class AssessmentAttempt(Base):
    """Попытка прохождения аттестации студентом."""

    __tablename__ = "assessment_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[AttemptStatus] = mapped_column(
        _enum(AttemptStatus, "attempt_status"),
        default=AttemptStatus.IN_PROGRESS,
        nullable=False,
        index=True,
    )

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    current_question_index: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    questions_answered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    time_remaining: Mapped[int] = mapped_column(Integer, nullable=False)  # секунды
    time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    passed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    session_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    answers: Mapped[List["StudentAnswer"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index(
            "uq_attempt_active_per_student",
            "student_id",
            "assessment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_attempts_student_assessment", "student_id", "assessment_id"),
        CheckConstraint("time_remaining >= 0", name="ck_attempts_time_remaining"),
    )


class StudentAnswer(Base):
    """Ответ студента на вопрос в рамках попытки."""

    __tablename__ = "student_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(
        ForeignKey("assessment_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    graded_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_modified_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    attempt: Mapped["AssessmentAttempt"] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint(
            "attempt_id", "question_id", name="uq_answer_attempt_question"
        ),
        CheckConstraint(
            "(graded_by IS NULL AND graded_at IS NULL) "
            "OR (graded_by IS NOT NULL AND graded_at IS NOT NULL)",
            name="ck_answers_grading_stamp",
        ),
        CheckConstraint("time_spent >= 0", name="ck_answers_time_spent"),
    )
