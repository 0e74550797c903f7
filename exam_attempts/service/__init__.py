# -*- coding: utf-8 -*-
"""
Сервисный слой подсистемы попыток.

``create_services`` собирает сервисы с зависимостями по умолчанию: глобальной
фабрикой сессий, Redis из настроек и системными часами. В тестах сервисы
создаются напрямую с подменёнными зависимостями.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.service.answers import AnswerService
from exam_attempts.service.attempts import AttemptService, Clock, utc_now
from exam_attempts.service.cache_service import CacheService
from exam_attempts.service.eligibility import EligibilityEvaluator
from exam_attempts.service.sequencer import QuestionSequencer


@dataclass
class Services:
    cache: CacheService
    eligibility: EligibilityEvaluator
    sequencer: QuestionSequencer
    attempts: AttemptService
    answers: AnswerService


def create_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cache: Optional[CacheService] = None,
    clock: Clock = utc_now,
) -> Services:
    """Собирает сервисы подсистемы."""
    if session_factory is None:
        from exam_attempts.clients.database_client import get_session_factory

        session_factory = get_session_factory()
    cache = cache or CacheService()

    eligibility = EligibilityEvaluator()
    sequencer = QuestionSequencer(session_factory, cache)
    return Services(
        cache=cache,
        eligibility=eligibility,
        sequencer=sequencer,
        attempts=AttemptService(
            session_factory, cache, sequencer, eligibility=eligibility, clock=clock
        ),
        answers=AnswerService(session_factory, cache, sequencer, clock=clock),
    )


__all__ = [
    "AnswerService",
    "AttemptService",
    "CacheService",
    "EligibilityEvaluator",
    "QuestionSequencer",
    "Services",
    "create_services",
]
