# -*- coding: utf-8 -*-
"""
exam_attempts/repository/unit_of_work.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Явная единица работы поверх ``AsyncSession``.

Все мутации одного вызова сервиса выполняются в одной транзакции:

* успешный выход из блока: commit, затем колбэки ``after_commit``
  (инвалидация кэша), которые доработают и при отмене задачи после commit;
* любое исключение, включая ``asyncio.CancelledError``: rollback, колбэки
  не выполняются;
* ``IntegrityError`` превращается в ``ConflictError``, прочие ошибки
  SQLAlchemy превращаются в ``TransientIOError`` с именем операции.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_attempts.config.logger import configure_logger
from exam_attempts.utils.exceptions import ConflictError, TransientIOError

logger = configure_logger(__name__)

AfterCommit = Callable[[], Awaitable[None]]

# Ссылки на запущенные инвалидации, чтобы их не собрал GC после отмены вызывающего
_running_callbacks: Set[asyncio.Task] = set()


def translate_store_error(operation: str, exc: BaseException) -> Optional[Exception]:
    """Возвращает доменное исключение для ошибки хранилища или None."""
    if isinstance(exc, IntegrityError):
        logger.warning(f"⚠️ Нарушение ограничения в '{operation}': {exc.orig}")
        return ConflictError(f"Конфликт при выполнении '{operation}'")
    if isinstance(exc, SQLAlchemyError):
        logger.error(f"❌ Ошибка хранилища в '{operation}': {type(exc).__name__}: {exc}")
        return TransientIOError(operation, exc)
    return None


class UnitOfWork:
    """Транзакция одного вызова сервиса с отложенной инвалидацией кэша."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        operation: str,
    ):
        self._session_factory = session_factory
        self.operation = operation
        self.session: Optional[AsyncSession] = None
        self._after_commit: List[AfterCommit] = []

    def after_commit(self, callback: AfterCommit) -> None:
        """Регистрирует колбэк, который выполнится только после commit."""
        self._after_commit.append(callback)

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        session = self.session
        try:
            if exc_type is None:
                try:
                    await session.commit()
                except SQLAlchemyError as commit_error:
                    await self._rollback_quietly(session)
                    raise translate_store_error(
                        self.operation, commit_error
                    ) from commit_error
            else:
                await self._rollback_quietly(session)
                translated = translate_store_error(self.operation, exc)
                if translated is not None:
                    raise translated from exc
                return False
        finally:
            await session.close()
            self.session = None

        await self._run_after_commit()
        return False

    async def _rollback_quietly(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except SQLAlchemyError as rollback_error:
            logger.error(
                f"❌ Не удалось откатить '{self.operation}': {rollback_error}"
            )

    async def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        if not callbacks:
            return
        task = asyncio.ensure_future(self._invoke_callbacks(callbacks))
        _running_callbacks.add(task)
        task.add_done_callback(_running_callbacks.discard)
        # Данные уже зафиксированы: при отмене вызывающего колбэки доработают
        await asyncio.shield(task)

    async def _invoke_callbacks(self, callbacks: List[AfterCommit]) -> None:
        for callback in callbacks:
            try:
                await callback()
            except Exception as e:
                # Данные уже зафиксированы, устаревший кэш истечёт по TTL
                logger.warning(
                    f"⚠️ Колбэк после commit '{self.operation}' упал: "
                    f"{type(e).__name__}: {e}"
                )


@asynccontextmanager
async def read_session(
    session_factory: async_sessionmaker[AsyncSession], operation: str
) -> AsyncIterator[AsyncSession]:
    """Сессия только для чтения с тем же переводом ошибок хранилища."""
    session = session_factory()
    try:
        yield session
    except SQLAlchemyError as e:
        raise translate_store_error(operation, e) from e
    finally:
        await session.close()
