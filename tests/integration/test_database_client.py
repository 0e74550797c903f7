# -*- coding: utf-8 -*-
"""
Интеграционные тесты клиента базы данных
"""

import pytest
from sqlalchemy import inspect

from exam_attempts.clients import database_client
from exam_attempts.config.settings import settings


@pytest.fixture
async def sqlite_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(
        settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'client.db'}"
    )
    await database_client.dispose_engine()
    yield settings
    await database_client.dispose_engine()


@pytest.mark.asyncio
async def test_init_db_creates_schema(sqlite_settings):
    """init_db создаёт таблицы подсистемы на лениво созданном движке"""
    # Act
    await database_client.init_db()
    async with database_client.get_engine().connect() as conn:
        tables = await conn.run_sync(lambda c: inspect(c).get_table_names())

    # Assert
    assert {"assessments", "assessment_attempts", "student_answers"} <= set(tables)
    assert database_client.get_session_factory() is database_client.get_session_factory()


@pytest.mark.asyncio
async def test_dispose_resets_engine(sqlite_settings):
    engine = database_client.get_engine()

    await database_client.dispose_engine()

    assert database_client.get_engine() is not engine
