# -*- coding: utf-8 -*-
"""
exam_attempts/config/settings.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Конфигурация настроек приложения с использованием Pydantic.

Загружает конфигурацию из .env файла (если он есть) и переменных окружения.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Корень проекта (каталог с pyproject.toml)
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_PATH = (BASE_DIR / ".env").resolve()


class Settings(BaseSettings):
    """Настройки подключения к базе данных и общие параметры."""

    model_config = SettingsConfigDict(
        env_file=ENV_PATH if ENV_PATH.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Конфигурация базы данных
    database_url: str | None = None
    postgres_db: str = "exam"
    postgres_user: str = "exam"
    postgres_password: str = "exam"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    db_echo: bool = False
    db_pool_recycle: int = 3600  # Переподключаемся каждый час

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Собираем URL из компонентов, если он не задан явно
        if not self.database_url:
            self.database_url = self._build_database_url()

    def _build_database_url(self) -> str:
        """Build database URL from individual components."""
        driver = "postgresql+asyncpg"
        return (
            f"{driver}://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    def get_config_source(self) -> str:
        """Возвращает информацию об источнике конфигурации для отладки."""
        if ENV_PATH.exists():
            return f"file: {ENV_PATH}"
        return "environment variables only"


settings = Settings()
