"""
Настройки конфигурации Redis для кэша попыток и ответов.

Этот модуль предоставляет настройки подключения к Redis и конфигурации TTL кэша.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Настройки конфигурации Redis."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Игнорируем лишние переменные окружения
    )

    # Настройки подключения
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0

    # Настройки пула подключений
    max_connections: int = 10
    retry_on_timeout: bool = True
    socket_keepalive: bool = True

    # Настройки TTL кэша (в секундах)
    cache_ttl_fast: int = 300  # 5 минут - попытки и ответы
    cache_ttl_exists: int = 30  # 30 секунд - флаги существования
    cache_ttl_static: int = 3600  # 1 час - порядок вопросов аттестации

    # Сколько ждём Redis, прежде чем считать обращение промахом
    cache_operation_timeout: float = 0.5

    # Пространство имён для всех ключей
    cache_key_prefix: str = "exam"


# Глобальный экземпляр настроек Redis
redis_settings = RedisSettings()


def get_redis_connection_params() -> dict:
    """
    Получить параметры подключения к Redis для redis-py.

    Returns:
        Словарь с параметрами подключения
    """
    params = {
        "host": redis_settings.host,
        "port": redis_settings.port,
        "db": redis_settings.db,
        "max_connections": redis_settings.max_connections,
        "retry_on_timeout": redis_settings.retry_on_timeout,
        "socket_keepalive": redis_settings.socket_keepalive,
        "decode_responses": True,
    }

    if redis_settings.password:
        params["password"] = redis_settings.password

    return params
