# -*- coding: utf-8 -*-
"""
Настройка логирования для сервиса попыток с использованием loguru.
"""
import logging
import os
import sys

from loguru import logger

# Удаляем стандартный хендлер loguru
logger.remove()

# Сторонние логгеры, чьи INFO/DEBUG записи только засоряют вывод
_NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")


class InterceptHandler(logging.Handler):
    """Перехватывает стандартные логи и перенаправляет их в loguru."""

    def emit(self, record):
        # Пропускаем болтливые библиотеки ниже WARNING
        if record.name.startswith(_NOISY_LOGGERS) and record.levelno < logging.WARNING:
            return

        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = sys._getframe(6), 6
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


# Настраиваем перехват всех стандартных логов (SQLAlchemy, redis)
logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

# Получаем настройки из переменных окружения
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
debug_mode = os.getenv("DEBUG", "false").lower() == "true"

# Формат для консоли (с цветами)
console_format = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

logger.add(
    sys.stdout,
    format=console_format,
    level=log_level,
    colorize=True,
    backtrace=False,
    diagnose=False,
    filter=lambda record: record["level"].name != "TRACE" or debug_mode,
)


def configure_logger(name: str = "exam_attempts"):
    """
    Возвращает логгер, привязанный к имени модуля.

    Args:
        name: Имя модуля, попадает в extra["module"]

    Returns:
        loguru.Logger: Настроенный логгер
    """
    return logger.bind(module=name)

