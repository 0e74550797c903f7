# -*- coding: utf-8 -*-
"""
Этот модуль определяет исключения подсистемы попыток и ответов.
Каждое исключение несёт HTTP статус-код и уникальный код ошибки, чтобы внешний
HTTP-слой мог отдать его клиенту без дополнительного маппинга.
"""

from enum import Enum
from typing import Any

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """Перечисление для уникальных кодов ошибок."""

    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATE = "INVALID_STATE"
    INELIGIBLE_ATTEMPT = "INELIGIBLE_ATTEMPT"
    TRANSIENT_IO = "TRANSIENT_IO"


class APIException(HTTPException):
    """Базовый класс для исключений подсистемы."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str,
        headers: dict | None = None,
    ):
        """
        Инициализирует APIException с кодом статуса, деталями и кодом ошибки.

        Args:
            status_code (int): HTTP код статуса.
            detail (str): Сообщение об ошибке.
            error_code (str): Уникальный код ошибки.
            headers (dict, optional): Дополнительные заголовки.
        """
        super().__init__(status_code=status_code, headers=headers)
        self.detail = detail
        self.error_code = error_code

    def __str__(self) -> str:
        return f"{self.error_code}: {self.detail}"


class NotFoundError(APIException):
    """Вызывается, когда ресурс не найден."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str | int = None,
        details: str | None = None,
    ):
        """
        Инициализирует NotFoundError.

        Args:
            resource_type (str): Тип ресурса (например, "Attempt", "Answer").
            resource_id (str or int, optional): ID ресурса.
            details (str, optional): Дополнительные детали об ошибке.
        """
        detail = f"{resource_type} не найден"
        if resource_id is not None:
            detail = f"{resource_type} с ID {resource_id} не найден"
        if details:
            detail = f"{detail}: {details}"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=ErrorCode.NOT_FOUND,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(APIException):
    """Вызывается при нарушении уникальности в хранилище."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=ErrorCode.CONFLICT,
        )


class PermissionDeniedError(APIException):
    """Вызывается, когда попытка принадлежит другому студенту."""

    def __init__(self, detail: str = "Недостаточно прав"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=ErrorCode.PERMISSION_DENIED,
        )


class ValidationError(APIException):
    """Вызывается, когда входные данные недействительны."""

    def __init__(self, detail: str, item_id: int | None = None):
        """
        Инициализирует ValidationError.

        Args:
            detail (str): Детальное сообщение об ошибке.
            item_id (int, optional): ID первой ошибочной записи пакетной операции.
        """
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=ErrorCode.VALIDATION_ERROR,
        )
        self.item_id = item_id


class InvalidStateError(APIException):
    """Операция недопустима в текущем состоянии жизненного цикла."""

    def __init__(self, resource_type: str, resource_id: int, current_state: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"{resource_type} {resource_id} находится в состоянии "
                f"'{current_state}', операция недопустима"
            ),
            error_code=ErrorCode.INVALID_STATE,
        )
        self.resource_id = resource_id
        self.current_state = current_state


class IneligibleAttemptError(APIException):
    """Студент не может начать новую попытку."""

    def __init__(self, reason: str, validation: Any = None):
        """
        Args:
            reason (str): Человекочитаемая причина отказа.
            validation (AttemptValidation, optional): Полный результат проверки.
        """
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=reason,
            error_code=ErrorCode.INELIGIBLE_ATTEMPT,
        )
        self.reason = reason
        self.validation = validation


class TransientIOError(APIException):
    """Сбой связи с хранилищем, обёрнутый контекстом операции."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        detail = f"Ошибка хранилища при выполнении '{operation}'"
        if cause is not None:
            detail = f"{detail}: {type(cause).__name__}: {cause}"
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=ErrorCode.TRANSIENT_IO,
        )
        self.operation = operation
