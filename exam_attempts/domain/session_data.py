# -*- coding: utf-8 -*-
"""
exam_attempts/domain/session_data.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Версионированная полезная нагрузка ``session_data`` попытки.

Хранит снимок вопросов и seed перемешивания, зафиксированные при старте, и
произвольное состояние клиента для возобновления. Старые записи без поля
``version`` (``{"seed": ..., "question_ids": [...], ...}``) поднимаются до
версии 1 при чтении.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from exam_attempts.utils.exceptions import ValidationError

CURRENT_VERSION = 1


class SessionDataV1(BaseModel):
    """Снимок сессии попытки, версия 1."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    seed: Optional[int] = None
    question_ids: List[int] = Field(default_factory=list)
    client_state: Dict[str, Any] = Field(default_factory=dict)

    def with_client_state(self, extra: Dict[str, Any]) -> "SessionDataV1":
        """Возвращает копию с объединённым состоянием клиента."""
        merged = {**self.client_state, **extra}
        return self.model_copy(update={"client_state": merged})


SessionData = SessionDataV1

# Ключи, которые легаси-записи хранили на верхнем уровне
_LEGACY_SNAPSHOT_KEYS = ("seed", "question_ids", "version")


def load_session_data(raw: Optional[Dict[str, Any]]) -> SessionData:
    """
    Разбирает сохранённое значение ``session_data``.

    Args:
        raw: JSON из колонки ``session_data`` (может быть None)

    Returns:
        SessionData: Полезная нагрузка текущей версии
    """
    if not raw:
        return SessionDataV1()

    version = raw.get("version")
    if version == CURRENT_VERSION:
        return SessionDataV1.model_validate(raw)
    if version is not None:
        raise ValidationError(f"Неизвестная версия session_data: {version}")

    # Легаси: seed/question_ids на верхнем уровне, остальное: состояние клиента
    client_state = {k: v for k, v in raw.items() if k not in _LEGACY_SNAPSHOT_KEYS}
    legacy_ids = raw.get("question_ids") or raw.get("question_order") or []
    client_state.pop("question_order", None)
    return SessionDataV1(
        seed=raw.get("seed"),
        question_ids=[int(qid) for qid in legacy_ids],
        client_state=client_state,
    )


def dump_session_data(data: SessionData) -> Dict[str, Any]:
    """Сериализует полезную нагрузку для записи в JSON колонку."""
    return data.model_dump(mode="json")
