"""
Модуль для сравнения текстовых ответов с учетом различных вариантов написания
"""

import re
from difflib import SequenceMatcher
from typing import Iterable, Tuple

DEFAULT_THRESHOLD = 0.8


def normalize_text(text: str) -> str:
    """
    Нормализует текст для сравнения:
    - Приводит к нижнему регистру
    - Убирает знаки препинания и множественные пробелы
    """
    if not text:
        return ""

    text = str(text).lower().strip()
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Вычисляет схожесть между двумя текстами (0.0 - 1.0)
    """
    norm1 = normalize_text(text1)
    norm2 = normalize_text(text2)
    if not norm1 or not norm2:
        return 0.0
    if norm1 == norm2:
        return 1.0
    return SequenceMatcher(None, norm1, norm2).ratio()


def best_text_match(
    user_answer: str, accepted: Iterable[str], threshold: float = DEFAULT_THRESHOLD
) -> Tuple[bool, float]:
    """
    Сверяет ответ со списком допустимых вариантов.

    Args:
        user_answer: Ответ студента
        accepted: Допустимые варианты ответа
        threshold: Порог схожести (0.0 - 1.0)

    Returns:
        Tuple[bool, float]: (is_correct, best_similarity)
    """
    best = 0.0
    for candidate in accepted:
        best = max(best, calculate_similarity(user_answer, candidate))
        if best == 1.0:
            break
    return best >= threshold, best
