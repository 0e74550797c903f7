# -*- coding: utf-8 -*-
"""
Unit тесты автоматической проверки ответов
"""

import pytest

from exam_attempts.domain.enums import QuestionType
from exam_attempts.service.grading import auto_grade, percentage_of
from exam_attempts.utils.text_comparison import (best_text_match,
                                                 calculate_similarity,
                                                 normalize_text)


class TestAutoGrade:
    @pytest.mark.parametrize(
        "value, expected",
        [("B", (True, 2.0)), ("C", (False, 0.0)), (["B"], (True, 2.0))],
    )
    def test_single_choice(self, value, expected):
        assert auto_grade(QuestionType.SINGLE_CHOICE, "B", value, 2.0) == expected

    def test_multiple_choice_requires_exact_set(self):
        correct = ["A", "C"]

        assert auto_grade(QuestionType.MULTIPLE_CHOICE, correct, ["C", "A"], 3) == (
            True,
            3.0,
        )
        assert auto_grade(QuestionType.MULTIPLE_CHOICE, correct, ["A"], 3) == (
            False,
            0.0,
        )
        assert auto_grade(QuestionType.MULTIPLE_CHOICE, correct, [], 3) == (False, 0.0)

    def test_true_false_accepts_strings(self):
        assert auto_grade(QuestionType.TRUE_FALSE, True, "true", 1) == (True, 1.0)
        assert auto_grade(QuestionType.TRUE_FALSE, False, True, 1) == (False, 0.0)

    def test_short_answer_fuzzy(self):
        """Короткий ответ сверяется нечётко, с учётом регистра и пунктуации"""
        accepted = ["Фотосинтез", "photosynthesis"]

        assert auto_grade(QuestionType.SHORT_ANSWER, accepted, "фотосинтез!", 1)[0]
        assert auto_grade(QuestionType.SHORT_ANSWER, accepted, "Photosyntesis", 1)[0]
        assert not auto_grade(QuestionType.SHORT_ANSWER, accepted, "дыхание", 1)[0]

    def test_open_text_not_auto_graded(self):
        assert auto_grade(QuestionType.OPEN_TEXT, "эталон", "ответ", 5) == (None, None)

    def test_missing_correct_answer_not_graded(self):
        assert auto_grade(QuestionType.SINGLE_CHOICE, None, "A", 1) == (None, None)


class TestTextComparison:
    def test_normalize(self):
        assert normalize_text("  Привет,   МИР! ") == "привет мир"

    def test_similarity_bounds(self):
        assert calculate_similarity("abc", "abc") == 1.0
        assert calculate_similarity("", "abc") == 0.0

    def test_best_match_threshold(self):
        is_correct, similarity = best_text_match("кошка", ["собака"])

        assert not is_correct
        assert similarity < 0.8


def test_percentage_of():
    assert percentage_of(3, 4) == 75.0
    assert percentage_of(5, 0) == 0.0
    assert percentage_of(10, 4) == 100.0
