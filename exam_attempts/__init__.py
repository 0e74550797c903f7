# -*- coding: utf-8 -*-
"""
exam_attempts
~~~~~~~~~~~~~
Жизненный цикл попыток прохождения аттестаций и учёт ответов студентов.
"""

__version__ = "0.1.0"
