"""
Manifestation — Hierarchical scoring engine.

Formula (per leaf question)::

    contribution = points * rating / 10

where ``rating`` is the answer for that leaf if it is a number in ``[1, 10]``
and ``1`` otherwise.  Groups contribute the sum of their children.

Boundary facts this produces:

- an empty answer sheet scores exactly 10% of the maximum,
- all leaves rated 10 score exactly the maximum,
- moving one leaf from ``r1`` to ``r2`` changes the total by
  ``points * (r2 - r1) / 10`` regardless of the other answers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable, Mapping

from manifestation.models.question import Question, QuestionGroup, QuestionLeaf

MIN_RATING: int = 1
MAX_RATING: int = 10
DEFAULT_RATING: int = MIN_RATING


def _rating_for(answers: Mapping[str, Any], leaf: QuestionLeaf) -> float:
    """Look up a leaf's rating, falling back to ``DEFAULT_RATING``."""
    rating = answers.get(leaf.id)
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return DEFAULT_RATING
    if not MIN_RATING <= rating <= MAX_RATING:
        return DEFAULT_RATING
    return rating


def _score_node(question: Question, answers: Mapping[str, Any]) -> float:
    if isinstance(question, QuestionGroup):
        return sum(_score_node(child, answers) for child in question.sub_points)
    return question.points * (_rating_for(answers, question) / MAX_RATING)


def _max_node(question: Question) -> float:
    if isinstance(question, QuestionGroup):
        return sum(_max_node(child) for child in question.sub_points)
    return question.points


def calculate_score(questions: Iterable[Question], answers: Mapping[str, Any]) -> float:
    """Return the weighted total for ``answers`` (raw float, no rounding)."""
    if not isinstance(answers, Mapping):
        answers = {}
    return sum(_score_node(q, answers) for q in questions)


@lru_cache(maxsize=8)
def _max_for_tree(questions: tuple[Question, ...]) -> float:
    return sum(_max_node(q) for q in questions)


def get_max_possible_score(questions: Iterable[Question]) -> float:
    """Sum of all leaf weights; cached per question tree."""
    return _max_for_tree(tuple(questions))


class ScoringService:
    """Scores answer sheets against one fixed question tree."""

    def __init__(self, questions: Iterable[Question]) -> None:
        self.questions: tuple[Question, ...] = tuple(questions)
        self.max_score: float = get_max_possible_score(self.questions)

    def calculate_score(self, answers: Mapping[str, Any]) -> float:
        return calculate_score(self.questions, answers)

    def get_max_possible_score(self) -> float:
        return self.max_score

    def percentage(self, answers: Mapping[str, Any]) -> float:
        """Score as a percentage of the maximum, rounded to 2 places."""
        if self.max_score == 0:
            return 0.0
        return round(self.calculate_score(answers) / self.max_score * 100, 2)
