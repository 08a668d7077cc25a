"""
Manifestation — model registry (question tree and Core tables).
"""

from manifestation.models.question import (
    Question,
    QuestionGroup,
    QuestionLeaf,
    iter_leaves,
    leaf_categories,
    load_questions,
    parse_questions,
)
from manifestation.models.tables import (
    historical_responses,
    historical_sessions,
    metadata,
    questionnaire_responses,
    settings,
)

__all__ = [
    "Question",
    "QuestionGroup",
    "QuestionLeaf",
    "iter_leaves",
    "leaf_categories",
    "load_questions",
    "parse_questions",
    "metadata",
    "questionnaire_responses",
    "settings",
    "historical_sessions",
    "historical_responses",
]
