"""
Manifestation — Question tree (static, read-only definitions).

A question is either a ``QuestionLeaf`` (rated 1-10, carries its own point
weight) or a ``QuestionGroup`` (its weight is realised entirely through its
``sub_points``).  Both are frozen so a tree can be shared and cached freely.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

DEFAULT_CATEGORY = "General"


class QuestionLeaf(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    id: str
    points: float = Field(ge=0)
    description: str = ""
    category: Optional[str] = None

    def __repr__(self) -> str:
        return f"<QuestionLeaf {self.id} points={self.points}>"


class QuestionGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["group"] = "group"
    id: str
    description: str = ""
    category: Optional[str] = None
    sub_points: tuple["Question", ...]

    def __repr__(self) -> str:
        return f"<QuestionGroup {self.id} children={len(self.sub_points)}>"


Question = Annotated[Union[QuestionLeaf, QuestionGroup], Field(discriminator="kind")]

QuestionGroup.model_rebuild()

_TREE_ADAPTER = TypeAdapter(tuple[Question, ...])


def _normalise(raw: dict[str, Any]) -> dict[str, Any]:
    """Accept the editor JSON shape (``subPoints`` / ``hasSubPoints``)."""
    children = raw.get("sub_points", raw.get("subPoints")) or []
    node = {k: v for k, v in raw.items() if k not in ("subPoints", "hasSubPoints", "sub_points")}
    if children:
        node["kind"] = "group"
        node.pop("points", None)
        node["sub_points"] = [_normalise(child) for child in children]
    else:
        node["kind"] = "leaf"
    return node


def parse_questions(raw: list[dict[str, Any]]) -> tuple[Question, ...]:
    """Validate a list of raw question dicts into an immutable tree."""
    return _TREE_ADAPTER.validate_python([_normalise(q) for q in raw])


def load_questions(path: Union[str, Path]) -> tuple[Question, ...]:
    """Load the question tree from a JSON file (a list of top-level questions)."""
    with open(path, encoding="utf-8") as f:
        return parse_questions(json.load(f))


def iter_leaves(questions: tuple[Question, ...]) -> Iterator[QuestionLeaf]:
    for q in questions:
        if isinstance(q, QuestionGroup):
            yield from iter_leaves(q.sub_points)
        else:
            yield q


def leaf_categories(
    questions: tuple[Question, ...],
    inherited: str = DEFAULT_CATEGORY,
) -> dict[str, str]:
    """Map every leaf id to its category.

    A node without its own ``category`` inherits the nearest ancestor's.
    """
    result: dict[str, str] = {}
    for q in questions:
        category = q.category or inherited
        if isinstance(q, QuestionGroup):
            result.update(leaf_categories(q.sub_points, category))
        else:
            result[q.id] = category
    return result
