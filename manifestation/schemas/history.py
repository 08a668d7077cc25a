from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionSummary(BaseModel):
    """One completed questionnaire session as stored in ``historical_sessions``."""

    model_config = ConfigDict(frozen=True)

    id: str
    completed_at: datetime
    total_score: float
    duration_seconds: Optional[int] = None
    notes: Optional[str] = None
    answers_snapshot: Optional[str] = None

    def answers(self) -> dict[str, int]:
        """Decode ``answers_snapshot``; an absent or corrupt snapshot is empty."""
        if not self.answers_snapshot:
            return {}
        try:
            decoded = json.loads(self.answers_snapshot)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}


class SessionResponse(BaseModel):
    question_id: str
    category: str
    answer_value: int = Field(ge=1, le=10)


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: datetime
    value: float


CategoryTrends = dict[str, list[TrendPoint]]


class HistoryState(BaseModel):
    """Snapshot exposed by ``HistoryStore``; replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    sessions: tuple[SessionSummary, ...] = ()
    trends: CategoryTrends = Field(default_factory=dict)
    total_count: int = 0
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return len(self.sessions) < self.total_count
