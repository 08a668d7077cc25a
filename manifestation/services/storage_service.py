"""
Manifestation — Storage service (SQLite boundary).

All reads and writes of the local database go through ``StorageService``,
which only uses the ``execute`` / ``select`` / ``transaction`` primitives of
``manifestation.database.Database``.  Statements are built with SQLAlchemy
Core against the tables in ``manifestation.models.tables``.  Errors from the
driver are not caught here; callers decide whether a failure is fatal
(writes from the questionnaire) or recoverable (history reads, surfaced as
``error``).
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

import structlog
from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from manifestation.database import Database
from manifestation.models.question import DEFAULT_CATEGORY
from manifestation.models.tables import (
    historical_responses,
    historical_sessions,
    questionnaire_responses,
    settings,
)
from manifestation.schemas.history import CategoryTrends, SessionResponse, SessionSummary, TrendPoint

logger = structlog.get_logger("manifestation.storage_service")

_NEWEST_FIRST = (historical_sessions.c.completed_at.desc(), historical_sessions.c.id.desc())

_RESPONSES_WITH_SESSION = historical_responses.join(
    historical_sessions, historical_sessions.c.id == historical_responses.c.session_id
)


def _last_active_key(session_id: str) -> str:
    return f"last_active_{session_id}"


class StorageService:
    """Typed access to sessions, responses, trends and draft answers."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ══════════════════════════════════════════════════════════════════════
    # Historical sessions — reads
    # ══════════════════════════════════════════════════════════════════════

    async def load_historical_sessions_page(self, offset: int, limit: int) -> list[SessionSummary]:
        """One page of sessions, most recent first."""
        stmt = select(historical_sessions).order_by(*_NEWEST_FIRST).limit(limit).offset(offset)
        rows = await self.db.select(stmt)
        return [SessionSummary.model_validate(row) for row in rows]

    async def count_historical_sessions(self) -> int:
        stmt = select(func.count().label("total")).select_from(historical_sessions)
        rows = await self.db.select(stmt)
        return int(rows[0]["total"]) if rows else 0

    async def load_historical_sessions(self) -> list[SessionSummary]:
        """Every session, most recent first (unpaginated)."""
        rows = await self.db.select(select(historical_sessions).order_by(*_NEWEST_FIRST))
        return [SessionSummary.model_validate(row) for row in rows]

    async def load_session_responses(self, session_id: str) -> list[SessionResponse]:
        stmt = (
            select(
                historical_responses.c.question_id,
                historical_responses.c.category,
                historical_responses.c.answer_value,
            )
            .where(historical_responses.c.session_id == session_id)
            .order_by(historical_responses.c.id.asc())
        )
        rows = await self.db.select(stmt)
        return [SessionResponse.model_validate(row) for row in rows]

    # ══════════════════════════════════════════════════════════════════════
    # Trends
    # ══════════════════════════════════════════════════════════════════════

    async def load_consolidated_category_trends(self) -> CategoryTrends:
        """Per-session category averages grouped by category.

        Values are rounded to 2 decimal places; points are ascending by date
        within each category.
        """
        stmt = (
            select(
                historical_sessions.c.completed_at.label("date"),
                historical_responses.c.category,
                func.avg(historical_responses.c.answer_value).label("score"),
            )
            .select_from(_RESPONSES_WITH_SESSION)
            .group_by(historical_sessions.c.id, historical_responses.c.category)
            .order_by(historical_sessions.c.completed_at.asc())
        )
        rows = await self.db.select(stmt)

        trends: CategoryTrends = {}
        for row in rows:
            trends.setdefault(row["category"], []).append(
                TrendPoint(date=row["date"], value=round(float(row["score"]), 2))
            )
        return trends

    async def load_category_trend(self, category: str) -> list[TrendPoint]:
        stmt = (
            select(
                historical_sessions.c.completed_at.label("date"),
                func.avg(historical_responses.c.answer_value).label("score"),
            )
            .select_from(_RESPONSES_WITH_SESSION)
            .where(historical_responses.c.category == category)
            .group_by(historical_sessions.c.id)
            .order_by(historical_sessions.c.completed_at.asc())
        )
        rows = await self.db.select(stmt)
        return [TrendPoint(date=row["date"], value=round(float(row["score"]), 2)) for row in rows]

    # ══════════════════════════════════════════════════════════════════════
    # Historical sessions — writes
    # ══════════════════════════════════════════════════════════════════════

    async def save_historical_session(
        self,
        total_score: float,
        answers: Mapping[str, int],
        duration_seconds: Optional[int] = None,
        notes: Optional[str] = None,
        categories: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Persist a completed session and one response row per answer.

        Everything is written in one transaction; on failure it is rolled
        back and the error re-raised.  Returns the new session id.
        """
        session_id = str(uuid.uuid4())
        categories = categories or {}
        log = logger.bind(session_id=session_id)

        try:
            async with self.db.transaction() as tx:
                await tx.execute(
                    insert(historical_sessions).values(
                        id=session_id,
                        completed_at=datetime.now(timezone.utc).isoformat(timespec="microseconds"),
                        total_score=total_score,
                        duration_seconds=duration_seconds,
                        notes=notes,
                        answers_snapshot=json.dumps(dict(answers), sort_keys=True),
                    )
                )
                for question_id, value in answers.items():
                    await tx.execute(
                        insert(historical_responses).values(
                            session_id=session_id,
                            question_id=question_id,
                            category=categories.get(question_id, DEFAULT_CATEGORY),
                            answer_value=value,
                        )
                    )
        except Exception:
            log.error("save_historical_session_rolled_back")
            raise

        log.info("historical_session_saved", n_responses=len(answers), total_score=total_score)
        return session_id

    async def delete_session(self, session_id: str) -> None:
        async with self.db.transaction() as tx:
            await tx.execute(
                delete(historical_responses).where(historical_responses.c.session_id == session_id)
            )
            await tx.execute(delete(historical_sessions).where(historical_sessions.c.id == session_id))
        logger.info("historical_session_deleted", session_id=session_id)

    async def delete_sessions(self, session_ids: Sequence[str]) -> None:
        ids = list(session_ids)
        if not ids:
            return
        async with self.db.transaction() as tx:
            await tx.execute(
                delete(historical_responses).where(historical_responses.c.session_id.in_(ids))
            )
            await tx.execute(delete(historical_sessions).where(historical_sessions.c.id.in_(ids)))
        logger.info("historical_sessions_deleted", count=len(ids))

    # ══════════════════════════════════════════════════════════════════════
    # Draft answers & session activity
    # ══════════════════════════════════════════════════════════════════════

    async def save_answer(self, session_id: str, question_id: str, value: int) -> None:
        stmt = sqlite_insert(questionnaire_responses).values(
            session_id=session_id, question_number=question_id, answer_value=value
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["session_id", "question_number"],
            set_={"answer_value": stmt.excluded.answer_value, "answered_at": func.current_timestamp()},
        )
        await self.db.execute(stmt)

    async def load_answers(self, session_id: str) -> dict[str, int]:
        stmt = select(
            questionnaire_responses.c.question_number, questionnaire_responses.c.answer_value
        ).where(questionnaire_responses.c.session_id == session_id)
        rows = await self.db.select(stmt)
        return {row["question_number"]: int(row["answer_value"]) for row in rows}

    async def clear_session(self, session_id: str) -> None:
        async with self.db.transaction() as tx:
            await tx.execute(
                delete(questionnaire_responses).where(questionnaire_responses.c.session_id == session_id)
            )
            await tx.execute(delete(settings).where(settings.c.key == _last_active_key(session_id)))

    async def get_last_active(self, session_id: str) -> Optional[int]:
        """Epoch milliseconds of the last recorded activity, or ``None``."""
        rows = await self.db.select(
            select(settings.c.value).where(settings.c.key == _last_active_key(session_id))
        )
        if not rows:
            return None
        try:
            return int(rows[0]["value"])
        except (TypeError, ValueError):
            return None

    async def update_last_active(self, session_id: str, now_ms: Optional[int] = None) -> None:
        value = now_ms if now_ms is not None else int(time.time() * 1000)
        stmt = sqlite_insert(settings).values(
            key=_last_active_key(session_id), value=str(value), updated_at=func.current_timestamp()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        await self.db.execute(stmt)
