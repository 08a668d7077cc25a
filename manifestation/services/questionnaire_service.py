"""
Manifestation — In-progress questionnaire.

Holds the answer sheet of the session being filled in, persists every
accepted answer as a draft, expires drafts left idle for longer than
``SESSION_TIMEOUT_MINUTES`` and, on completion, writes a historical session
scored by the scoring engine.
"""

from __future__ import annotations

import time
from typing import Optional

import structlog
from pydantic import ValidationError

from manifestation.config import get_settings
from manifestation.models.question import Question, leaf_categories
from manifestation.schemas.questionnaire import AnswerInput
from manifestation.services.scoring_service import ScoringService
from manifestation.services.storage_service import StorageService

logger = structlog.get_logger("manifestation.questionnaire_service")

DEFAULT_SESSION_ID = "default-session"


class QuestionnaireService:
    """Answer sheet + draft persistence for one questionnaire session."""

    def __init__(
        self,
        storage: StorageService,
        questions: tuple[Question, ...],
        session_id: str = DEFAULT_SESSION_ID,
        timeout_minutes: Optional[int] = None,
    ) -> None:
        self.storage = storage
        self.session_id = session_id
        self.scoring = ScoringService(questions)
        self.categories = leaf_categories(self.scoring.questions)
        self.timeout_ms = (timeout_minutes or get_settings().SESSION_TIMEOUT_MINUTES) * 60 * 1000
        self.answers: dict[str, int] = {}

    @property
    def score(self) -> float:
        return self.scoring.calculate_score(self.answers)

    @property
    def max_score(self) -> float:
        return self.scoring.get_max_possible_score()

    async def init(self) -> None:
        """Restore saved draft answers, or discard them if the session expired.

        A storage failure is logged and the session starts with an empty
        answer sheet.
        """
        log = logger.bind(session_id=self.session_id)
        now_ms = int(time.time() * 1000)

        try:
            last_active = await self.storage.get_last_active(self.session_id)
            if last_active is not None and now_ms - last_active > self.timeout_ms:
                log.info("session_expired", idle_ms=now_ms - last_active)
                await self.storage.clear_session(self.session_id)
                self.answers = {}
            else:
                self.answers = await self.storage.load_answers(self.session_id)
                log.info("draft_restored", n_answers=len(self.answers))

            await self.storage.update_last_active(self.session_id, now_ms)
        except Exception as exc:
            log.error("session_init_failed", error=str(exc))
            self.answers = {}

    async def set_answer(self, question_id: str, value: int) -> bool:
        """Record a rating; returns ``False`` when the input is rejected.

        Out-of-range values never reach the answer sheet.  A failed draft
        write is logged and the in-memory answer kept.
        """
        log = logger.bind(session_id=self.session_id, question_id=question_id)
        try:
            answer = AnswerInput(question_id=question_id, value=value)
        except ValidationError as exc:
            log.warning("answer_rejected", value=value, errors=exc.error_count())
            return False

        self.answers[answer.question_id] = answer.value
        try:
            await self.storage.save_answer(self.session_id, answer.question_id, answer.value)
            await self.storage.update_last_active(self.session_id)
        except Exception as exc:
            log.error("save_answer_failed", error=str(exc))
        return True

    async def complete(self, duration_seconds: Optional[int] = None, notes: Optional[str] = None) -> str:
        """Persist the finished session and clear the draft; returns its id."""
        total = self.score
        session_id = await self.storage.save_historical_session(
            total_score=total,
            answers=dict(self.answers),
            duration_seconds=duration_seconds,
            notes=notes,
            categories=self.categories,
        )
        await self.storage.clear_session(self.session_id)
        self.answers = {}
        logger.info(
            "questionnaire_completed",
            session_id=self.session_id,
            historical_id=session_id,
            total_score=round(total, 2),
        )
        return session_id
