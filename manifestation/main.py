"""
Manifestation — Application bootstrap

Wires the local data layer together for the presentation layer:

- structured logging configuration
- lazily-migrated database (migrations gate every other DB access)
- storage service, history store and in-progress questionnaire
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import structlog

from manifestation.config import get_settings
from manifestation.database import Database, close_db, get_db
from manifestation.models.question import Question, load_questions
from manifestation.services.history_service import HistoryStore
from manifestation.services.questionnaire_service import QuestionnaireService
from manifestation.services.storage_service import StorageService

logger = structlog.get_logger("manifestation")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog for JSON output filtered at ``LOG_LEVEL``."""
    level_name = (level or get_settings().LOG_LEVEL).upper()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class AppContext:
    db: Database
    storage: StorageService
    history: HistoryStore
    questionnaire: QuestionnaireService


async def startup(questions: Optional[tuple[Question, ...]] = None) -> AppContext:
    """Migrate the database and build the services.

    A migration failure propagates: the application must not run on an
    unmigrated schema.
    """
    settings = get_settings()
    logger.info("startup_begin", environment=settings.ENVIRONMENT, log_level=settings.LOG_LEVEL)

    db = await get_db()
    storage = StorageService(db)

    if questions is None:
        questions = load_questions(settings.QUESTIONS_FILE)

    history = HistoryStore(storage, page_size=settings.HISTORY_PAGE_SIZE)
    questionnaire = QuestionnaireService(storage, questions)
    await questionnaire.init()

    logger.info("startup_complete", n_questions=len(questions))
    return AppContext(db=db, storage=storage, history=history, questionnaire=questionnaire)


async def shutdown() -> None:
    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")
