"""
Manifestation — Versioned schema migrations.

``run_migrations`` brings a fresh or older local database to the current
schema.  It is idempotent and safe to call on every startup:

  1. Ensure the ``_migrations`` tracking table exists.
  2. Read the ids of the migrations already applied.
  3. For every pending step, in ascending id order, execute its statements
     and then record it in ``_migrations``.

Steps have no rollback: if a statement fails the step is not recorded, no
later step runs, and the underlying exception propagates.  A retry re-runs the
failed step from its first statement, so every statement is guarded with
``IF NOT EXISTS``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from manifestation.database import SqlExecutor

logger = structlog.get_logger("manifestation.migration_service")

CREATE_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS _migrations (
  id INTEGER PRIMARY KEY,
  name TEXT NOT NULL,
  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

SELECT_APPLIED = "SELECT id FROM _migrations"

INSERT_APPLIED = "INSERT INTO _migrations (id, name) VALUES (:id, :name)"


@dataclass(frozen=True)
class Migration:
    id: int
    name: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        id=1,
        name="initial_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS stats (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              completion_date TEXT NOT NULL,
              total_score REAL NOT NULL,
              created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS questionnaire_responses (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              session_id TEXT NOT NULL,
              question_number TEXT NOT NULL,
              answer_value INTEGER NOT NULL,
              answered_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              UNIQUE(session_id, question_number)
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """,
        ),
    ),
    Migration(
        id=2,
        name="historical_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS historical_sessions (
              id TEXT PRIMARY KEY,
              completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              total_score REAL NOT NULL,
              duration_seconds INTEGER,
              notes TEXT,
              answers_snapshot TEXT
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS historical_responses (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              session_id TEXT NOT NULL,
              question_id TEXT NOT NULL,
              category TEXT NOT NULL,
              answer_value INTEGER NOT NULL,
              FOREIGN KEY(session_id) REFERENCES historical_sessions(id) ON DELETE CASCADE
            );
            """,
            "CREATE INDEX IF NOT EXISTS idx_sessions_completed ON historical_sessions(completed_at);",
            "CREATE INDEX IF NOT EXISTS idx_responses_qid ON historical_responses(question_id);",
        ),
    ),
    Migration(
        id=3,
        name="optimized_indexes",
        statements=(
            "CREATE INDEX IF NOT EXISTS idx_responses_session_id ON historical_responses(session_id);",
            "CREATE INDEX IF NOT EXISTS idx_responses_category ON historical_responses(category);",
        ),
    ),
)


async def run_migrations(
    db: SqlExecutor,
    migrations: tuple[Migration, ...] = MIGRATIONS,
) -> list[int]:
    """Apply every pending migration and return the ids applied by this call.

    Each step emits ``migration_applying`` before and ``migration_applied``
    after it runs, or ``migration_failed`` (with ``phase="failure"``) before
    the error is re-raised unchanged.
    """
    await db.execute(CREATE_TRACKING_TABLE)

    applied_rows = await db.select(SELECT_APPLIED)
    applied_ids = {int(row["id"]) for row in applied_rows}

    newly_applied: list[int] = []
    for migration in sorted(migrations, key=lambda m: m.id):
        if migration.id in applied_ids:
            continue

        log = logger.bind(migration_id=migration.id, name=migration.name)
        log.info("migration_applying", phase="start")
        try:
            for statement in migration.statements:
                await db.execute(statement)
            await db.execute(INSERT_APPLIED, {"id": migration.id, "name": migration.name})
        except Exception as exc:
            log.error("migration_failed", phase="failure", error=str(exc))
            raise
        log.info("migration_applied", phase="success")
        newly_applied.append(migration.id)

    return newly_applied
