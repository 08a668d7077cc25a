"""
Manifestation — Core table definitions.

Mirror the schema created by ``services/migration_service.py`` so the
storage service can build statements with the expression language.  The
DDL itself stays in the migrations; these objects are never used to
``create_all``.
"""

from sqlalchemy import Column, Float, ForeignKey, Integer, MetaData, String, Table, Text

metadata = MetaData()

questionnaire_responses = Table(
    "questionnaire_responses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String, nullable=False),
    Column("question_number", String, nullable=False),
    Column("answer_value", Integer, nullable=False),
    Column("answered_at", Text),
)

settings = Table(
    "settings",
    metadata,
    Column("key", String, primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", Text),
)

# ``completed_at`` is stored as ISO-8601 text and parsed by ``SessionSummary``.
historical_sessions = Table(
    "historical_sessions",
    metadata,
    Column("id", String, primary_key=True),
    Column("completed_at", Text),
    Column("total_score", Float, nullable=False),
    Column("duration_seconds", Integer),
    Column("notes", Text),
    Column("answers_snapshot", Text),
)

historical_responses = Table(
    "historical_responses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "session_id",
        String,
        ForeignKey("historical_sessions.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("question_id", String, nullable=False),
    Column("category", String, nullable=False),
    Column("answer_value", Integer, nullable=False),
)
