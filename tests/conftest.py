"""Shared pytest fixtures for Manifestation tests."""
import pytest
import pytest_asyncio

from manifestation.database import Database, build_engine
from manifestation.models.question import parse_questions
from manifestation.services.migration_service import run_migrations
from manifestation.services.storage_service import StorageService


@pytest.fixture
def raw_questions():
    """Question tree in the editor JSON shape: two groups and one plain leaf."""
    return [
        {
            "id": "1",
            "points": 500,
            "description": "Core vibration",
            "hasSubPoints": True,
            "category": "Core Vibration",
            "subPoints": [
                {"id": "1a", "points": 200, "description": "Gratitude", "hasSubPoints": False},
                {"id": "1b", "points": 300, "description": "Joy", "hasSubPoints": False},
            ],
        },
        {
            "id": "2",
            "points": 250,
            "description": "Clarity of intent",
            "hasSubPoints": False,
            "category": "Clarity",
        },
        {
            "id": "3",
            "points": 400,
            "description": "Aligned action",
            "hasSubPoints": True,
            "category": "Action",
            "subPoints": [
                {"id": "3a", "points": 150, "description": "Daily practice", "hasSubPoints": False},
                {
                    "id": "3b",
                    "points": 250,
                    "description": "Follow-through",
                    "hasSubPoints": True,
                    "subPoints": [
                        {"id": "3b-i", "points": 100, "description": "Plans", "hasSubPoints": False},
                        {"id": "3b-ii", "points": 150, "description": "Habits", "hasSubPoints": False},
                    ],
                },
            ],
        },
    ]


@pytest.fixture
def questions(raw_questions):
    return parse_questions(raw_questions)


@pytest.fixture
def leaf_ids():
    return ["1a", "1b", "2", "3a", "3b-i", "3b-ii"]


@pytest.fixture
def leaf_points():
    return {"1a": 200, "1b": 300, "2": 250, "3a": 150, "3b-i": 100, "3b-ii": 150}


@pytest_asyncio.fixture
async def db(tmp_path):
    """A migrated SQLite database in a temporary file."""
    database = Database(build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await run_migrations(database)
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def storage(db):
    return StorageService(db)
