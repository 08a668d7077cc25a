"""End-to-end flow: startup -> questionnaire -> history -> trends -> delete.

Runs the real services against a temporary SQLite file.
"""
import pytest
import structlog

from manifestation.config import get_settings
from manifestation.main import configure_logging, shutdown, startup
from manifestation.services.trend_service import detect_category_trends, detect_trend


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'e2e.db'}")
    monkeypatch.setenv("HISTORY_PAGE_SIZE", "2")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestFullFlow:
    @pytest.mark.asyncio
    async def test_complete_sessions_and_browse_history(self, app_env, questions):
        app = await startup(questions)
        try:
            for rating in (3, 5, 7, 9):
                for leaf in ("1a", "1b", "2"):
                    assert await app.questionnaire.set_answer(leaf, rating)
                assert await app.questionnaire.set_answer("3a", 0) is False
                await app.questionnaire.complete(duration_seconds=60)

            history = app.history
            await history.fetch_history()
            assert history.error is None
            assert history.total_count == 4
            assert len(history.sessions) == 2
            assert history.has_more

            await history.load_more_sessions()
            assert len(history.sessions) == 4
            assert not history.has_more
            scores = [s.total_score for s in history.sessions]
            assert scores == sorted(scores, reverse=True)

            labels = detect_category_trends(history.trends)
            assert labels["Core Vibration"] == "improving"
            assert labels["Clarity"] == "improving"
            assert detect_trend(list(reversed(scores))) == "improving"

            newest, oldest = history.sessions[0], history.sessions[-1]
            await history.delete_sessions([newest.id, oldest.id])
            assert history.total_count == 2
            assert {s.id for s in history.sessions}.isdisjoint({newest.id, oldest.id})

            everything = await history.fetch_all_sessions()
            assert len(everything) == 2
            assert len(history.sessions) == 2
        finally:
            await shutdown()

    def test_configure_logging_accepts_unknown_level(self):
        try:
            configure_logging("NOT-A-LEVEL")
            configure_logging("DEBUG")
            assert structlog.is_configured()
        finally:
            structlog.reset_defaults()
