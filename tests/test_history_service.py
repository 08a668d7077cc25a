"""Unit tests for HistoryStore — paginated view, deletes and refetch."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from manifestation.schemas.history import SessionSummary, TrendPoint
from manifestation.services.history_service import HistoryStore

PAGE_SIZE = 2


def make_session(session_id, days_ago=1, score=5000.0):
    return SessionSummary(
        id=session_id,
        completed_at=datetime(2024, 6, 30, tzinfo=timezone.utc) - timedelta(days=days_ago),
        total_score=score,
        duration_seconds=60,
        answers_snapshot="{}",
    )


SESSION_A = make_session("session-a", 1)
SESSION_B = make_session("session-b", 2)
SESSION_C = make_session("session-c", 3)
ALL_SESSIONS = [SESSION_A, SESSION_B, SESSION_C]
TRENDS = {"Health": [TrendPoint(date=SESSION_C.completed_at, value=7.5)]}


@pytest.fixture
def backend():
    mock = MagicMock()

    async def _page(offset, limit):
        return ALL_SESSIONS[offset:offset + limit]

    mock.load_historical_sessions_page = AsyncMock(side_effect=_page)
    mock.count_historical_sessions = AsyncMock(return_value=len(ALL_SESSIONS))
    mock.load_historical_sessions = AsyncMock(return_value=list(ALL_SESSIONS))
    mock.load_consolidated_category_trends = AsyncMock(return_value=TRENDS)
    mock.delete_session = AsyncMock(return_value=None)
    mock.delete_sessions = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def store(backend):
    return HistoryStore(backend, page_size=PAGE_SIZE)


class TestInitialState:
    def test_empty(self, store):
        assert store.sessions == ()
        assert store.trends == {}
        assert store.total_count == 0
        assert store.is_loading is False
        assert store.error is None
        assert store.has_more is False


class TestFetchHistory:
    @pytest.mark.asyncio
    async def test_populates_first_page_count_and_trends(self, store, backend):
        await store.fetch_history()
        assert store.sessions == (SESSION_A, SESSION_B)
        assert store.total_count == 3
        assert store.trends == TRENDS
        assert store.error is None
        assert store.is_loading is False
        assert store.has_more == (len(store.sessions) < store.total_count)
        backend.load_historical_sessions_page.assert_awaited_once_with(0, PAGE_SIZE)

    @pytest.mark.asyncio
    async def test_is_loading_during_fetch(self, store, backend):
        gate = asyncio.Event()

        async def _slow_count():
            await gate.wait()
            return 3

        backend.count_historical_sessions.side_effect = _slow_count
        task = asyncio.create_task(store.fetch_history())
        await asyncio.sleep(0)
        assert store.is_loading is True
        gate.set()
        await task
        assert store.is_loading is False

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_data(self, store, backend):
        await store.fetch_history()
        before = store.state

        backend.load_consolidated_category_trends.side_effect = RuntimeError("DB read error")
        await store.fetch_history()

        assert "DB read error" in store.error
        assert store.is_loading is False
        assert store.sessions == before.sessions
        assert store.trends == before.trends
        assert store.total_count == before.total_count

    @pytest.mark.asyncio
    async def test_clears_previous_error(self, store, backend):
        backend.count_historical_sessions.side_effect = [RuntimeError("first fail"), 3]
        await store.fetch_history()
        assert store.error is not None
        await store.fetch_history()
        assert store.error is None

    @pytest.mark.asyncio
    async def test_last_resolved_wins(self, store, backend):
        """No cancellation: a slow earlier fetch overwrites a faster later one."""
        slow_gate = asyncio.Event()
        calls = {"n": 0}

        async def _page(offset, limit):
            calls["n"] += 1
            if calls["n"] == 1:
                await slow_gate.wait()
                return [SESSION_C]
            return [SESSION_A]

        backend.load_historical_sessions_page.side_effect = _page
        first = asyncio.create_task(store.fetch_history())
        await asyncio.sleep(0)
        await store.fetch_history()
        assert store.sessions == (SESSION_A,)

        slow_gate.set()
        await first
        assert store.sessions == (SESSION_C,)


class TestLoadMore:
    @pytest.mark.asyncio
    async def test_appends_next_page(self, store, backend):
        await store.fetch_history()
        await store.load_more_sessions()
        assert store.sessions == tuple(ALL_SESSIONS)
        assert store.has_more is False
        backend.load_historical_sessions_page.assert_awaited_with(2, PAGE_SIZE)

    @pytest.mark.asyncio
    async def test_noop_without_more(self, store, backend):
        await store.load_more_sessions()
        backend.load_historical_sessions_page.assert_not_awaited()

        await store.fetch_history()
        await store.load_more_sessions()
        state = store.state
        backend.load_historical_sessions_page.reset_mock()
        await store.load_more_sessions()
        backend.load_historical_sessions_page.assert_not_awaited()
        assert store.state is state

    @pytest.mark.asyncio
    async def test_failure_leaves_sessions(self, store, backend):
        await store.fetch_history()
        backend.load_historical_sessions_page.side_effect = RuntimeError("page read failed")
        await store.load_more_sessions()
        assert store.sessions == (SESSION_A, SESSION_B)
        assert "page read failed" in store.error

    @pytest.mark.asyncio
    async def test_page_dropped_when_view_replaced_meanwhile(self, store, backend):
        """A delete that refetches during load-more must not be undone by the late page."""
        await store.fetch_history()
        gate = asyncio.Event()
        remaining = list(ALL_SESSIONS)

        async def _page(offset, limit):
            if offset == 2:
                await gate.wait()
                return [SESSION_C]
            return remaining[offset:offset + limit]

        backend.load_historical_sessions_page.side_effect = _page
        pending = asyncio.create_task(store.load_more_sessions())
        await asyncio.sleep(0)

        remaining[:] = [SESSION_C]
        backend.count_historical_sessions.return_value = 1
        await store.delete_sessions(["session-a", "session-b"])
        assert store.sessions == (SESSION_C,)

        gate.set()
        await pending
        assert store.sessions == (SESSION_C,)
        assert store.total_count == 1
        assert len(store.sessions) <= store.total_count
        assert store.has_more is False


class TestDeleteSession:
    @pytest.mark.asyncio
    async def test_deletes_then_refetches_once(self, store, backend):
        await store.fetch_history()
        remaining = [SESSION_B, SESSION_C]

        async def _page(offset, limit):
            return remaining[offset:offset + limit]

        backend.load_historical_sessions_page.reset_mock()
        backend.load_historical_sessions_page.side_effect = _page
        backend.count_historical_sessions.return_value = 2

        await store.delete_session("session-a")

        backend.delete_session.assert_awaited_once_with("session-a")
        backend.load_historical_sessions_page.assert_awaited_once_with(0, PAGE_SIZE)
        assert store.sessions == (SESSION_B, SESSION_C)
        assert store.total_count == 2
        assert store.error is None

    @pytest.mark.asyncio
    async def test_failure_skips_refetch_and_keeps_sessions(self, store, backend):
        await store.fetch_history()
        before = store.sessions
        backend.load_historical_sessions_page.reset_mock()
        backend.delete_session.side_effect = RuntimeError("DB delete error")

        await store.delete_session("bad-id")

        assert store.sessions == before
        assert "DB delete error" in store.error
        assert store.is_loading is False
        backend.load_historical_sessions_page.assert_not_awaited()


class TestDeleteSessions:
    @pytest.mark.asyncio
    async def test_empty_ids_noop(self, store, backend):
        state = store.state
        await store.delete_sessions([])
        backend.delete_sessions.assert_not_awaited()
        backend.load_historical_sessions_page.assert_not_awaited()
        backend.count_historical_sessions.assert_not_awaited()
        assert store.state is state

    @pytest.mark.asyncio
    async def test_bulk_delete_then_refetch(self, store, backend):
        await store.delete_sessions(["session-a", "session-b"])
        backend.delete_sessions.assert_awaited_once_with(["session-a", "session-b"])
        backend.load_historical_sessions_page.assert_awaited_once_with(0, PAGE_SIZE)

    @pytest.mark.asyncio
    async def test_bulk_failure(self, store, backend):
        await store.fetch_history()
        before = store.sessions
        backend.load_historical_sessions_page.reset_mock()
        backend.delete_sessions.side_effect = RuntimeError("bulk delete error")

        await store.delete_sessions(["session-a", "session-b"])

        assert "bulk delete error" in store.error
        assert store.sessions == before
        backend.load_historical_sessions_page.assert_not_awaited()


class TestFetchAllSessions:
    @pytest.mark.asyncio
    async def test_returns_full_list_without_touching_page(self, store, backend):
        await store.fetch_history()
        state = store.state
        result = await store.fetch_all_sessions()
        assert result == ALL_SESSIONS
        assert store.state is state

    @pytest.mark.asyncio
    async def test_failure_sets_error(self, store, backend):
        backend.load_historical_sessions.side_effect = RuntimeError("export read failed")
        assert await store.fetch_all_sessions() == []
        assert "export read failed" in store.error


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_listener_sees_each_state(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        await store.fetch_history()
        assert [s.is_loading for s in seen] == [True, False]
        assert seen[-1].sessions == (SESSION_A, SESSION_B)

        unsubscribe()
        await store.fetch_history()
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_escape(self, store):
        def _broken(state):
            raise RuntimeError("listener blew up")

        seen = []
        store.subscribe(_broken)
        store.subscribe(seen.append)

        await store.fetch_history()
        assert store.sessions == (SESSION_A, SESSION_B)
        assert store.is_loading is False
        assert len(seen) == 2

        await store.delete_session("session-a")
        assert store.error is None
