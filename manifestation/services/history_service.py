"""
Manifestation — History store.

Keeps an in-memory, paginated view of the persisted sessions and their
category trends consistent with storage.

State handling:

- The store's state is a frozen ``HistoryState``.  Every operation computes a
  complete next state and assigns it in one step; nothing is mutated in place.
- An operation only ever assigns state built from its *own* settled storage
  result, so two overlapping calls can't interleave partial writes.  There is
  no cancellation: the call that resolves last wins.
- ``load_more_sessions`` extends the view it started from; if that view was
  replaced while its page was loading, the page is dropped.
- Listener errors are logged and never reach the caller.
- Mutations write through to storage and then refetch, so ``sessions``
  always reflects storage rather than an optimistic local patch.
- Storage failures are logged and surfaced through ``state.error``; they are
  never re-raised to the caller, and previously loaded data is kept.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol, Sequence

import structlog

from manifestation.config import get_settings
from manifestation.schemas.history import CategoryTrends, HistoryState, SessionSummary

logger = structlog.get_logger("manifestation.history_service")

Listener = Callable[[HistoryState], None]


class HistoryBackend(Protocol):
    """The storage operations the store depends on (see ``StorageService``)."""

    async def load_historical_sessions_page(self, offset: int, limit: int) -> list[SessionSummary]: ...

    async def count_historical_sessions(self) -> int: ...

    async def load_historical_sessions(self) -> list[SessionSummary]: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def delete_sessions(self, session_ids: Sequence[str]) -> None: ...

    async def load_consolidated_category_trends(self) -> CategoryTrends: ...


class HistoryStore:
    """Coordinates paginated reads, deletes and refetches of session history."""

    def __init__(self, backend: HistoryBackend, page_size: Optional[int] = None) -> None:
        self.backend = backend
        self.page_size = page_size or get_settings().HISTORY_PAGE_SIZE
        self._state = HistoryState()
        self._listeners: list[Listener] = []

    # ── Read-only surface ───────────────────────────────────────────

    @property
    def state(self) -> HistoryState:
        return self._state

    @property
    def sessions(self) -> tuple[SessionSummary, ...]:
        return self._state.sessions

    @property
    def trends(self) -> CategoryTrends:
        return self._state.trends

    @property
    def total_count(self) -> int:
        return self._state.total_count

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def has_more(self) -> bool:
        return self._state.has_more

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _replace(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as exc:
                logger.error("history_listener_failed", listener=repr(listener), error=str(exc))

    # ══════════════════════════════════════════════════════════════════════
    # Operations
    # ══════════════════════════════════════════════════════════════════════

    async def fetch_history(self) -> None:
        """Load page 1, the total count and all category trends."""
        self._replace(is_loading=True, error=None)
        try:
            sessions, total, trends = await asyncio.gather(
                self.backend.load_historical_sessions_page(0, self.page_size),
                self.backend.count_historical_sessions(),
                self.backend.load_consolidated_category_trends(),
            )
        except Exception as exc:
            logger.error("fetch_history_failed", error=str(exc))
            self._replace(is_loading=False, error=str(exc))
            return

        self._replace(
            sessions=tuple(sessions),
            trends=trends,
            total_count=total,
            is_loading=False,
        )
        logger.debug("fetch_history_complete", loaded=len(sessions), total=total)

    async def load_more_sessions(self) -> None:
        """Append the next page; a no-op when everything is already loaded."""
        if not self._state.has_more:
            return

        loaded = self._state.sessions
        try:
            page = await self.backend.load_historical_sessions_page(len(loaded), self.page_size)
        except Exception as exc:
            logger.error("load_more_sessions_failed", offset=len(loaded), error=str(exc))
            self._replace(error=str(exc))
            return

        if self._state.sessions is not loaded:
            # Another operation replaced the view while this page was in flight.
            logger.info("load_more_sessions_discarded", offset=len(loaded))
            return

        self._replace(sessions=loaded + tuple(page))

    async def delete_session(self, session_id: str) -> None:
        log = logger.bind(session_id=session_id)
        try:
            await self.backend.delete_session(session_id)
        except Exception as exc:
            log.error("delete_session_failed", error=str(exc))
            self._replace(is_loading=False, error=str(exc))
            return

        log.info("delete_session_refetch")
        await self.fetch_history()

    async def delete_sessions(self, session_ids: Sequence[str]) -> None:
        ids = list(session_ids)
        if not ids:
            return

        try:
            await self.backend.delete_sessions(ids)
        except Exception as exc:
            logger.error("delete_sessions_failed", count=len(ids), error=str(exc))
            self._replace(is_loading=False, error=str(exc))
            return

        logger.info("delete_sessions_refetch", count=len(ids))
        await self.fetch_history()

    async def fetch_all_sessions(self) -> list[SessionSummary]:
        """Every stored session, without touching the paginated ``sessions``.

        On failure ``error`` is set and an empty list is returned.
        """
        try:
            return await self.backend.load_historical_sessions()
        except Exception as exc:
            logger.error("fetch_all_sessions_failed", error=str(exc))
            self._replace(error=str(exc))
            return []
