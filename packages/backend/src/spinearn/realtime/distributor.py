"""Unread distributor — one synchronizer per signed-in user per app instance.

Learn: Every browser tab that shows the unread badge is a consumer. Without
sharing, ten tabs for one user would mean ten change-feed subscriptions and
ten count queries per notification. The distributor hands out the same
UnreadCountSynchronizer to every consumer of a user and reference-counts
them; the last release closes it and tears down its subscription.

The distributor is built once at the application root and stored on
app.state. Routes reach it through get_unread_distributor(), which fails
loudly when the app was wired without one.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import structlog
from starlette.requests import HTTPConnection

from spinearn.realtime.change_feed import ChangeFeed
from spinearn.realtime.unread import CountQuery, UnreadCountSynchronizer

logger = structlog.get_logger()


class DistributorNotInstalledError(RuntimeError):
    """The app was built without an UnreadDistributor (programming error)."""


@dataclass
class _Entry:
    synchronizer: UnreadCountSynchronizer
    refs: int = 0


class UnreadDistributor:
    """Shares per-user synchronizers between consumers."""

    def __init__(
        self,
        feed: ChangeFeed,
        count_query: CountQuery,
        *,
        table: str = "admin_messages",
        backoff_initial: float = 0.5,
        backoff_max: float = 30.0,
        keep_last_on_error: bool = False,
    ):
        self.feed = feed
        self.count_query = count_query
        self._sync_options = {
            "table": table,
            "backoff_initial": backoff_initial,
            "backoff_max": backoff_max,
            "keep_last_on_error": keep_last_on_error,
        }
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, user_id: str) -> UnreadCountSynchronizer:
        """Get the user's live synchronizer, starting it on first use."""
        user_id = str(user_id)
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                sync = UnreadCountSynchronizer(
                    self.feed, self.count_query, **self._sync_options
                )
                await sync.set_identity(user_id)
                entry = _Entry(synchronizer=sync)
                self._entries[user_id] = entry
                logger.info("unread.distributor_started", user_id=user_id)
            entry.refs += 1
            return entry.synchronizer

    async def release(self, user_id: str) -> None:
        """Drop one reference; the last one closes the synchronizer."""
        user_id = str(user_id)
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return
            entry.refs -= 1
            if entry.refs > 0:
                return
            del self._entries[user_id]
        await entry.synchronizer.close()
        logger.info("unread.distributor_stopped", user_id=user_id)

    @asynccontextmanager
    async def lease(self, user_id: str) -> AsyncIterator[UnreadCountSynchronizer]:
        sync = await self.acquire(user_id)
        try:
            yield sync
        finally:
            await self.release(user_id)

    def peek(self, user_id: str) -> Optional[UnreadCountSynchronizer]:
        """Live synchronizer for user_id without taking a reference."""
        entry = self._entries.get(str(user_id))
        return entry.synchronizer if entry else None

    def stats(self) -> dict:
        return {
            "users": len(self._entries),
            "consumers": sum(e.refs for e in self._entries.values()),
            "subscriptions": self.feed.subscriber_count(),
        }

    async def close(self) -> None:
        """Close every synchronizer (app shutdown)."""
        async with self._lock:
            entries, self._entries = list(self._entries.values()), {}
        for entry in entries:
            await entry.synchronizer.close()


def get_unread_distributor(conn: HTTPConnection) -> UnreadDistributor:
    """FastAPI dependency — the app-wide distributor.

    Works for both HTTP requests and WebSockets. Raises
    DistributorNotInstalledError if create_app() never installed one.
    """
    distributor = getattr(conn.app.state, "unread", None)
    if distributor is None:
        raise DistributorNotInstalledError(
            "get_unread_distributor() must be used inside an app created "
            "with an UnreadDistributor (see spinearn.main.create_app)"
        )
    return distributor


class UnreadSession:
    """One consumer's view: tracks its own identity, shares the synchronizer.

    Learn: A WebSocket can sign in, sign out, or switch users mid-connection.
    The session releases the old user's lease and acquires the new one, and
    forwards every count change to its sink.
    """

    def __init__(self, distributor: UnreadDistributor, sink: Callable[[int], None]):
        self.distributor = distributor
        self._sink = sink
        self._user_id: Optional[str] = None
        self._sync: Optional[UnreadCountSynchronizer] = None
        self._remove_listener: Optional[Callable[[], None]] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def count(self) -> int:
        return self._sync.count if self._sync else 0

    async def set_identity(self, user_id: Optional[str]) -> None:
        user_id = str(user_id) if user_id is not None else None
        if user_id == self._user_id:
            return
        await self._detach()
        self._user_id = user_id
        if user_id is None:
            self._sink(0)
            return
        self._sync = await self.distributor.acquire(user_id)
        self._remove_listener = self._sync.add_listener(self._sink)
        self._sink(self._sync.count)

    async def refresh(self) -> int:
        if self._sync is None:
            return 0
        return await self._sync.refresh()

    async def close(self) -> None:
        await self._detach()
        self._user_id = None

    async def _detach(self) -> None:
        if self._remove_listener:
            self._remove_listener()
            self._remove_listener = None
        if self._sync is not None:
            self._sync = None
            await self.distributor.release(self._user_id)
