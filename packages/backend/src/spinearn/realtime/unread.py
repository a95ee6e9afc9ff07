"""Unread-count synchronizer — keeps one user's unread badge current.

Learn: Push/pull reconciliation against a table other people mutate:
1. Pull — count admin_messages rows with user_id = me AND read = false
2. Push — subscribe to the change feed for (admin_messages, me); every
   notification triggers another full pull

Notifications are treated as "something changed" only. Applying deltas
would mean re-evaluating read = false for rows we never loaded, so we
always re-count.

Every pull takes a sequence number. A response is applied only when it is
newer than the last applied one, so two overlapping pulls can never roll
the count back. Responses that land after an identity change or close()
are dropped without touching state or listeners.
"""

import asyncio
import functools
from typing import Awaitable, Callable, Optional

import structlog

from spinearn.realtime.change_feed import ChangeEvent, ChangeFeed, Subscription

logger = structlog.get_logger()

CountQuery = Callable[[str], Awaitable[Optional[int]]]
CountListener = Callable[[int], None]

_MAX_BACKOFF_EXPONENT = 16


class SynchronizerClosedError(RuntimeError):
    """Raised when a closed synchronizer is asked to sign in again."""


class UnreadCountSynchronizer:
    """Observable unread count for whichever identity is signed in.

    Single writer (this object), many readers (listeners). All state is
    in memory and rebuilt from the table on every pull.
    """

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
        self._feed = feed
        self._count_query = count_query
        self._table = table
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._keep_last_on_error = keep_last_on_error

        self._count = 0
        self._identity: Optional[str] = None
        self._generation = 0
        self._issued = 0
        self._applied = 0
        self._closed = False

        self._subscription: Optional[Subscription] = None
        self._subscribe_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[CountListener] = []

    # ─── Read side ────────────────────────────────────────

    @property
    def count(self) -> int:
        return self._count

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def add_listener(self, listener: CountListener) -> Callable[[], None]:
        """Call listener(count) on every change. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ─── Lifecycle ────────────────────────────────────────

    async def set_identity(self, user_id: Optional[str]) -> None:
        """Sign in (pull + subscribe) or sign out (reset to 0, unsubscribe).

        Returns without waiting for the pull or the subscription; use
        wait_idle() to block until they finish.
        """
        if self._closed:
            raise SynchronizerClosedError("Synchronizer is closed")

        user_id = str(user_id) if user_id is not None else None
        if user_id == self._identity:
            return

        self._identity = user_id
        self._generation += 1
        generation = self._generation

        # The previous identity's count must not leak into the new one.
        self._set_count(0)
        await self._teardown_subscription()
        if generation != self._generation or user_id is None:
            return

        logger.info("unread.identity_changed", user_id=user_id)
        self._spawn(self._pull(generation))
        self._subscribe_task = self._spawn(self._subscribe(generation, user_id))

    async def refresh(self) -> int:
        """Re-pull now and return the resulting count."""
        if not self._closed:
            if self._identity is None:
                self._set_count(0)
            else:
                await self._pull(self._generation)
        return self._count

    async def close(self) -> None:
        """Tear down the subscription. In-flight pulls finish but are ignored."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        await self._teardown_subscription()
        self._listeners.clear()
        logger.debug("unread.closed", user_id=self._identity)

    async def wait_idle(self) -> None:
        """Wait for every background pull and subscribe attempt to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─── Internals ────────────────────────────────────────

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _set_count(self, value: int) -> None:
        if value == self._count:
            return
        self._count = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("unread.listener_failed", user_id=self._identity)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _teardown_subscription(self) -> None:
        task, self._subscribe_task = self._subscribe_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()

    def _on_change(self, generation: int, event: ChangeEvent) -> None:
        if not self._is_current(generation):
            return
        logger.debug("unread.change_received", user_id=event.user_id, op=event.op)
        self._spawn(self._pull(generation))

    async def _subscribe(self, generation: int, user_id: str) -> None:
        attempt = 0
        while True:
            try:
                subscription = await self._feed.subscribe(
                    self._table,
                    user_id,
                    functools.partial(self._on_change, generation),
                )
                break
            except Exception as e:
                delay = min(
                    self._backoff_initial * 2 ** min(attempt, _MAX_BACKOFF_EXPONENT),
                    self._backoff_max,
                )
                attempt += 1
                logger.warning(
                    "unread.subscribe_failed",
                    user_id=user_id,
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
                if not self._is_current(generation):
                    return

        if not self._is_current(generation):
            await subscription.unsubscribe()
            return

        self._subscription = subscription
        logger.info("unread.subscribed", user_id=user_id, attempts=attempt + 1)

        # Changes made while we were retrying were never pushed to us.
        if attempt:
            await self._pull(generation)

    async def _pull(self, generation: int) -> None:
        user_id = self._identity
        if user_id is None or not self._is_current(generation):
            return

        self._issued += 1
        seq = self._issued
        try:
            count = await self._count_query(user_id)
        except Exception as e:
            logger.warning("unread.pull_failed", user_id=user_id, seq=seq, error=str(e))
            count = None

        if not self._is_current(generation):
            logger.debug("unread.pull_discarded", user_id=user_id, seq=seq, reason="stale_identity")
            return
        if seq < self._applied:
            logger.debug("unread.pull_discarded", user_id=user_id, seq=seq, reason="out_of_order")
            return
        self._applied = seq

        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            if self._keep_last_on_error:
                return
            count = 0
        self._set_count(count)
