"""Change feed — PostgreSQL LISTEN/NOTIFY fanned out to per-user subscribers.

Learn: A trigger on admin_messages calls pg_notify('table_changes', ...) for
every insert, update, and delete (see the admin_messages_change_notify
migration). One dedicated asyncpg connection LISTENs on that channel and
hands each notification to the callbacks registered for its
(table, user_id) pair.

NOTIFY is best-effort: anything sent while the connection is down is lost.
After a reconnect every subscriber receives a synthetic RESYNC event so it
can re-pull whatever it derives from the table.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Callable, Optional

import asyncpg
import structlog

logger = structlog.get_logger()

RESYNC = "RESYNC"

# Must match the channel hard-coded in the notify trigger migration
NOTIFY_CHANNEL = "table_changes"


class ChangeFeedUnavailableError(Exception):
    """Raised when subscribing while the feed has no live connection."""


@dataclass(frozen=True)
class ChangeEvent:
    """One row-level change, reduced to what subscribers filter on."""

    table: str
    op: str  # INSERT, UPDATE, DELETE or RESYNC
    user_id: str

    @classmethod
    def from_payload(cls, payload: str) -> "ChangeEvent":
        data = json.loads(payload)
        return cls(
            table=data["table"],
            op=data["op"],
            user_id=str(data["user_id"]),
        )


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for one registered callback."""

    def __init__(self, feed: "ChangeFeed", key: tuple[str, str], token: int):
        self._feed = feed
        self.key = key
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        """Remove the callback. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._feed._remove(self.key, self._token)


class ChangeFeed:
    """Subscriber bookkeeping and dispatch.

    Subclasses push events in through dispatch(); subscribe() is the only
    method consumers need.
    """

    def __init__(self):
        self._subscribers: dict[tuple[str, str], dict[int, ChangeCallback]] = {}
        self._tokens = itertools.count(1)

    async def subscribe(
        self, table: str, user_id: str, callback: ChangeCallback
    ) -> Subscription:
        """Register callback for every change to table rows owned by user_id."""
        self._check_available()
        key = (table, str(user_id))
        token = next(self._tokens)
        self._subscribers.setdefault(key, {})[token] = callback
        logger.debug("change_feed.subscribed", table=table, user_id=key[1])
        return Subscription(self, key, token)

    def _check_available(self) -> None:
        """Hook for subclasses that can be disconnected."""

    def _remove(self, key: tuple[str, str], token: int) -> None:
        callbacks = self._subscribers.get(key)
        if not callbacks:
            return
        callbacks.pop(token, None)
        if not callbacks:
            del self._subscribers[key]
        logger.debug("change_feed.unsubscribed", table=key[0], user_id=key[1])

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver an event to matching callbacks. Returns how many ran."""
        callbacks = list(self._subscribers.get((event.table, event.user_id), {}).values())
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "change_feed.callback_failed",
                    table=event.table,
                    user_id=event.user_id,
                    op=event.op,
                )
        return len(callbacks)

    def dispatch_resync(self) -> int:
        """Tell every subscriber that changes may have been missed."""
        delivered = 0
        for table, user_id in list(self._subscribers):
            delivered += self.dispatch(ChangeEvent(table=table, op=RESYNC, user_id=user_id))
        return delivered

    @property
    def connected(self) -> bool:
        return True

    def subscriber_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._subscribers.values())


class PgChangeFeed(ChangeFeed):
    """LISTEN on a PostgreSQL NOTIFY channel with automatic reconnect.

    Learn: asyncpg delivers notifications through a synchronous callback on
    the event loop, so dispatch() must not block. Subscribers schedule their
    own async work.
    """

    def __init__(
        self,
        dsn: str,
        channel: str = NOTIFY_CHANNEL,
        *,
        reconnect_initial: float = 0.5,
        reconnect_max: float = 30.0,
    ):
        super().__init__()
        self.dsn = dsn
        self.channel = channel
        self.reconnect_initial = reconnect_initial
        self.reconnect_max = reconnect_max
        self._conn: Optional[asyncpg.Connection] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def start(self) -> None:
        """Open the LISTEN connection. Raises if Postgres is unreachable."""
        self._stopping = False
        await self._connect()
        logger.info("change_feed.listening", channel=self.channel)

    async def stop(self) -> None:
        """Close the LISTEN connection and stop reconnecting."""
        self._stopping = True
        if self._reconnect_task:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        conn, self._conn = self._conn, None
        if conn is not None and not conn.is_closed():
            await conn.remove_listener(self.channel, self._on_notify)
            await conn.close()
        logger.info("change_feed.stopped", channel=self.channel)

    def _check_available(self) -> None:
        if not self.connected:
            raise ChangeFeedUnavailableError(
                f"Not listening on '{self.channel}' (connection down)"
            )

    async def _connect(self) -> None:
        conn = await asyncpg.connect(self.dsn)
        await conn.add_listener(self.channel, self._on_notify)
        conn.add_termination_listener(self._on_terminated)
        self._conn = conn

    # ─── asyncpg callbacks ────────────────────────────────

    def _on_notify(self, conn, pid, channel, payload):
        try:
            event = ChangeEvent.from_payload(payload)
        except (ValueError, KeyError, TypeError):
            logger.warning("change_feed.bad_payload", channel=channel, payload=payload)
            return
        self.dispatch(event)

    def _on_terminated(self, conn):
        if self._stopping:
            return
        logger.warning("change_feed.connection_lost", channel=self.channel)
        self._conn = None
        self.reconnect_later()

    def reconnect_later(self) -> None:
        """Keep retrying the LISTEN connection in the background."""
        self._stopping = False
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        delay = self.reconnect_initial
        while not self._stopping:
            try:
                await self._connect()
            except Exception as e:
                logger.warning(
                    "change_feed.reconnect_failed",
                    channel=self.channel,
                    error=str(e),
                    retry_in=delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max)
                continue

            resynced = self.dispatch_resync()
            logger.info(
                "change_feed.reconnected",
                channel=self.channel,
                resynced=resynced,
            )
            return
