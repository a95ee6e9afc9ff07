"""Test fixtures — in-memory change feed, scripted count query, fake services.

Learn: Testing pattern for the realtime path without PostgreSQL:

1. FakeChangeFeed subclasses the real ChangeFeed (same subscribe/dispatch
   bookkeeping) and lets tests emit notifications or fail subscriptions.
2. ScriptedCountQuery stands in for COUNT(*) over admin_messages. It
   answers from a dict, raises on demand, or hands back futures the test
   resolves in any order (for out-of-order and late-response cases).
3. InMemoryMessageService mirrors MessageService and emits a change
   notification on every write, the way the admin_messages trigger does.
4. The app is built with create_app(distributor=...) so routes and
   WebSockets share the test's distributor, and service dependencies are
   overridden with the in-memory fakes.
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from spinearn.realtime.change_feed import (
    ChangeEvent,
    ChangeFeed,
    ChangeFeedUnavailableError,
)
from spinearn.realtime.distributor import UnreadDistributor
from spinearn.services.leaderboard_service import SnapshotResult
from spinearn.services.message_service import MessageNotFoundError, MessageService
from spinearn.services.withdrawal_service import (
    DEFAULT_APPROVAL_NOTE,
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
    completion_message,
)

USER_ID = "00000000-0000-0000-0000-000000000001"
OTHER_USER_ID = "00000000-0000-0000-0000-000000000002"
ADMIN_ID = "00000000-0000-0000-0000-0000000000aa"


# ─── Realtime fakes ──────────────────────────────────────


class FakeChangeFeed(ChangeFeed):
    """ChangeFeed driven by the test instead of LISTEN/NOTIFY."""

    def __init__(self):
        super().__init__()
        self.fail_subscribes = 0
        self.subscribe_attempts = 0
        self.is_connected = True

    @property
    def connected(self) -> bool:
        return self.is_connected

    def _check_available(self) -> None:
        self.subscribe_attempts += 1
        if self.fail_subscribes > 0:
            self.fail_subscribes -= 1
            raise ChangeFeedUnavailableError("feed down")

    def emit(self, user_id: str, op: str = "UPDATE", table: str = "admin_messages") -> int:
        return self.dispatch(ChangeEvent(table=table, op=op, user_id=str(user_id)))


class ScriptedCountQuery:
    """Unread COUNT(*) stand-in.

    counts: answers per user (default 0)
    error: raise this instead of answering
    manual: every call waits on a future appended to `pending`
    """

    def __init__(self, counts: Optional[dict] = None):
        self.counts: dict = dict(counts or {})
        self.lookup: Callable[[str], Optional[int]] = lambda uid: self.counts.get(uid, 0)
        self.error: Optional[Exception] = None
        self.manual = False
        self.calls: list[str] = []
        self.pending: list[asyncio.Future] = []

    async def __call__(self, user_id: str) -> Optional[int]:
        self.calls.append(user_id)
        if self.manual:
            future = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            return await future
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.lookup(user_id)


async def settle(rounds: int = 10) -> None:
    """Let spawned tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ─── Service fakes ───────────────────────────────────────


class InMemoryMessageService:
    """MessageService over a list; writes notify the feed like the trigger."""

    def __init__(self, users: list[dict], feed: Optional[FakeChangeFeed] = None):
        self.users = users
        self.feed = feed
        self.rows: list[SimpleNamespace] = []

    def add(self, user_id: str, title: str = "Hello", read: bool = False,
            message_type: str = "info") -> SimpleNamespace:
        now = datetime.now(timezone.utc) + timedelta(seconds=len(self.rows))
        row = SimpleNamespace(
            id=uuid.uuid4(),
            admin_id=uuid.UUID(ADMIN_ID),
            user_id=uuid.UUID(user_id),
            user_name=None,
            user_email=None,
            title=title,
            message=f"{title} body",
            message_type=message_type,
            image_url=None,
            read=read,
            sent_at=now,
            created_at=now,
        )
        self.rows.append(row)
        self._notify(user_id, "INSERT")
        return row

    def unread_for(self, user_id: str) -> int:
        return sum(1 for r in self.rows if str(r.user_id) == str(user_id) and not r.read)

    def _notify(self, user_id: str, op: str) -> None:
        if self.feed is not None:
            self.feed.emit(user_id, op=op)

    async def list_messages(self, user_id: str, limit: int = 20):
        mine = [r for r in self.rows if str(r.user_id) == str(user_id)]
        return sorted(mine, key=lambda r: r.sent_at, reverse=True)[:limit]

    async def count_unread(self, user_id: str) -> int:
        return self.unread_for(user_id)

    async def mark_read(self, user_id: str, message_id: str):
        for row in self.rows:
            if str(row.id) == str(message_id) and str(row.user_id) == str(user_id):
                if not row.read:
                    row.read = True
                    self._notify(user_id, "UPDATE")
                return row
        raise MessageNotFoundError(f"Message {message_id} not found")

    async def mark_all_read(self, user_id: str) -> int:
        updated = 0
        for row in self.rows:
            if str(row.user_id) == str(user_id) and not row.read:
                row.read = True
                updated += 1
        if updated:
            self._notify(user_id, "UPDATE")
        return updated

    async def broadcast(self, *, admin_id, title, message, message_type="info",
                        image_url=None) -> int:
        title, message = MessageService._validate(title, message, message_type)
        for u in self.users:
            self.add(u["id"], title=title, message_type=message_type)
        return len(self.users)

    async def send_to_users(self, *, admin_id, user_ids, title, message,
                            message_type="info", image_url=None) -> int:
        title, message = MessageService._validate(title, message, message_type)
        known = {u["id"] for u in self.users}
        recipients = [uid for uid in user_ids if uid in known]
        for uid in recipients:
            self.add(uid, title=title, message_type=message_type)
        return len(recipients)

    async def purge_read(self, older_than_days: int, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)
        doomed = [r for r in self.rows if r.read and r.created_at < cutoff]
        for row in doomed:
            self.rows.remove(row)
            self._notify(str(row.user_id), "DELETE")
        return len(doomed)


class InMemoryWithdrawalService:
    """WithdrawalService over a list; approval writes to the message store."""

    def __init__(self, messages: InMemoryMessageService):
        self.messages = messages
        self.rows: list[SimpleNamespace] = []

    def add(self, user_id: str, coin_amount: int = 5000,
            esewa_number: str = "9800000001", status: str = "pending") -> SimpleNamespace:
        row = SimpleNamespace(
            id=uuid.uuid4(),
            user_id=uuid.UUID(user_id),
            coin_amount=coin_amount,
            esewa_number=esewa_number,
            status=status,
            admin_notes=None,
            processed_by=None,
            requested_at=datetime.now(timezone.utc) + timedelta(seconds=len(self.rows)),
            processed_at=None,
        )
        self.rows.append(row)
        return row

    async def list_withdrawals(self, status: Optional[str] = None, limit: int = 50):
        rows = [r for r in self.rows if status is None or r.status == status]
        return sorted(rows, key=lambda r: r.requested_at, reverse=True)[:limit]

    async def approve(self, *, admin_id, withdrawal_id, notes=None):
        row = self._pending(withdrawal_id)
        self._decide(row, "completed", admin_id, notes or DEFAULT_APPROVAL_NOTE)
        title, body = completion_message(row)
        msg = self.messages.add(str(row.user_id), title=title, message_type="success")
        msg.message = body
        return row

    async def reject(self, *, admin_id, withdrawal_id, notes=None):
        row = self._pending(withdrawal_id)
        self._decide(row, "rejected", admin_id, notes)
        return row

    def _pending(self, withdrawal_id: str) -> SimpleNamespace:
        for row in self.rows:
            if str(row.id) == str(withdrawal_id):
                if row.status != "pending":
                    raise WithdrawalAlreadyProcessedError(
                        f"Withdrawal {withdrawal_id} is already {row.status}"
                    )
                return row
        raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")

    @staticmethod
    def _decide(row, status, admin_id, notes) -> None:
        row.status = status
        row.admin_notes = notes
        row.processed_by = uuid.UUID(admin_id)
        row.processed_at = datetime.now(timezone.utc)


class InMemoryLeaderboardService:
    def __init__(self, users: list[dict]):
        self.users = users
        self.snapshots: dict[date, list[SimpleNamespace]] = {}

    async def snapshot(self, today: Optional[date] = None, limit: int = 20) -> SnapshotResult:
        today = today or datetime.now(timezone.utc).date()
        if today in self.snapshots:
            return SnapshotResult(leaderboard_date=today, created=False, count=0)
        top = sorted(self.users, key=lambda u: u["coins"], reverse=True)[:limit]
        self.snapshots[today] = [
            SimpleNamespace(
                leaderboard_date=today,
                user_id=uuid.UUID(u["id"]),
                name=u["name"],
                profile_picture_url=None,
                coins=u["coins"],
                rank=idx + 1,
            )
            for idx, u in enumerate(top)
        ]
        return SnapshotResult(leaderboard_date=today, created=True, count=len(top))

    async def get_snapshot(self, day: date):
        return self.snapshots.get(day, [])


# ─── Fixtures ────────────────────────────────────────────


@pytest.fixture()
def users():
    return [
        {"id": USER_ID, "name": "Ada", "coins": 120},
        {"id": OTHER_USER_ID, "name": "Linus", "coins": 300},
        {"id": ADMIN_ID, "name": "Admin", "coins": 0},
    ]


@pytest.fixture()
def feed():
    return FakeChangeFeed()


@pytest.fixture()
def count_query():
    return ScriptedCountQuery()


@pytest.fixture()
def distributor(feed, count_query):
    return UnreadDistributor(
        feed, count_query, backoff_initial=0.01, backoff_max=0.05
    )


@pytest.fixture()
def message_store(users, feed, count_query):
    """In-memory admin_messages; the count query reads from it."""
    store = InMemoryMessageService(users, feed)
    count_query.lookup = store.unread_for
    return store


@pytest.fixture()
def leaderboard_store(users):
    return InMemoryLeaderboardService(users)


@pytest.fixture()
def withdrawal_store(message_store):
    return InMemoryWithdrawalService(message_store)


@pytest.fixture()
def app(distributor, message_store, leaderboard_store, withdrawal_store):
    """App wired with the test distributor and in-memory services."""
    from spinearn.api.admin import get_leaderboard_service
    from spinearn.api.messages import get_message_service
    from spinearn.api.withdrawals import get_withdrawal_service
    from spinearn.main import create_app

    application = create_app(distributor=distributor)
    application.dependency_overrides[get_message_service] = lambda: message_store
    application.dependency_overrides[get_leaderboard_service] = lambda: leaderboard_store
    application.dependency_overrides[get_withdrawal_service] = lambda: withdrawal_store
    return application


def _as(app, user_id: str, role: str):
    from spinearn.auth.dependencies import CurrentIdentity, get_current_user

    app.dependency_overrides[get_current_user] = lambda: CurrentIdentity(
        user_id=user_id, role=role
    )


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client authenticated as a regular user.

    Learn: We override get_current_user to return a fixed identity so all
    protected routes work without real JWT tokens.
    """
    _as(app, USER_ID, "user")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def admin_client(app):
    """HTTP client authenticated as an admin."""
    _as(app, ADMIN_ID, "admin")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(app):
    """HTTP client WITHOUT auth override — for testing the real JWT flow."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ─── PostgreSQL (service tests) ──────────────────────────


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session with automatic rollback via savepoints.

    Learn: join_transaction_mode="create_savepoint" means every
    session.commit() in the service layer becomes a SAVEPOINT. After the
    test, the outer transaction rolls back, tables included. Tests using
    this fixture are skipped when PostgreSQL isn't reachable.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

    from spinearn.config import settings
    from spinearn.db.models import Base

    engine = create_async_engine(settings.database_url, echo=False)
    try:
        conn = await engine.connect()
    except Exception as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL unavailable: {e}")

    trans = await conn.begin()
    await conn.run_sync(Base.metadata.create_all)
    session = AsyncSession(
        bind=conn,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        await session.close()
        await trans.rollback()
        await conn.close()
        await engine.dispose()
