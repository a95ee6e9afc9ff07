"""Change feed tests — subscriber bookkeeping, NOTIFY payloads, reconnect.

Learn: PgChangeFeed is exercised without PostgreSQL by handing it a mock
asyncpg connection; asyncpg.connect is patched for the reconnect test.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import OTHER_USER_ID, USER_ID
from spinearn.realtime.change_feed import (
    RESYNC,
    ChangeEvent,
    ChangeFeed,
    ChangeFeedUnavailableError,
    NOTIFY_CHANNEL,
    PgChangeFeed,
)
from spinearn.services.message_service import UNREAD_TABLE


def _mock_conn() -> MagicMock:
    conn = MagicMock()
    conn.is_closed.return_value = False
    conn.add_listener = AsyncMock()
    conn.remove_listener = AsyncMock()
    conn.close = AsyncMock()
    return conn


def test_change_event_from_payload():
    event = ChangeEvent.from_payload(json.dumps({
        "table": "admin_messages",
        "op": "INSERT",
        "user_id": USER_ID,
    }))
    assert event == ChangeEvent(table="admin_messages", op="INSERT", user_id=USER_ID)


@pytest.mark.parametrize("payload", ["not json", "{}", json.dumps({"table": "admin_messages"})])
def test_change_event_rejects_bad_payload(payload):
    with pytest.raises((ValueError, KeyError)):
        ChangeEvent.from_payload(payload)


@pytest.mark.asyncio
async def test_dispatch_filters_by_table_and_user():
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    await feed.subscribe("admin_messages", USER_ID, received.append)

    assert feed.dispatch(ChangeEvent("admin_messages", "UPDATE", USER_ID)) == 1
    assert feed.dispatch(ChangeEvent("admin_messages", "UPDATE", OTHER_USER_ID)) == 0
    assert feed.dispatch(ChangeEvent("withdrawals", "UPDATE", USER_ID)) == 0
    assert [e.op for e in received] == ["UPDATE"]


@pytest.mark.asyncio
async def test_failing_callback_is_isolated():
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    def broken(event):
        raise RuntimeError("boom")

    await feed.subscribe("admin_messages", USER_ID, broken)
    await feed.subscribe("admin_messages", USER_ID, received.append)

    assert feed.dispatch(ChangeEvent("admin_messages", "DELETE", USER_ID)) == 2
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    feed = ChangeFeed()
    a = await feed.subscribe("admin_messages", USER_ID, lambda e: None)
    b = await feed.subscribe("admin_messages", USER_ID, lambda e: None)
    assert feed.subscriber_count() == 2

    await a.unsubscribe()
    await a.unsubscribe()
    assert not a.active
    assert b.active
    assert feed.subscriber_count() == 1

    await b.unsubscribe()
    assert feed.subscriber_count() == 0


@pytest.mark.asyncio
async def test_dispatch_resync_reaches_every_subscriber():
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    await feed.subscribe("admin_messages", USER_ID, received.append)
    await feed.subscribe("admin_messages", OTHER_USER_ID, received.append)

    assert feed.dispatch_resync() == 2
    assert {e.user_id for e in received} == {USER_ID, OTHER_USER_ID}
    assert all(e.op == RESYNC for e in received)


# ═══════════════════════════════════════════════════════════
# PgChangeFeed
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_pg_feed_refuses_subscriptions_while_disconnected():
    feed = PgChangeFeed("postgresql://localhost/spinearn")
    assert not feed.connected
    with pytest.raises(ChangeFeedUnavailableError):
        await feed.subscribe("admin_messages", USER_ID, lambda e: None)


@pytest.mark.asyncio
async def test_pg_feed_dispatches_notifications():
    feed = PgChangeFeed("postgresql://localhost/spinearn")
    feed._conn = _mock_conn()
    received: list[ChangeEvent] = []
    await feed.subscribe("admin_messages", USER_ID, received.append)

    payload = json.dumps({"table": "admin_messages", "op": "UPDATE", "user_id": USER_ID})
    feed._on_notify(feed._conn, 4242, "table_changes", payload)
    feed._on_notify(feed._conn, 4242, "table_changes", "garbage")

    assert received == [ChangeEvent("admin_messages", "UPDATE", USER_ID)]


@pytest.mark.asyncio
async def test_pg_feed_reconnects_and_resyncs(monkeypatch):
    conn = _mock_conn()
    connect = AsyncMock(side_effect=[OSError("connection refused"), conn])
    monkeypatch.setattr("spinearn.realtime.change_feed.asyncpg.connect", connect)

    feed = PgChangeFeed(
        "postgresql://localhost/spinearn",
        reconnect_initial=0.01,
        reconnect_max=0.02,
    )
    feed._conn = _mock_conn()
    received: list[ChangeEvent] = []
    await feed.subscribe("admin_messages", USER_ID, received.append)

    feed._on_terminated(feed._conn)
    assert not feed.connected
    await feed._reconnect_task

    assert connect.await_count == 2
    assert feed.connected
    conn.add_listener.assert_awaited_once_with("table_changes", feed._on_notify)
    assert [e.op for e in received] == [RESYNC]

    await feed.stop()
    conn.close.assert_awaited_once()
    assert not feed.connected


@pytest.mark.asyncio
async def test_pg_feed_ignores_termination_after_stop():
    feed = PgChangeFeed("postgresql://localhost/spinearn")
    await feed.stop()
    feed._on_terminated(None)
    assert feed._reconnect_task is None


def test_production_wiring_matches_notify_trigger():
    import spinearn
    from spinearn.main import build_distributor

    migration = (
        Path(spinearn.__file__).parent
        / "db/migrations/versions/8c4e6d21a5f3_admin_messages_change_notify.py"
    ).read_text()
    assert f"pg_notify('{NOTIFY_CHANNEL}'" in migration
    assert f"ON {UNREAD_TABLE}" in migration

    distributor, feed = build_distributor()
    assert feed.channel == NOTIFY_CHANNEL
    assert distributor._sync_options["table"] == UNREAD_TABLE
