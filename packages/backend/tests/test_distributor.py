"""Unread distributor tests — one synchronizer per user, shared by consumers.

Learn: Ten tabs for one user must mean one change-feed subscription and
one count query per notification. The distributor reference-counts
consumers and the last release closes the synchronizer.
"""

import pytest
from starlette.requests import HTTPConnection

from conftest import OTHER_USER_ID, USER_ID
from spinearn.main import create_app
from spinearn.realtime.distributor import (
    DistributorNotInstalledError,
    UnreadSession,
    get_unread_distributor,
)


@pytest.mark.asyncio
async def test_consumers_share_one_subscription(distributor, feed, count_query):
    count_query.counts[USER_ID] = 3

    a = await distributor.acquire(USER_ID)
    b = await distributor.acquire(USER_ID)
    await a.wait_idle()

    assert a is b
    assert a.count == 3
    assert feed.subscriber_count() == 1
    assert count_query.calls == [USER_ID]

    # One notification, one re-pull, both consumers see it
    count_query.counts[USER_ID] = 4
    feed.emit(USER_ID)
    await a.wait_idle()
    assert count_query.calls == [USER_ID, USER_ID]
    assert b.count == 4


@pytest.mark.asyncio
async def test_last_release_closes_synchronizer(distributor, feed):
    sync = await distributor.acquire(USER_ID)
    await distributor.acquire(USER_ID)
    await sync.wait_idle()

    await distributor.release(USER_ID)
    assert distributor.peek(USER_ID) is sync
    assert not sync.closed

    await distributor.release(USER_ID)
    assert distributor.peek(USER_ID) is None
    assert sync.closed
    assert feed.subscriber_count() == 0

    # Extra releases are ignored
    await distributor.release(USER_ID)


@pytest.mark.asyncio
async def test_reacquire_after_close_starts_fresh(distributor, count_query):
    async with distributor.lease(USER_ID) as first:
        await first.wait_idle()

    count_query.counts[USER_ID] = 2
    async with distributor.lease(USER_ID) as second:
        await second.wait_idle()
        assert second is not first
        assert second.count == 2
    assert distributor.peek(USER_ID) is None


@pytest.mark.asyncio
async def test_stats_and_close(distributor, feed):
    await distributor.acquire(USER_ID)
    await distributor.acquire(USER_ID)
    other = await distributor.acquire(OTHER_USER_ID)
    await other.wait_idle()

    assert distributor.stats() == {"users": 2, "consumers": 3, "subscriptions": 2}

    await distributor.close()
    assert distributor.stats() == {"users": 0, "consumers": 0, "subscriptions": 0}
    assert other.closed


# ═══════════════════════════════════════════════════════════
# Accessor
# ═══════════════════════════════════════════════════════════


def test_accessor_raises_without_distributor():
    conn = HTTPConnection({"type": "http", "app": create_app()})
    with pytest.raises(DistributorNotInstalledError):
        get_unread_distributor(conn)
    with pytest.raises(DistributorNotInstalledError):
        get_unread_distributor(conn)


def test_accessor_returns_installed_distributor(distributor):
    conn = HTTPConnection({"type": "http", "app": create_app(distributor=distributor)})
    assert get_unread_distributor(conn) is distributor


# ═══════════════════════════════════════════════════════════
# UnreadSession (one WebSocket)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_session_forwards_counts_and_switches_users(distributor, count_query):
    count_query.counts[USER_ID] = 3
    count_query.counts[OTHER_USER_ID] = 1
    sent: list[int] = []
    session = UnreadSession(distributor, sink=sent.append)

    await session.set_identity(USER_ID)
    await distributor.peek(USER_ID).wait_idle()
    assert sent == [0, 3]
    assert session.count == 3

    await session.set_identity(OTHER_USER_ID)
    await distributor.peek(OTHER_USER_ID).wait_idle()
    assert distributor.peek(USER_ID) is None
    assert sent[-1] == 1

    await session.set_identity(None)
    assert sent[-1] == 0
    assert session.count == 0
    assert distributor.stats()["users"] == 0


@pytest.mark.asyncio
async def test_second_session_gets_current_count_immediately(distributor, count_query):
    count_query.counts[USER_ID] = 5
    first: list[int] = []
    second: list[int] = []

    s1 = UnreadSession(distributor, sink=first.append)
    await s1.set_identity(USER_ID)
    await distributor.peek(USER_ID).wait_idle()

    s2 = UnreadSession(distributor, sink=second.append)
    await s2.set_identity(USER_ID)
    assert second == [5]
    assert count_query.calls == [USER_ID]

    await s1.close()
    assert distributor.peek(USER_ID) is not None
    await s2.close()
    assert distributor.peek(USER_ID) is None


@pytest.mark.asyncio
async def test_signed_out_session_never_touches_distributor(distributor, count_query, feed):
    sent: list[int] = []
    session = UnreadSession(distributor, sink=sent.append)

    assert await session.refresh() == 0
    await session.close()

    assert count_query.calls == []
    assert feed.subscribe_attempts == 0
