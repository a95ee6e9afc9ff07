"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, the LISTEN connection,
the unread distributor).

The UnreadDistributor is built exactly once per application and stored on
app.state. Pass one to create_app() to wire your own (tests do this with
in-memory fakes); otherwise the lifespan builds one on PostgreSQL
LISTEN/NOTIFY.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spinearn import __version__
from spinearn.api import api_router
from spinearn.config import settings
from spinearn.realtime.change_feed import NOTIFY_CHANNEL, PgChangeFeed
from spinearn.realtime.distributor import UnreadDistributor

logger = structlog.get_logger()


def build_distributor() -> tuple[UnreadDistributor, PgChangeFeed]:
    """Production wiring: asyncpg LISTEN feed + SQLAlchemy count query."""
    from spinearn.db.engine import async_session_factory
    from spinearn.services.message_service import UNREAD_TABLE, make_unread_count_query

    feed = PgChangeFeed(
        settings.asyncpg_dsn,
        channel=NOTIFY_CHANNEL,
        reconnect_initial=settings.resubscribe_backoff_initial,
        reconnect_max=settings.resubscribe_backoff_max,
    )
    distributor = UnreadDistributor(
        feed,
        make_unread_count_query(async_session_factory),
        table=UNREAD_TABLE,
        backoff_initial=settings.resubscribe_backoff_initial,
        backoff_max=settings.resubscribe_backoff_max,
        keep_last_on_error=settings.unread_keep_last_on_error,
    )
    return distributor, feed


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Redis and the LISTEN connection are both optional at startup:
    the app serves requests without them and the feed keeps reconnecting.
    """
    logger.info(
        "spinearn.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from spinearn.realtime.pubsub import close_redis, init_redis
    try:
        await init_redis()
        logger.info("spinearn.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("spinearn.redis_unavailable", error=str(e))

    owned_feed = None
    if app.state.unread is None:
        app.state.unread, owned_feed = build_distributor()
        try:
            await owned_feed.start()
        except Exception as e:
            logger.warning("spinearn.change_feed_unavailable", error=str(e))
            owned_feed.reconnect_later()

    yield

    # Shutdown
    logger.info("spinearn.shutdown")

    await app.state.unread.close()
    if owned_feed is not None:
        await owned_feed.stop()
        app.state.unread = None

    await close_redis()

    from spinearn.db.engine import engine
    await engine.dispose()


def create_app(distributor: Optional[UnreadDistributor] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SpinEarn API",
        description="Admin messages, live unread counts, and daily leaderboards",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.unread = distributor

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from spinearn.middleware.rate_limit import RateLimitMiddleware
    from spinearn.middleware.request_id import RequestIdMiddleware
    from spinearn.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        admin_rpm=settings.rate_limit_admin_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from spinearn.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: spinearn.main:app)
app = create_app()
