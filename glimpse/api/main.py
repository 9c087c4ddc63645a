from typing import Optional

from aiohttp import web
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from glimpse.api import handlers
from glimpse.api.keys import (
    CREDIT_LEDGER,
    EVENT_BUS,
    INTEREST_SERVICE,
    LIKE_SERVICE,
    MATCH_CHAT,
    SESSION_FACTORY,
    SETTINGS,
)
from glimpse.api.middlewares import auth_middleware, db_session_middleware, error_middleware
from glimpse.core.config import Settings, get_settings
from glimpse.core.credit_ledger import CreditLedger
from glimpse.core.events import EventBus
from glimpse.core.interest_service import InterestService
from glimpse.core.like_service import LikeService
from glimpse.core.match_chat import MatchChat
from glimpse.db.base import get_session_factory


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/health", handlers.health)

    app.router.add_post("/likes", handlers.send_like)
    app.router.add_delete("/likes/{like_id}", handlers.cancel_like)
    app.router.add_get("/likes/received", handlers.received_likes)
    app.router.add_get("/likes/sent", handlers.sent_likes)
    app.router.add_get("/likes/stats", handlers.like_stats)

    app.router.add_get("/matches", handlers.list_matches)
    app.router.add_post("/matches/{match_id}/mismatch", handlers.report_mismatch)
    app.router.add_post("/matches/{match_id}/messages/seal", handlers.seal_message)
    app.router.add_post("/matches/{match_id}/messages/open", handlers.open_message)

    app.router.add_get("/credits", handlers.get_credits)
    app.router.add_get("/users/{user_id}/profile", handlers.get_profile)

    app.router.add_put("/interests/{correlation_id}", handlers.put_interest)
    app.router.add_get("/interests", handlers.list_interests)

    app.router.add_post("/payments/webhook", handlers.payment_webhook)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    bus: Optional[EventBus] = None,
    like_service: Optional[LikeService] = None,
) -> web.Application:
    """Build the API application with its services wired in."""
    settings = settings or get_settings()
    bus = bus or EventBus()
    like_service = like_service or LikeService(settings=settings, bus=bus)

    app = web.Application(middlewares=[error_middleware, auth_middleware, db_session_middleware])
    app[SETTINGS] = settings
    app[SESSION_FACTORY] = session_factory or get_session_factory()
    app[EVENT_BUS] = bus
    app[LIKE_SERVICE] = like_service
    app[CREDIT_LEDGER] = like_service.ledger
    app[MATCH_CHAT] = MatchChat(settings)
    app[INTEREST_SERVICE] = InterestService(settings, clock=like_service.clock)

    setup_routes(app)

    logger.info("Registered routes:")
    for route in app.router.routes():
        logger.info(f"  {route.method} {route.resource.canonical}")
    return app


async def start_api_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"API server running on http://{host}:{port}")
    return runner
