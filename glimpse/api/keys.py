from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from glimpse.core.config import Settings
from glimpse.core.credit_ledger import CreditLedger
from glimpse.core.events import EventBus
from glimpse.core.interest_service import InterestService
from glimpse.core.like_service import LikeService
from glimpse.core.match_chat import MatchChat

SETTINGS = web.AppKey("settings", Settings)
SESSION_FACTORY = web.AppKey("session_factory", async_sessionmaker[AsyncSession])
EVENT_BUS = web.AppKey("event_bus", EventBus)
LIKE_SERVICE = web.AppKey("like_service", LikeService)
CREDIT_LEDGER = web.AppKey("credit_ledger", CreditLedger)
MATCH_CHAT = web.AppKey("match_chat", MatchChat)
INTEREST_SERVICE = web.AppKey("interest_service", InterestService)

# Per-request values set by the middlewares
USER_ID = web.RequestKey("user_id", str)
DB_SESSION = web.RequestKey("session", AsyncSession)
