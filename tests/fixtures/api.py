import pytest
from aiohttp.test_utils import TestClient, TestServer

from glimpse.api.main import create_app


@pytest.fixture
async def api_client(test_settings, test_session_maker, like_service, event_bus):
    app = create_app(
        settings=test_settings,
        session_factory=test_session_maker,
        bus=event_bus,
        like_service=like_service,
    )
    async with TestClient(TestServer(app)) as client:
        yield client


def auth(user_id: str) -> dict:
    return {"X-User-Id": user_id}
