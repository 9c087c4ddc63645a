import json
from typing import Awaitable, Callable

from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from glimpse.api.keys import DB_SESSION, SESSION_FACTORY, USER_ID
from glimpse.core.errors import DecryptionError, GlimpseIntegrityError, MatchAccessError

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

# Routes that do not need the X-User-Id header
PUBLIC_PATHS = {"/health", "/payments/webhook"}
USER_ID_HEADER = "X-User-Id"


def json_error(status: int, error: str, **extra) -> web.Response:
    return web.json_response({"error": error, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map exceptions to JSON responses. Integrity errors become 500s."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        return json_error(400, "invalid_request", details=details)
    except json.JSONDecodeError:
        return json_error(400, "invalid_json")
    except MatchAccessError as e:
        logger.warning(f"{request.method} {request.path}: {e}")
        return json_error(403, "match_access_denied")
    except DecryptionError as e:
        logger.warning(f"{request.method} {request.path}: envelope rejected ({e})")
        return json_error(422, "decryption_failed")
    except GlimpseIntegrityError as e:
        logger.error(f"Integrity error on {request.method} {request.path}: {e}")
        return json_error(500, "integrity_error")
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return json_error(500, "internal_error")


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Identity is asserted by the upstream auth gateway in a header."""
    if request.path in PUBLIC_PATHS:
        return await handler(request)
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        return json_error(401, "unauthorized")
    request[USER_ID] = user_id
    return await handler(request)


@web.middleware
async def db_session_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Open one session per request and always close it."""
    if request.path == "/health":
        return await handler(request)
    async with request.app[SESSION_FACTORY]() as session:
        request[DB_SESSION] = session
        return await handler(request)
