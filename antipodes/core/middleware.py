import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from structlog.contextvars import bind_contextvars
from antipodes.core.config import settings

SESSION_COOKIE = "antipodes_sid"
SESSION_MAX_AGE = 60 * 60 * 24 * 30

class AnonIdMiddleware(BaseHTTPMiddleware):
    """
    Gives every browser an opaque session id.

    The id keys the in-memory explorer and the daily geocoding quota; it
    carries no personal data and nothing is stored against it on disk.
    """
    async def dispatch(self, request: Request, call_next):
        session_id = request.cookies.get(SESSION_COOKIE)
        created_new = not session_id
        if created_new:
            session_id = uuid.uuid4().hex

        request.state.session_id = session_id
        bind_contextvars(session_id=session_id)

        response = await call_next(request)

        if created_new:
            response.set_cookie(
                key=SESSION_COOKIE,
                value=session_id,
                max_age=SESSION_MAX_AGE,
                httponly=True,
                secure=(settings.ENV == "production"),
                samesite="lax"
            )
        return response
