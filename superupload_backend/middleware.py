from __future__ import annotations

from typing import Callable, Coroutine

from fastapi import Request, Response
from fastapi.routing import APIRoute

from .config import COOKIE_NAME
from .sessions import Session, SessionStore


NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Expires": "-1",
}


def resolve_or_create(request: Request) -> Session:
    store: SessionStore = request.app.state.sessions
    session = store.resolve(request.cookies.get(COOKIE_NAME))
    if session is None:
        session = store.create()
    request.state.upload_session = session
    return session


def apply_session_headers(response: Response, session: Session) -> None:
    response.set_cookie(COOKIE_NAME, session.id, path="/", httponly=True, samesite="lax")
    for name, value in NO_CACHE_HEADERS.items():
        response.headers[name] = value


class SessionRoute(APIRoute):
    """Route class for handlers that need an upload session.

    Before the handler runs, the session named by the ``uploadSession`` cookie
    is resolved (or a new one created). Whatever response the handler
    produces gets the session cookie and no-cache headers. Routes that are
    not registered with this class (static files) never see a session.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[None, None, Response]]:
        original_route_handler = super().get_route_handler()

        async def session_route_handler(request: Request) -> Response:
            session = resolve_or_create(request)
            response = await original_route_handler(request)
            apply_session_headers(response, session)
            return response

        return session_route_handler


def current_session(request: Request) -> Session:
    """Dependency: the session resolved for this request by SessionRoute."""
    return request.state.upload_session
