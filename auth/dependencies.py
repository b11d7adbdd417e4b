"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The transport session is Starlette's signed-cookie session (request.session).
On first use a random transport session id is minted into it; the auth core
pairs that id with the server-derived secret key stored next to it.

get_auth_context() builds the request's AuthContext once and caches it on
request.state, so every dependency and route in one request shares the same
identity and rights cache, and nothing is shared between requests.

get_current_user() raises HTTP 401 if the request is not logged in.
require_action(module, action) raises 401 when anonymous and 403 when the
identity lacks the right.

Layer rule: auth/dependencies.py may import from fastapi because it is the
seam to the FastAPI dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.authentication import Authentication
from auth.context import AuthContext
from auth.models import User

SESSION_ID_KEY = "session_id"


def get_authentication(request: Request) -> Authentication:
    return request.app.state.authentication


def get_auth_context(request: Request) -> AuthContext:
    """Return this request's AuthContext, creating it on first call."""
    ctx = getattr(request.state, "auth_context", None)
    if ctx is not None:
        return ctx

    session = request.session
    session_id = session.get(SESSION_ID_KEY)
    if not session_id:
        session_id = secrets.token_urlsafe(32)
        session[SESSION_ID_KEY] = session_id

    request_uri = request.url.path
    if request.url.query:
        request_uri = f"{request_uri}?{request.url.query}"

    ctx = AuthContext(
        session_id=session_id,
        session=session,
        request_uri=request_uri,
        query=dict(request.query_params),
    )
    request.state.auth_context = ctx
    return ctx


def get_current_user(request: Request) -> User:
    """Require a logged-in session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = get_authentication(request).get_user(get_auth_context(request))
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_action(module: str, action: str) -> Callable[[Request], AuthContext]:
    """Build a dependency that allows the request only if (module, action) is allowed.

    Always-allowed actions pass for anonymous callers too. Otherwise an
    anonymous caller gets 401 and a logged-in caller without the right 403.

        @router.get("/pages", dependencies=[Depends(require_action("Pages", "Index"))])
    """

    def dependency(request: Request) -> AuthContext:
        auth = get_authentication(request)
        ctx = get_auth_context(request)
        if auth.is_allowed_action(ctx, action, module):
            return ctx
        if not auth.is_logged_in(ctx):
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Authentication required."},
            )
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": f"Access to {module}/{action} denied."},
        )

    return dependency
