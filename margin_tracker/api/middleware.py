"""
Auth gate for page routes.

Protected pages redirect anonymous visitors to the login page, and the login
and registration pages redirect signed-in users to the dashboard. JSON routes
under the API prefix are left alone: they authenticate per request through
``deps.get_current_user``.
"""
import re
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from margin_tracker.core.config import settings
from margin_tracker.core.security import user_from_cookies

PROTECTED_PREFIXES = ("/dashboard", "/projects", "/invoices", "/clients", "/reports", "/settings")
AUTH_PAGES = ("/login", "/register")

_STATIC_PATH = re.compile(r"^/(?:_next/|static/|favicon\.ico)|\.(?:svg|png|jpe?g|gif|webp|ico|css|js)$")


def _matches(path: str, prefixes) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


def is_exempt(path: str) -> bool:
    return (
        _matches(path, (settings.API_PREFIX,))
        or path.startswith("/auth/callback")
        or bool(_STATIC_PATH.search(path))
    )


class AuthGateMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if is_exempt(path):
            return await call_next(request)

        protected = _matches(path, PROTECTED_PREFIXES)
        auth_page = _matches(path, AUTH_PAGES)
        if not (protected or auth_page):
            return await call_next(request)

        user = user_from_cookies(request.cookies)
        if protected and user is None:
            return RedirectResponse(url=f"/login?{urlencode({'redirectedFrom': path})}", status_code=307)
        if auth_page and user is not None:
            return RedirectResponse(url="/dashboard", status_code=307)
        return await call_next(request)
