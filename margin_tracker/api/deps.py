"""
API Dependencies Module

Authentication and integration-client dependencies. Authentication accepts a
bearer token (API clients, scripts) or the Supabase session cookie (browser).
Integration clients are dependencies so they can be swapped in tests.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from margin_tracker.core.errors import AuthenticationRequired
from margin_tracker.core.security import decode_access_token, token_from_cookies
from margin_tracker.integrations.clickup import ClickUpClient, create_clickup_client
from margin_tracker.integrations.qonto import QontoClient, create_qonto_client
from margin_tracker.integrations.vision import VisionAnalyzer, create_vision_analyzer
from margin_tracker.schemas.user import CurrentUser

# auto_error=False lets us fall back to the session cookie
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Dependency that returns the authenticated Supabase user.

    The Authorization header is checked first, then the session cookies.

    Raises:
        AuthenticationRequired: if no token is present or it fails verification
    """
    token = credentials.credentials if credentials else token_from_cookies(request.cookies)
    if not token:
        raise AuthenticationRequired()
    try:
        return decode_access_token(token)
    except JWTError as exc:
        raise AuthenticationRequired(str(exc)) from exc


def get_clickup_client() -> Optional[ClickUpClient]:
    return create_clickup_client()


def get_qonto_client() -> Optional[QontoClient]:
    return create_qonto_client()


def get_vision_analyzer() -> Optional[VisionAnalyzer]:
    return create_vision_analyzer()
