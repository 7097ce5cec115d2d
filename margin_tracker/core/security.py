"""
Supabase session handling.

Supabase issues HS256 access tokens signed with the project's JWT secret.
Browsers carry them in cookies written by ``@supabase/ssr``: the cookie
``sb-<project-ref>-auth-token`` holds the JSON session, optionally prefixed
with ``base64-`` and split into ``.0``, ``.1``... chunks when large.
"""
import base64
import json
import re
from typing import Mapping, Optional

from jose import JWTError, jwt

from margin_tracker.core.config import settings
from margin_tracker.schemas.user import CurrentUser

_SSR_COOKIE = re.compile(r"^sb-.+-auth-token(?:\.(\d+))?$")


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify a Supabase access token.

    Raises:
        JWTError: if the signature, expiry or audience is invalid
    """
    payload = jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=[settings.ALGORITHM],
        audience=settings.SUPABASE_JWT_AUDIENCE,
    )
    subject = payload.get("sub")
    if not subject:
        raise JWTError("Token has no subject")
    return CurrentUser(id=subject, email=payload.get("email"), role=payload.get("role"))


def _session_access_token(raw: str) -> Optional[str]:
    if raw.startswith("base64-"):
        encoded = raw[len("base64-"):]
        try:
            raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None
    try:
        session = json.loads(raw)
    except ValueError:
        return None
    if isinstance(session, dict):
        return session.get("access_token")
    # Older helpers stored [access_token, refresh_token, ...]
    if isinstance(session, list) and session:
        return session[0]
    return None


def token_from_cookies(cookies: Mapping[str, str]) -> Optional[str]:
    """Find an access token in request cookies, or None."""
    token = cookies.get(settings.SUPABASE_AUTH_COOKIE)
    if token:
        return token[len("Bearer "):] if token.startswith("Bearer ") else token

    chunks = {}
    for name, value in cookies.items():
        match = _SSR_COOKIE.match(name)
        if match:
            chunks[int(match.group(1) or 0)] = value
    if not chunks:
        return None
    raw = "".join(chunks[index] for index in sorted(chunks))
    return _session_access_token(raw)


def user_from_cookies(cookies: Mapping[str, str]) -> Optional[CurrentUser]:
    """The verified user of a browser request, or None."""
    token = token_from_cookies(cookies)
    if not token:
        return None
    try:
        return decode_access_token(token)
    except JWTError:
        return None
