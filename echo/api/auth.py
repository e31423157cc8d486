"""Session authentication for API routes"""

from dataclasses import dataclass

from fastapi import Header, Request

from echo.config import get_settings
from echo.core.errors import Unauthorized
from echo.core.security import decode_access_token, tokens_match

settings = get_settings()


@dataclass
class CurrentUser:
    user_id: str
    organization_id: str


def _session_token(request: Request) -> str | None:
    session_token = request.cookies.get("session_token")
    if session_token:
        return session_token

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return None


async def get_current_user(request: Request) -> CurrentUser:
    """Dependency to get the authenticated user from the session cookie or bearer token"""
    session_token = _session_token(request)
    if not session_token:
        raise Unauthorized("Not authenticated")

    payload = decode_access_token(session_token)
    if not payload:
        raise Unauthorized("Invalid session")

    user_id = payload.get("user_id")
    organization_id = payload.get("organization_id")
    if not user_id or not organization_id:
        raise Unauthorized("Invalid session")

    return CurrentUser(user_id=str(user_id), organization_id=str(organization_id))


async def require_internal_token(x_internal_token: str | None = Header(None, alias="X-Internal-Token")) -> None:
    """Dependency guarding routes meant for the scheduler only"""
    if not tokens_match(x_internal_token, settings.internal_api_token):
        raise Unauthorized("Invalid internal token")
