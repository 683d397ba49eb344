from typing import Optional

from fastapi import Header, Request

from auxin_api.errors import UnauthorizedError
from auxin_api.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


async def require_user(request: Request, authorization: str = Header(None)) -> dict:
    """Resolves the bearer token to the signed-in user document."""
    token = bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Access token required", code="NO_TOKEN")

    user = await get_services(request).auth.verify_session(token)
    request.state.user_id = str(user["_id"])
    return user
