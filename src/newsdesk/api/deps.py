from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from newsdesk.errors import ForbiddenError, UnauthorizedError
from newsdesk.models.schemas import TokenPayload, UserRole
from newsdesk.services.auth import decode_access_token
from newsdesk.services.read_tracking import ReadTracker

_bearer = HTTPBearer(auto_error=False)


async def require_user(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> TokenPayload:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedError("Missing or invalid authorization header")
    return decode_access_token(credentials.credentials)


async def optional_user(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> TokenPayload | None:
    """Authenticated identity if a valid token is present, otherwise a guest."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except UnauthorizedError:
        return None


async def require_author(user: TokenPayload = Depends(require_user)) -> TokenPayload:
    if user.role != UserRole.AUTHOR:
        raise ForbiddenError("You do not have permission to access this resource")
    return user


def get_read_tracker(request: Request) -> ReadTracker:
    return request.app.state.read_tracker
