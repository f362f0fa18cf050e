"""Shared FastAPI dependencies for the reference server."""

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.api.schemas import UserResponse
from backend.api.server_store import ServerStore

_bearer = HTTPBearer(auto_error=False)


def get_store(request: Request) -> ServerStore:
    return request.app.state.store


def get_token(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> str:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_token),
    store: ServerStore = Depends(get_store),
) -> UserResponse:
    user = store.user_for_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user
