"""API routes for OAuth login and sessions.

The reference server doesn't talk to Google or Apple: the authorization
URL points straight back at its own callback, and the callback trusts the
``code`` it is given as the provider's subject id. Everything after that
(session issuing, redirect back to the client) follows the real flow.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from backend.api.deps import get_current_user, get_store, get_token
from backend.api.schemas import LoginUrlResponse, MeResponse, UserResponse
from backend.api.server_store import ServerStore
from backend.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

PROVIDERS = {"google", "apple"}
PLATFORMS = {"ANDROID", "IOS", "WEB"}


def _check_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown provider {provider}")
    return provider


def _client_redirect(platform: str, **params: str) -> str:
    """Where the browser lands after the callback: the app's deep link or the web client."""
    query = urlencode({"auth-redirect": "true", **params})
    if platform == "WEB":
        return f"{settings.web_client_url}?{query}"
    return f"{settings.app_scheme}://callback?{query}"


@router.get("/{provider}/login", response_model=LoginUrlResponse)
async def start_login(provider: str, request: Request, platform: str = "WEB") -> LoginUrlResponse:
    """Return the authorization URL for a provider and client platform."""
    _check_provider(provider)
    platform = platform.upper() if platform.upper() in PLATFORMS else "WEB"
    callback = request.url_for("oauth_callback", provider=provider)
    return LoginUrlResponse(auth_url=f"{callback}?{urlencode({'platform': platform})}")


@router.get("/{provider}/callback", name="oauth_callback")
async def oauth_callback(
    provider: str,
    platform: str = "WEB",
    code: str | None = None,
    store: ServerStore = Depends(get_store),
) -> RedirectResponse:
    """Exchange the provider code for a session and bounce back to the client."""
    _check_provider(provider)
    platform = platform.upper() if platform.upper() in PLATFORMS else "WEB"
    if not code:
        return RedirectResponse(_client_redirect(platform, error="missing_code", provider=provider))

    user = store.get_or_create_user(f"{provider}:{code}")
    token = store.create_session(user.user_id)
    logger.info("Issued %s session for user %s (%s)", provider, user.user_id, platform)
    return RedirectResponse(_client_redirect(platform, token=token, provider=provider.upper()))


@router.get("/me", response_model=MeResponse)
async def me(user: UserResponse = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user=user)


@router.post("/logout", status_code=204)
async def logout(
    token: str = Depends(get_token),
    store: ServerStore = Depends(get_store),
) -> None:
    store.revoke(token)
