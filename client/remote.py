"""HTTP clients for the remote auth service and flashcard service.

Both wrap a shared ``httpx.AsyncClient`` and translate transport and status
failures into the error taxonomy in ``backend.errors``. Idempotent reads
are retried on transport errors; writes are not.
"""

import logging

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.api.schemas import (
    FlashcardSchema,
    FlashcardSetSchema,
    GenerateRequest,
    GenerateResponse,
    LoginUrlResponse,
    MeResponse,
    RateLimitError,
)
from backend.config import settings
from backend.errors import (
    AuthServiceUnreachable,
    NetworkUnavailable,
    NotFound,
    RateLimited,
    Unauthorized,
)
from client.models import Flashcard, FlashcardSet, OAuthPlatform, OAuthProvider

logger = logging.getLogger(__name__)

API_BASE = "/api/v1"
AUTH_BASE = f"{API_BASE}/auth"
AUTH_LOGOUT = f"{AUTH_BASE}/logout"
AUTH_ME = f"{AUTH_BASE}/me"
FLASHCARD_SETS = f"{API_BASE}/flashcards/sets"
GENERATE = f"{API_BASE}/generate"


def auth_login_route(provider: OAuthProvider) -> str:
    return f"{AUTH_BASE}/{provider.value.lower()}/login"


def flashcard_set_route(set_id: str) -> str:
    return f"{FLASHCARD_SETS}/{set_id}"


def randomized_flashcards_route(set_id: str) -> str:
    return f"{FLASHCARD_SETS}/{set_id}/randomized"


def create_http_client(base_url: str | None = None, **kwargs) -> httpx.AsyncClient:
    """Create the shared HTTP client; extra kwargs go straight to httpx (e.g. ``transport``)."""
    return httpx.AsyncClient(
        base_url=base_url or settings.api_base_url,
        timeout=settings.http_timeout_seconds,
        **kwargs,
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


_retry_transport_errors = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(settings.http_max_retries),
    wait=wait_exponential(multiplier=0.2, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _decode(response: httpx.Response, parse):
    """Apply ``parse`` to the JSON body; a body that does not fit the schema is a server fault."""
    try:
        return parse(response.json())
    except (TypeError, ValueError) as e:
        request = response.request
        raise NetworkUnavailable(f"Malformed response from {request.method} {request.url.path}") from e


class AuthApiClient:
    """Client for the authentication endpoints."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    async def start_login(self, provider: OAuthProvider, platform: OAuthPlatform) -> LoginUrlResponse:
        """Ask the auth service for the provider's authorization URL."""
        try:
            response = await self._get_login_url(provider, platform)
            response.raise_for_status()
            return LoginUrlResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise AuthServiceUnreachable(f"Could not start {provider.display_name} login: {e}") from e
        except ValueError as e:
            raise AuthServiceUnreachable(f"Malformed login response for {provider.display_name}") from e

    @_retry_transport_errors
    async def _get_login_url(self, provider: OAuthProvider, platform: OAuthPlatform) -> httpx.Response:
        return await self.http.get(auth_login_route(provider), params={"platform": platform.value})

    async def get_me(self, token: str) -> MeResponse:
        try:
            response = await self.http.get(AUTH_ME, headers=_bearer(token))
        except httpx.TransportError as e:
            raise AuthServiceUnreachable(str(e)) from e
        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise Unauthorized("Session token rejected")
        if response.is_error:
            raise AuthServiceUnreachable(f"/auth/me returned {response.status_code}")
        try:
            return MeResponse.model_validate(response.json())
        except ValueError as e:
            raise AuthServiceUnreachable("Malformed /auth/me response") from e

    async def logout(self, token: str) -> None:
        """Invalidate the session server-side."""
        try:
            response = await self.http.post(AUTH_LOGOUT, headers=_bearer(token))
        except httpx.TransportError as e:
            raise NetworkUnavailable(str(e)) from e
        # Logging out with an already-dead token is still a successful logout
        if response.is_error and response.status_code != httpx.codes.UNAUTHORIZED:
            raise NetworkUnavailable(f"Logout returned {response.status_code}")


class RemoteFlashcardClient:
    """Client for the flashcard CRUD and generation endpoints.

    Every call takes the bearer token explicitly. A 401 raises
    ``Unauthorized`` so the caller can expire the session; a 404 on a
    lookup returns ``None``.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    @_retry_transport_errors
    async def _get(self, token: str, path: str) -> httpx.Response:
        return await self.http.get(path, headers=_bearer(token))

    async def _send(self, method: str, token: str, path: str, **kwargs) -> httpx.Response:
        try:
            if method == "GET":
                return await self._get(token, path)
            return await self.http.request(method, path, headers=_bearer(token), **kwargs)
        except httpx.TransportError as e:
            raise NetworkUnavailable(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, lookup: bool = False) -> None:
        """Raise for failures. A 404 is NotFound only for lookups; elsewhere it is a server error."""
        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise Unauthorized("Session token rejected")
        if lookup and response.status_code == httpx.codes.NOT_FOUND:
            raise NotFound(response.request.url.path)
        if response.is_error:
            request = response.request
            raise NetworkUnavailable(f"{request.method} {request.url.path} returned {response.status_code}")

    async def list_sets(self, token: str) -> list[FlashcardSet]:
        response = await self._send("GET", token, FLASHCARD_SETS)
        self._check(response)
        return _decode(response, lambda items: [FlashcardSetSchema.model_validate(item).to_domain() for item in items])

    async def get_set(self, token: str, set_id: str) -> FlashcardSet | None:
        response = await self._send("GET", token, flashcard_set_route(set_id))
        try:
            self._check(response, lookup=True)
        except NotFound:
            return None
        return _decode(response, lambda item: FlashcardSetSchema.model_validate(item).to_domain())

    async def create_set(self, token: str, flashcard_set: FlashcardSet) -> FlashcardSet:
        """Push a set; the returned set is the server's acknowledgement."""
        body = FlashcardSetSchema.from_domain(flashcard_set).model_dump(by_alias=True)
        response = await self._send("POST", token, FLASHCARD_SETS, json=body)
        self._check(response)
        return _decode(response, lambda item: FlashcardSetSchema.model_validate(item).to_domain())

    async def delete_set(self, token: str, set_id: str) -> bool:
        """Return True if the server deleted the set, False if it never had it."""
        response = await self._send("DELETE", token, flashcard_set_route(set_id))
        try:
            self._check(response, lookup=True)
        except NotFound:
            return False
        return True

    async def get_randomized(self, token: str, set_id: str) -> list[Flashcard] | None:
        response = await self._send("GET", token, randomized_flashcards_route(set_id))
        try:
            self._check(response, lookup=True)
        except NotFound:
            return None
        return _decode(response, lambda items: [FlashcardSchema.model_validate(item).to_domain() for item in items])

    async def generate(
        self, token: str, topic: str, count: int, user_query: str, api_key: str | None = None
    ) -> FlashcardSet:
        """Run server-side generation. The result is not saved anywhere.

        ``api_key`` is a legacy client-held Gemini key, sent only when the user has one stored.
        """
        request = GenerateRequest(topic=topic, count=count, user_query=user_query, api_key=api_key)
        body = request.model_dump(by_alias=True, exclude_none=True)
        response = await self._send("POST", token, GENERATE, json=body)
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            error = _decode(response, RateLimitError.model_validate)
            raise RateLimited(error.message, error.try_again_at, error.number_of_generations)
        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise Unauthorized("Session token rejected")
        try:
            payload = GenerateResponse.model_validate(response.json())
        except ValueError:
            payload = GenerateResponse()
        if response.is_error or payload.flashcard_set is None:
            raise NetworkUnavailable(payload.error or "Failed to generate flashcards")
        return payload.flashcard_set.to_domain()
