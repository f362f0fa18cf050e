"""Tests for AuthGateway and SessionContext."""

import asyncio

import httpx
import pytest

from backend.errors import AuthServiceUnreachable, NetworkUnavailable, StorageUnavailable, Unauthorized
from client.auth_gateway import AuthGateway, SessionContext, SignInStatus
from client.models import AuthResponse, OAuthProvider, SessionState, SignedIn, SignedOut
from client.remote import RemoteFlashcardClient, create_http_client
from client.session_store import (
    GEMINI_API_KEY_KEY,
    OAUTH_PROVIDER_KEY,
    SESSION_TOKEN_KEY,
    InMemorySessionStore,
)
from client.sync_repository import FlashcardSyncRepository


class _BrokenSessionStore(InMemorySessionStore):
    """Reads work until ``broken`` is set; then every access fails."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.broken = False

    async def _read(self, key: str) -> str | None:
        if self.broken:
            raise StorageUnavailable("disk gone")
        return await super()._read(key)

    async def _write(self, key: str, value: str | None) -> None:
        if self.broken:
            raise StorageUnavailable("disk gone")
        await super()._write(key, value)


class TestSessionContext:
    @pytest.mark.asyncio
    async def test_load_signed_in(self) -> None:
        store = InMemorySessionStore({SESSION_TOKEN_KEY: "tok", OAUTH_PROVIDER_KEY: "APPLE"})
        state = await SessionContext(store).load()
        assert state == SignedIn("tok", OAuthProvider.APPLE)

    @pytest.mark.asyncio
    async def test_load_token_without_provider_defaults_to_google(self) -> None:
        store = InMemorySessionStore({SESSION_TOKEN_KEY: "tok"})
        assert await SessionContext(store).load() == SignedIn("tok", OAuthProvider.GOOGLE)

    @pytest.mark.asyncio
    async def test_load_empty_store(self) -> None:
        assert await SessionContext(InMemorySessionStore()).load() == SignedOut()

    @pytest.mark.asyncio
    async def test_load_broken_store_is_signed_out(self) -> None:
        store = _BrokenSessionStore({SESSION_TOKEN_KEY: "tok"})
        store.broken = True
        assert await SessionContext(store).load() == SignedOut()


class TestSignIn:
    @pytest.mark.asyncio
    async def test_success_persists_token_and_provider(self, gateway: AuthGateway, session_store) -> None:
        result = await gateway.sign_in(OAuthProvider.GOOGLE)
        assert result.ok
        assert result.status is SignInStatus.SIGNED_IN
        assert await session_store.get_session_token() == "token-abc"
        assert await session_store.get_oauth_provider() is OAuthProvider.GOOGLE
        assert gateway.state == SignedIn("token-abc", OAuthProvider.GOOGLE)
        assert await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_cancelled(self, gateway: AuthGateway, oauth_handler, session_store) -> None:
        oauth_handler.response = None
        result = await gateway.sign_in(OAuthProvider.APPLE)
        assert result.status is SignInStatus.CANCELLED
        assert result.error == "Apple sign-in failed. Please try again."
        assert await session_store.get_session_token() is None
        assert gateway.state == SignedOut()

    @pytest.mark.asyncio
    async def test_auth_service_unreachable(self, gateway: AuthGateway, oauth_handler) -> None:
        oauth_handler.error = AuthServiceUnreachable("Could not start Google login")
        result = await gateway.sign_in(OAuthProvider.GOOGLE)
        assert result.status is SignInStatus.FAILED
        assert "Could not start" in result.error
        assert not await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_storage_failure_reports_failed(self, oauth_handler) -> None:
        store = _BrokenSessionStore()
        store.broken = True
        gateway = AuthGateway(SessionContext(store), oauth_handler)
        result = await gateway.sign_in(OAuthProvider.GOOGLE)
        assert result.status is SignInStatus.FAILED
        assert gateway.state == SignedOut()

    @pytest.mark.asyncio
    async def test_concurrent_sign_ins_share_one_handshake(self, gateway: AuthGateway, oauth_handler) -> None:
        oauth_handler.release = asyncio.Event()
        first = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        second = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        await asyncio.sleep(0.01)
        oauth_handler.release.set()

        results = await asyncio.gather(first, second)
        assert oauth_handler.calls == [OAuthProvider.GOOGLE]
        assert results[0] == results[1]
        assert results[0].ok

    @pytest.mark.asyncio
    async def test_new_handshake_after_previous_finished(self, gateway: AuthGateway, oauth_handler) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        await gateway.sign_in(OAuthProvider.GOOGLE)
        assert len(oauth_handler.calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_sign_in(self, gateway: AuthGateway, oauth_handler, session_store) -> None:
        oauth_handler.release = asyncio.Event()
        task = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        await asyncio.sleep(0.01)

        assert gateway.cancel_sign_in(OAuthProvider.GOOGLE) is True
        result = await task
        assert result.status is SignInStatus.CANCELLED
        assert await session_store.get_session_token() is None
        assert gateway.cancel_sign_in(OAuthProvider.GOOGLE) is False

    @pytest.mark.asyncio
    async def test_cancel_sign_in_reaches_every_caller(self, gateway: AuthGateway, oauth_handler) -> None:
        oauth_handler.release = asyncio.Event()
        callers = [asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE)) for _ in range(2)]
        await asyncio.sleep(0.01)

        gateway.cancel_sign_in(OAuthProvider.GOOGLE)
        results = await asyncio.gather(*callers)
        assert [r.status for r in results] == [SignInStatus.CANCELLED, SignInStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_caller_going_away_leaves_handshake_for_others(self, gateway: AuthGateway, oauth_handler) -> None:
        oauth_handler.release = asyncio.Event()
        first = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        second = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        await asyncio.sleep(0.01)

        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        oauth_handler.release.set()
        result = await first
        assert result.ok
        assert oauth_handler.calls == [OAuthProvider.GOOGLE]
        assert await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_last_caller_going_away_cancels_handshake(
        self, gateway: AuthGateway, oauth_handler, session_store
    ) -> None:
        oauth_handler.release = asyncio.Event()
        caller = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        await asyncio.sleep(0.01)

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.sleep(0.01)
        assert gateway.cancel_sign_in(OAuthProvider.GOOGLE) is False

        oauth_handler.release.set()
        await asyncio.sleep(0.01)
        assert await session_store.get_session_token() is None

    @pytest.mark.asyncio
    async def test_sign_in_after_cancel_starts_fresh(self, gateway: AuthGateway, oauth_handler) -> None:
        oauth_handler.release = asyncio.Event()
        first = asyncio.create_task(gateway.sign_in(OAuthProvider.GOOGLE))
        await asyncio.sleep(0.01)
        gateway.cancel_sign_in(OAuthProvider.GOOGLE)

        oauth_handler.release.set()
        assert (await first).status is SignInStatus.CANCELLED
        assert (await gateway.sign_in(OAuthProvider.GOOGLE)).ok
        assert len(oauth_handler.calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_without_handshake(self, gateway: AuthGateway) -> None:
        assert gateway.cancel_sign_in(OAuthProvider.APPLE) is False


class TestSignOut:
    @pytest.mark.asyncio
    async def test_clears_session_and_logs_out_remotely(self, gateway: AuthGateway, auth_api, session_store) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        await gateway.sign_out()
        assert await session_store.get_session_token() is None
        assert await session_store.get(OAUTH_PROVIDER_KEY) is None
        assert auth_api.logged_out == ["token-abc"]
        assert gateway.state == SignedOut()

    @pytest.mark.asyncio
    async def test_is_idempotent(self, gateway: AuthGateway, auth_api) -> None:
        await gateway.sign_out()
        await gateway.sign_out()
        assert auth_api.logged_out == []
        assert not await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_remote_logout_failure_still_signs_out(self, gateway: AuthGateway, auth_api) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        auth_api.error = NetworkUnavailable("offline")
        await gateway.sign_out()
        assert not await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_storage_failure_still_flips_state(self, oauth_handler) -> None:
        store = _BrokenSessionStore()
        gateway = AuthGateway(SessionContext(store), oauth_handler)
        await gateway.sign_in(OAuthProvider.GOOGLE)
        store.broken = True
        await gateway.sign_out()
        assert gateway.state == SignedOut()
        # A store that cannot be read counts as signed out
        assert not await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_expire_session(self, gateway: AuthGateway) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        message = await gateway.expire_session()
        assert message == "Session expired, please sign in again."
        assert gateway.state == SignedOut(expired=True)
        assert not await gateway.is_signed_in()


class TestAppAccess:
    @pytest.mark.asyncio
    async def test_legacy_api_key_grants_access_but_not_sign_in(self, oauth_handler) -> None:
        store = InMemorySessionStore({GEMINI_API_KEY_KEY: "AIza-legacy"})
        gateway = AuthGateway(SessionContext(store), oauth_handler)
        assert await gateway.has_app_access()
        assert not await gateway.is_signed_in()
        assert await gateway.get_session_token() is None

    @pytest.mark.asyncio
    async def test_no_credentials(self, gateway: AuthGateway) -> None:
        assert not await gateway.has_app_access()

    @pytest.mark.asyncio
    async def test_session_grants_access(self, gateway: AuthGateway) -> None:
        await gateway.sign_in(OAuthProvider.APPLE)
        assert await gateway.has_app_access()


class TestCompleteRedirect:
    @pytest.mark.asyncio
    async def test_landing_with_token(self, gateway: AuthGateway) -> None:
        result = await gateway.complete_redirect("https://flashcards.solenne.ai/?auth-redirect=true&token=web-tok")
        assert result.ok
        assert result.provider is OAuthProvider.GOOGLE
        assert await gateway.get_session_token() == "web-tok"

    @pytest.mark.asyncio
    async def test_landing_with_provider(self, gateway: AuthGateway) -> None:
        url = "https://flashcards.solenne.ai/?auth-redirect=true&token=t&provider=APPLE"
        result = await gateway.complete_redirect(url)
        assert gateway.state == SignedIn("t", OAuthProvider.APPLE)
        assert result.provider is OAuthProvider.APPLE

    @pytest.mark.asyncio
    async def test_landing_with_error(self, gateway: AuthGateway) -> None:
        result = await gateway.complete_redirect("https://flashcards.solenne.ai/?auth-redirect=true&error=denied")
        assert result.status is SignInStatus.FAILED
        assert result.error == "denied"
        assert not await gateway.is_signed_in()

    @pytest.mark.asyncio
    async def test_ordinary_page_load(self, gateway: AuthGateway) -> None:
        assert await gateway.complete_redirect("https://flashcards.solenne.ai/sets") is None


class TestListeners:
    @pytest.mark.asyncio
    async def test_listeners_see_every_transition(self, gateway: AuthGateway) -> None:
        seen: list[SessionState] = []

        async def listener(state: SessionState) -> None:
            seen.append(state)

        gateway.subscribe(listener)
        await gateway.sign_in(OAuthProvider.GOOGLE)
        await gateway.expire_session()
        assert seen == [SignedIn("token-abc", OAuthProvider.GOOGLE), SignedOut(expired=True)]

    @pytest.mark.asyncio
    async def test_listener_may_transition_again(self, gateway: AuthGateway) -> None:
        async def listener(state: SessionState) -> None:
            if isinstance(state, SignedIn):
                await gateway.expire_session()

        gateway.subscribe(listener)
        await asyncio.wait_for(gateway.sign_in(OAuthProvider.GOOGLE), timeout=1)
        assert gateway.state == SignedOut(expired=True)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_sign_in(self, gateway: AuthGateway) -> None:
        async def listener(state: SessionState) -> None:
            raise NetworkUnavailable("listener offline")

        gateway.subscribe(listener)
        result = await gateway.sign_in(OAuthProvider.GOOGLE)
        assert result.ok

    @pytest.mark.asyncio
    async def test_malformed_remote_sets_do_not_break_sign_in(self, gateway: AuthGateway, flashcard_store) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": "x", "topic": "t"}])

        async with create_http_client("http://test", transport=httpx.MockTransport(handler)) as http:
            repository = FlashcardSyncRepository(gateway, RemoteFlashcardClient(http), flashcard_store)
            gateway.subscribe(repository.handle_session_change)
            result = await gateway.sign_in(OAuthProvider.GOOGLE)
            report = await repository.reconcile()
        assert result.ok
        assert await gateway.is_signed_in()
        assert report.failed
        assert not report.session_expired


class TestCurrentUser:
    @pytest.mark.asyncio
    async def test_signed_in(self, gateway: AuthGateway) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        user = await gateway.current_user()
        assert user.auth_id == "google:token-abc"

    @pytest.mark.asyncio
    async def test_signed_out(self, gateway: AuthGateway) -> None:
        assert await gateway.current_user() is None

    @pytest.mark.asyncio
    async def test_rejected_token_expires_session(self, gateway: AuthGateway, auth_api) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        auth_api.me_error = Unauthorized("rejected")
        assert await gateway.current_user() is None
        assert gateway.state == SignedOut(expired=True)

    @pytest.mark.asyncio
    async def test_unreachable_keeps_session(self, gateway: AuthGateway, auth_api) -> None:
        await gateway.sign_in(OAuthProvider.GOOGLE)
        auth_api.me_error = AuthServiceUnreachable("down")
        assert await gateway.current_user() is None
        assert await gateway.is_signed_in()


@pytest.mark.asyncio
async def test_sign_in_with_explicit_response() -> None:
    class _Handler:
        async def start_oauth_flow(self, provider: OAuthProvider) -> AuthResponse:
            return AuthResponse("apple-tok", provider)

    store = InMemorySessionStore()
    gateway = AuthGateway(SessionContext(store), _Handler())  # type: ignore[arg-type]
    await gateway.sign_in(OAuthProvider.APPLE)
    assert await store.get_oauth_provider() is OAuthProvider.APPLE
