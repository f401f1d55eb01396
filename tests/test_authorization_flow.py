# Tests for oauth/flow.py (PKCE redirect path)

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from site_deployer.errors import (
    ConfigurationError,
    CSRFMismatch,
    MalformedCallback,
    OAuthProviderError,
    TokenExchangeFailed,
)
from site_deployer.oauth.flow import AuthorizationFlow
from site_deployer.oauth.pkce import compute_code_challenge
from site_deployer.oauth.state import AUTH_STATE_KEY, TOKEN_KEY, MemoryEphemeralStore

from .conftest import CLIENT_ID, REDIRECT_URI


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _callback(state: str, code: str = "code_xyz") -> str:
    return f"{REDIRECT_URI}?code={code}&state={state}"


class TestBuildAuthorizationUrl:
    def test_url_carries_all_parameters(self, flow):
        url = flow.build_authorization_url(["user:email", "public_repo"])
        assert url.startswith("https://github.com/login/oauth/authorize?")
        params = _query(url)
        assert params["client_id"] == CLIENT_ID
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["scope"] == "user:email public_repo"
        assert params["code_challenge_method"] == "S256"
        assert params["response_type"] == "code"
        assert params["state"]

    def test_challenge_matches_stored_verifier(self, flow, store):
        import json

        params = _query(flow.build_authorization_url())
        stored = json.loads(store.get(AUTH_STATE_KEY))
        assert stored["state"] == params["state"]
        assert compute_code_challenge(stored["code_verifier"]) == params["code_challenge"]

    def test_default_scopes(self, flow):
        assert _query(flow.build_authorization_url())["scope"] == "user:email public_repo"

    def test_requires_client_id(self, store):
        with pytest.raises(ConfigurationError):
            AuthorizationFlow("", REDIRECT_URI, store).build_authorization_url()


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_success_returns_token(self, flow, github):
        state = _query(flow.build_authorization_url(["user:email"]))["state"]
        token = await flow.handle_callback(_callback(state))
        assert token == "tok_abc"

        sent = github.token_requests[-1]
        assert sent["client_id"] == CLIENT_ID
        assert sent["code"] == "code_xyz"
        assert sent["code_verifier"]
        assert "client_secret" not in sent

    @pytest.mark.asyncio
    async def test_attempt_is_single_use(self, flow, store):
        state = _query(flow.build_authorization_url())["state"]
        await flow.handle_callback(_callback(state))
        assert store.get(AUTH_STATE_KEY) is None
        with pytest.raises(CSRFMismatch):
            await flow.handle_callback(_callback(state))

    @pytest.mark.asyncio
    async def test_state_mismatch(self, flow, store):
        state = _query(flow.build_authorization_url())["state"]
        store.set(TOKEN_KEY, "old_token")
        with pytest.raises(CSRFMismatch):
            await flow.handle_callback(_callback(state[:-1] + ("A" if state[-1] != "A" else "B")))
        # Treated as an attack: all auth state is gone
        assert store.get(AUTH_STATE_KEY) is None
        assert store.get(TOKEN_KEY) is None

    @pytest.mark.asyncio
    async def test_no_stored_attempt(self, flow):
        with pytest.raises(CSRFMismatch):
            await flow.handle_callback(_callback("anything"))

    @pytest.mark.asyncio
    async def test_expired_attempt_rejected_at_five_minutes(self, flow, clock, github):
        state = _query(flow.build_authorization_url())["state"]
        clock.now += 300
        with pytest.raises(CSRFMismatch):
            await flow.handle_callback(_callback(state))
        assert github.token_requests == []

    @pytest.mark.asyncio
    async def test_attempt_accepted_at_four_fifty_nine(self, flow, clock):
        state = _query(flow.build_authorization_url())["state"]
        clock.now += 299
        assert await flow.handle_callback(_callback(state)) == "tok_abc"

    @pytest.mark.asyncio
    async def test_provider_error(self, flow, store):
        flow.build_authorization_url()
        with pytest.raises(OAuthProviderError) as exc_info:
            await flow.handle_callback(
                f"{REDIRECT_URI}?error=access_denied&error_description=User+denied"
            )
        assert exc_info.value.error == "access_denied"
        assert "User denied" in exc_info.value.message
        assert store.get(AUTH_STATE_KEY) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["code=abc", "state=abc", ""])
    async def test_malformed_callback(self, flow, query):
        flow.build_authorization_url()
        with pytest.raises(MalformedCallback):
            await flow.handle_callback(f"{REDIRECT_URI}?{query}")

    @pytest.mark.asyncio
    async def test_exchange_error_body(self, flow, github, store):
        github.exchange_error = {
            "error": "bad_verification_code",
            "error_description": "The code passed is incorrect or expired.",
        }
        state = _query(flow.build_authorization_url())["state"]
        with pytest.raises(TokenExchangeFailed, match="incorrect or expired"):
            await flow.handle_callback(_callback(state))
        assert store.get(AUTH_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_exchange_http_failure(self, flow, github):
        github.exchange_status = 502
        state = _query(flow.build_authorization_url())["state"]
        with pytest.raises(TokenExchangeFailed, match="502"):
            await flow.handle_callback(_callback(state))

    @pytest.mark.asyncio
    async def test_exchange_transport_failure(self, store, clock):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        flow = AuthorizationFlow(
            CLIENT_ID,
            REDIRECT_URI,
            store,
            http=httpx.AsyncClient(transport=httpx.MockTransport(boom)),
            clock=clock,
        )
        state = _query(flow.build_authorization_url())["state"]
        with pytest.raises(TokenExchangeFailed):
            await flow.handle_callback(_callback(state))
        assert store.get(AUTH_STATE_KEY) is None


class TestCallbackHelpers:
    def test_is_callback(self):
        assert AuthorizationFlow.is_callback(f"{REDIRECT_URI}?code=a&state=b")
        assert not AuthorizationFlow.is_callback(f"{REDIRECT_URI}?code=a")
        assert not AuthorizationFlow.is_callback(f"{REDIRECT_URI}?error=access_denied")
        assert not AuthorizationFlow.is_callback(None)

    def test_has_callback_params(self):
        assert AuthorizationFlow.has_callback_params(f"{REDIRECT_URI}?code=a")
        assert AuthorizationFlow.has_callback_params(f"{REDIRECT_URI}?state=b")
        assert AuthorizationFlow.has_callback_params(f"{REDIRECT_URI}?error=access_denied")
        assert not AuthorizationFlow.has_callback_params("http://localhost:8000/")
        assert not AuthorizationFlow.has_callback_params(None)

    def test_validate_redirect_uri(self):
        flow = AuthorizationFlow(CLIENT_ID, REDIRECT_URI, MemoryEphemeralStore())
        assert flow.validate_redirect_uri(f"{REDIRECT_URI}?code=1")
        assert not flow.validate_redirect_uri("http://evil.example/auth/callback")
        assert not flow.validate_redirect_uri("http://localhost:8000/other")


class TestTokenPersistence:
    def test_remember_and_forget(self, flow, store):
        flow.remember_token("tok")
        assert flow.stored_token() == "tok"
        flow.forget_token()
        assert store.get(TOKEN_KEY) is None
