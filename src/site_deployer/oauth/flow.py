"""GitHub OAuth authorization engine: PKCE redirect flow and Device Flow."""

import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from ..config import settings
from ..errors import (
    ConfigurationError,
    CSRFMismatch,
    MalformedCallback,
    OAuthProviderError,
    TokenExchangeFailed,
)
from ..utils import auth_trace, mask
from .device import DEVICE_GRANT_TYPE, DeviceFlowSession
from .pkce import generate_csrf_state, generate_pkce
from .state import (
    TOKEN_KEY,
    AuthAttemptState,
    AuthAttemptStore,
    SecureEphemeralStore,
)

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json"}


def _query_params(url: str) -> Dict[str, str]:
    """Return the first value of each query parameter in ``url``."""
    parsed = parse_qs(urlparse(url).query, keep_blank_values=False)
    return {key: values[0] for key, values in parsed.items() if values}


class AuthorizationFlow:
    """
    Obtains GitHub bearer tokens without a client secret.

    Two paths are supported: the PKCE redirect flow (``build_authorization_url``
    then ``handle_callback``) and the Device Authorization Flow
    (``start_device_flow``). Both only ever produce a token; adopting it into
    a session is the caller's job.

    The engine is the sole writer of the ephemeral store: it keeps the
    in-flight attempt and, on request, the bearer token.
    """

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        store: SecureEphemeralStore,
        *,
        http: Optional[httpx.AsyncClient] = None,
        authorize_url: Optional[str] = None,
        token_url: Optional[str] = None,
        device_code_url: Optional[str] = None,
        default_scopes: Optional[List[str]] = None,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        timeout: Optional[float] = None,
        trace: Optional[bool] = None,
    ):
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self._store = store
        self._http = http
        self._authorize_url = authorize_url or settings.github_authorize_url
        self._token_url = token_url or settings.github_token_url
        self._device_code_url = device_code_url or settings.github_device_code_url
        self._default_scopes = list(default_scopes or settings.default_scopes)
        self._attempts = AuthAttemptStore(
            store,
            ttl_seconds=ttl_seconds if ttl_seconds is not None else settings.auth_state_ttl_seconds,
            clock=clock,
        )
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._trace = settings.auth_debug if trace is None else trace

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                yield client

    def _require_client_id(self) -> None:
        if not self.client_id:
            raise ConfigurationError(
                "GitHub client ID is not configured. Set GITHUB_CLIENT_ID."
            )

    # ------------------------------------------------------------------
    # PKCE redirect flow
    # ------------------------------------------------------------------

    def build_authorization_url(self, scopes: Optional[List[str]] = None) -> str:
        """
        Start a PKCE attempt and return the GitHub authorize URL.

        A new attempt replaces any previous one in the store.

        Args:
            scopes: Requested scopes (defaults to the configured set)

        Returns:
            The URL the user agent should be sent to

        Raises:
            ConfigurationError: If no client ID is configured
        """
        self._require_client_id()
        scopes = list(scopes) if scopes else list(self._default_scopes)

        pkce = generate_pkce()
        state = generate_csrf_state()

        self._attempts.save(
            AuthAttemptState(
                state=state,
                code_verifier=pkce.code_verifier,
                created_at=self._clock(),
                redirect_uri=self.redirect_uri,
                requested_scopes=scopes,
            )
        )

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
            "response_type": "code",
        }
        auth_trace(logger, self._trace, f"authorize URL built, state={mask(state)}")
        return f"{self._authorize_url}?{urlencode(params)}"

    @staticmethod
    def is_callback(url: Optional[str]) -> bool:
        """Check whether ``url`` carries an OAuth callback (code and state)."""
        if not url:
            return False
        params = _query_params(url)
        return "code" in params and "state" in params

    @staticmethod
    def has_callback_params(url: Optional[str]) -> bool:
        """Check whether ``url`` carries any callback parameter, complete or not."""
        if not url:
            return False
        params = _query_params(url)
        return any(key in params for key in ("code", "state", "error"))

    def validate_redirect_uri(self, uri: str) -> bool:
        """Check ``uri`` targets the configured redirect URI (origin and path)."""
        try:
            candidate = urlparse(uri)
            configured = urlparse(self.redirect_uri)
        except ValueError:
            return False
        return (
            candidate.scheme == configured.scheme
            and candidate.netloc == configured.netloc
            and candidate.path == configured.path
        )

    async def handle_callback(self, callback_url: str) -> str:
        """
        Validate an OAuth callback and exchange its code for a token.

        The stored attempt is cleared on every exit path, so a callback can
        only ever be redeemed once.

        Args:
            callback_url: Full callback URL including its query string

        Returns:
            The access token

        Raises:
            OAuthProviderError: GitHub returned ``error`` on the callback
            MalformedCallback: ``code`` or ``state`` is missing
            CSRFMismatch: No live attempt, or the state does not match
            TokenExchangeFailed: The token endpoint rejected the exchange
        """
        params = _query_params(callback_url)
        code = params.get("code")
        state = params.get("state")
        error = params.get("error")

        try:
            if error:
                raise OAuthProviderError(error, params.get("error_description"))

            if not code or not state:
                raise MalformedCallback("Missing authorization code or state parameter")

            attempt = self._attempts.load()
            if attempt is None or not secrets.compare_digest(
                attempt.state.encode("utf-8"), state.encode("utf-8")
            ):
                raise CSRFMismatch("Invalid state parameter - possible CSRF attack")

            return await self._exchange_code(code, attempt)

        except (CSRFMismatch, MalformedCallback) as e:
            logger.warning(f"Rejected OAuth callback: {e.message}")
            self._store.clear(TOKEN_KEY)
            raise
        finally:
            self._attempts.clear()

    async def _exchange_code(self, code: str, attempt: AuthAttemptState) -> str:
        auth_trace(logger, self._trace, f"exchanging code={mask(code)}")
        async with self._client() as client:
            try:
                response = await client.post(
                    self._token_url,
                    data={
                        "client_id": self.client_id,
                        "code": code,
                        "code_verifier": attempt.code_verifier,
                        "redirect_uri": attempt.redirect_uri,
                    },
                    headers=JSON_HEADERS,
                )
            except httpx.HTTPError as e:
                logger.error(f"Token exchange request failed: {e}")
                raise TokenExchangeFailed(f"Token exchange failed: {e}") from e

        if not response.is_success:
            logger.error(f"Token exchange error: {response.status_code}")
            raise TokenExchangeFailed(
                f"Token exchange failed: {response.status_code}",
                detail=response.text,
            )

        try:
            token_data = response.json()
        except ValueError:
            raise TokenExchangeFailed(
                "Token exchange returned an invalid response", detail=response.text
            ) from None

        if token_data.get("error"):
            raise TokenExchangeFailed(
                "Token exchange error: "
                f"{token_data.get('error_description') or token_data['error']}",
                detail=token_data["error"],
            )

        token = token_data.get("access_token")
        if not token:
            raise TokenExchangeFailed("No access token received", detail=response.text)

        auth_trace(logger, self._trace, f"token obtained {mask(token)}")
        return token

    # ------------------------------------------------------------------
    # Device flow
    # ------------------------------------------------------------------

    async def start_device_flow(self, scopes: Optional[List[str]] = None) -> DeviceFlowSession:
        """
        Request a device code and return a session ready to poll.

        Args:
            scopes: Requested scopes (defaults to the configured set)

        Returns:
            DeviceFlowSession with the user code and verification URI

        Raises:
            ConfigurationError: If no client ID is configured
            OAuthProviderError: If GitHub refuses to issue a device code
        """
        self._require_client_id()
        scopes = list(scopes) if scopes else list(self._default_scopes)

        async with self._client() as client:
            try:
                response = await client.post(
                    self._device_code_url,
                    data={"client_id": self.client_id, "scope": " ".join(scopes)},
                    headers=JSON_HEADERS,
                )
            except httpx.HTTPError as e:
                logger.error(f"Device code request failed: {e}")
                raise OAuthProviderError("device_code_request_failed", str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success or data.get("error"):
            logger.error(f"Device code error: {response.status_code} - {data or response.text}")
            raise OAuthProviderError(
                data.get("error", "device_code_request_failed"),
                data.get("error_description") or f"HTTP {response.status_code}",
            )

        missing = [
            key
            for key in ("device_code", "user_code", "verification_uri", "expires_in")
            if not data.get(key)
        ]
        if missing:
            raise OAuthProviderError(
                "invalid_response", f"Device code response missing {', '.join(missing)}"
            )

        device_code = data["device_code"]
        kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        session = DeviceFlowSession(
            device_code=device_code,
            user_code=data["user_code"],
            verification_uri=data["verification_uri"],
            expires_in=int(data["expires_in"]),
            interval=float(data.get("interval") or 5),
            request_token=lambda: self._request_device_token(device_code),
            clock=self._monotonic,
            wall_clock=self._clock,
            **kwargs,
        )
        logger.info(f"Device flow started, user code {session.user_code}")
        return session

    async def _request_device_token(self, device_code: str) -> Dict[str, Any]:
        """One poll of the token endpoint; transport failures become an error payload."""
        async with self._client() as client:
            try:
                response = await client.post(
                    self._token_url,
                    data={
                        "client_id": self.client_id,
                        "device_code": device_code,
                        "grant_type": DEVICE_GRANT_TYPE,
                    },
                    headers=JSON_HEADERS,
                )
            except httpx.HTTPError as e:
                logger.warning(f"Device token poll failed: {e}")
                return {"error": "transport_error", "error_description": str(e)}

        try:
            data = response.json()
        except ValueError:
            return {"error": "invalid_response", "error_description": response.text}

        if not isinstance(data, dict):
            return {"error": "invalid_response"}
        if not response.is_success and not data.get("error"):
            data["error"] = f"http_{response.status_code}"
        return data

    # ------------------------------------------------------------------
    # Token persistence
    # ------------------------------------------------------------------

    def remember_token(self, token: str) -> None:
        self._store.set(TOKEN_KEY, token)

    def stored_token(self) -> Optional[str]:
        return self._store.get(TOKEN_KEY)

    def forget_token(self) -> None:
        self._store.clear(TOKEN_KEY)

    def reset(self) -> None:
        """Drop every piece of auth state held in the store."""
        self._attempts.clear()
        self._store.clear(TOKEN_KEY)
