"""Async HTTP client for the GitHub REST API."""

import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ..config import settings
from ..errors import (
    AuthenticationError,
    GitHubAPIError,
    GitHubErrorKind,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from .errors import RateLimitSnapshot, classify_response

logger = logging.getLogger(__name__)

RETRY_ON = frozenset({GitHubErrorKind.RATE_LIMITED, GitHubErrorKind.SERVER})


def _segment(value: str) -> str:
    return quote(value, safe="")


def _content_path(owner: str, repo: str, path: str) -> str:
    encoded = "/".join(_segment(part) for part in path.split("/"))
    return f"/repos/{_segment(owner)}/{_segment(repo)}/contents/{encoded}"


def encode_content(content: str) -> str:
    """Base64 encode UTF-8 text for the contents API."""
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_content(encoded: str) -> bytes:
    """Decode a contents API payload (base64, possibly wrapped with newlines)."""
    return base64.b64decode("".join(encoded.split()))


class GitHubClient:
    """
    Async HTTP client for GitHub REST API calls.

    Knows nothing about OAuth: a bearer token goes in, decoded JSON or a
    classified GitHubAPIError comes out. Rate limited and 5xx responses and
    transport failures are retried a bounded number of times; everything
    else fails immediately.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        network_base_delay: Optional[float] = None,
        user_agent: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._token = token
        self._api_url = (api_url or settings.github_api_url).rstrip("/")
        self._client = http
        self._owns_client = http is None
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._max_retries = max_retries if max_retries is not None else settings.max_retries
        self._base_delay = (
            base_delay if base_delay is not None else settings.retry_base_delay_seconds
        )
        self._network_base_delay = (
            network_base_delay
            if network_base_delay is not None
            else settings.network_retry_base_delay_seconds
        )
        self._user_agent = user_agent or settings.user_agent
        self._sleep = sleep
        self._clock = clock
        self.rate_limit: Optional[RateLimitSnapshot] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=False,  # Don't follow redirects to prevent token leakage
            )
            self._owns_client = True
            logger.info("GitHub HTTP client initialized")

    async def stop(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("GitHub HTTP client closed")

    async def __aenter__(self) -> "GitHubClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Token
    # ------------------------------------------------------------------

    def set_token(self, token: str) -> None:
        self._token = token

    def clear_token(self) -> None:
        self._token = None

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Send a request with retry, returning the successful response.

        Raises:
            AuthenticationError: If no token is set or GitHub returns 401
            GitHubAPIError: The classified failure once retries are exhausted
        """
        if not self._token:
            raise AuthenticationError("No authentication token available")
        if self._client is None:
            await self.start()

        url = f"{self._api_url}{path}"
        attempt = 0

        while True:
            try:
                response = await self._client.request(
                    method, url, json=json, params=params, headers=self._headers()
                )
            except httpx.TransportError as e:
                if attempt < self._max_retries:
                    attempt += 1
                    delay = self._network_base_delay * attempt
                    logger.warning(
                        f"{method} {path} network error ({e!r}), retry {attempt} in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                logger.error(f"{method} {path} failed after {attempt + 1} attempts: {e!r}")
                raise NetworkError(
                    "GitHub: Network error. Check your connection and retry.",
                    detail=str(e),
                ) from e

            snapshot = RateLimitSnapshot.from_headers(response.headers)
            if snapshot is not None:
                self.rate_limit = snapshot

            if response.is_success:
                return response

            error = classify_response(response, clock=self._clock)
            if error.kind in RETRY_ON and attempt < self._max_retries:
                attempt += 1
                delay = (
                    error.retry_after
                    if error.retry_after is not None
                    else self._base_delay * attempt
                )
                logger.warning(
                    f"{method} {path} returned {response.status_code} ({error.kind.value}), "
                    f"retry {attempt} in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            logger.debug(f"{method} {path} failed: {error!r}")
            raise error

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated request to the GitHub API.

        Args:
            method: HTTP method
            path: API path starting with ``/``
            json: Optional JSON body
            params: Optional query parameters

        Returns:
            Decoded JSON body; ``{}`` for 204 or an empty/invalid body

        Raises:
            GitHubAPIError: Classified failure (see ``errors.GitHubErrorKind``)
        """
        response = await self._send(method, path, json=json, params=params)
        return self._decode(response)

    # ------------------------------------------------------------------
    # Users and repositories
    # ------------------------------------------------------------------

    async def get_user(self) -> Dict[str, Any]:
        """Get authenticated user information."""
        return await self.request("GET", "/user")

    async def get_user_with_scopes(self) -> Tuple[Dict[str, Any], List[str]]:
        """Get the authenticated user and the token's granted scopes in one call."""
        response = await self._send("GET", "/user")
        return self._decode(response), _parse_scopes(response.headers.get("X-OAuth-Scopes"))

    async def get_token_scopes(self) -> List[str]:
        """Get the scopes granted to the current token."""
        _, scopes = await self.get_user_with_scopes()
        return scopes

    async def list_user_repositories(self, **filters: Any) -> List[Dict[str, Any]]:
        """
        Get the user's repositories.

        Args:
            filters: GitHub query filters (type, sort, direction, per_page, page)
        """
        params = {key: value for key, value in filters.items() if value is not None}
        result = await self.request("GET", "/user/repos", params=params or None)
        return result if isinstance(result, list) else []

    async def create_repository(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new repository for the authenticated user."""
        return await self.request("POST", "/user/repos", json=params)

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{_segment(owner)}/{_segment(repo)}")

    async def delete_repository(self, owner: str, repo: str) -> None:
        """Delete a repository (the token needs the ``delete_repo`` scope)."""
        await self.request("DELETE", f"/repos/{_segment(owner)}/{_segment(repo)}")
        logger.info(f"Deleted repository {owner}/{repo}")

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    async def get_file_content(self, owner: str, repo: str, path: str) -> Dict[str, Any]:
        """
        Get file metadata and base64 content.

        Raises:
            NotFoundError: If the path does not exist
            ValidationError: If the path is a directory
        """
        result = await self.request("GET", _content_path(owner, repo, path))
        if isinstance(result, list):
            raise ValidationError(f"GitHub: {path} is a directory, not a file.")
        return result

    async def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        sha: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create or update a file. Updates require the current blob ``sha``.
        """
        body: Dict[str, Any] = {"message": message, "content": encode_content(content)}
        if sha:
            body["sha"] = sha
        if branch:
            body["branch"] = branch
        return await self.request("PUT", _content_path(owner, repo, path), json=body)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def _pages_path(self, owner: str, repo: str) -> str:
        return f"/repos/{_segment(owner)}/{_segment(repo)}/pages"

    async def enable_pages(self, owner: str, repo: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Enable GitHub Pages for a repository."""
        return await self.request("POST", self._pages_path(owner, repo), json=config)

    async def get_pages(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self.request("GET", self._pages_path(owner, repo))

    async def update_pages(self, owner: str, repo: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", self._pages_path(owner, repo), json=config)

    async def has_pages_enabled(self, owner: str, repo: str) -> bool:
        try:
            await self.get_pages(owner, repo)
            return True
        except NotFoundError:
            return False

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def get_rate_limit(self) -> Dict[str, Any]:
        return await self.request("GET", "/rate_limit")

    async def test_connection(self) -> bool:
        """Check that the token is accepted by GitHub."""
        try:
            await self.get_user()
            return True
        except GitHubAPIError as e:
            logger.info(f"GitHub connection test failed: {e.message}")
            return False


def _parse_scopes(header: Optional[str]) -> List[str]:
    if not header:
        return []
    return [scope.strip() for scope in header.split(",") if scope.strip()]
