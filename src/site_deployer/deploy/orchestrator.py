"""Deployment orchestrator: session facade plus the publish pipeline."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar, Union

from ..config import settings
from ..errors import (
    AuthenticationError,
    ConflictError,
    CSRFMismatch,
    MalformedCallback,
    NotAuthenticated,
    NotFoundError,
    ValidationError,
)
from ..http_client.github_client import GitHubClient
from ..oauth.device import DeviceFlowSession, DevicePollHandle
from ..oauth.flow import AuthorizationFlow
from ..oauth.state import MemoryEphemeralStore, SecureEphemeralStore
from ..sync.file_sync import FileRecord, FileSyncEngine, SyncReport
from ..utils import auth_trace, mask
from .session import AuthStatus, GitHubUser
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)

T = TypeVar("T")

FileInput = Union[FileRecord, Mapping[str, Any]]


def pages_url(owner: str, repo: str) -> str:
    """Public URL of a project site served by GitHub Pages."""
    return f"https://{owner}.github.io/{repo}"


@dataclass
class DeviceAuthorization:
    """Instructions for the user plus the means to wait for their approval."""

    user_code: str
    verification_uri: str
    expires_in: int
    session: DeviceFlowSession
    _adopt: Callable[[str], Awaitable[AuthStatus]]

    async def poll(self) -> AuthStatus:
        """Wait for authorization and sign the user in."""
        token = await self.session.poll()
        return await self._adopt(token)

    def start_polling(self) -> DevicePollHandle:
        """Poll in the background; the handle can be awaited or cancelled."""
        return DevicePollHandle(asyncio.ensure_future(self.poll()))

    def seconds_remaining(self) -> int:
        return self.session.seconds_remaining()


class DeploymentService:
    """
    Facade over authentication and publishing for one OAuth client.

    Owns the signed-in session (token, user, granted scopes). The
    authorization engine only hands over tokens; this class adopts them,
    and clears the session whenever GitHub rejects the token.
    """

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        *,
        store: Optional[SecureEphemeralStore] = None,
        flow: Optional[AuthorizationFlow] = None,
        api: Optional[GitHubClient] = None,
        sync: Optional[FileSyncEngine] = None,
        pages_branch: Optional[str] = None,
        pages_path: Optional[str] = None,
    ):
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self._store = store if store is not None else MemoryEphemeralStore()
        self.flow = flow or AuthorizationFlow(client_id, redirect_uri, self._store)
        self.api = api or GitHubClient()
        self.sync = sync or FileSyncEngine(self.api)
        self._pages_branch = pages_branch or settings.pages_branch
        self._pages_path = pages_path or settings.pages_path

        self._token: Optional[str] = None
        self._user: Optional[GitHubUser] = None
        self._scopes: List[str] = []
        self._single_flight = SingleFlight()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def initialize(self, callback_url: Optional[str] = None) -> AuthStatus:
        """
        Establish the session, redeeming an OAuth callback if one is given.

        Concurrent callers share a single execution: only one callback
        exchange and one ``/user`` fetch happen however many components ask.

        Args:
            callback_url: The URL the browser returned to, if any

        Returns:
            The resulting AuthStatus
        """
        return await self._single_flight.run(
            "initialize", lambda: self._initialize(callback_url)
        )

    async def _initialize(self, callback_url: Optional[str]) -> AuthStatus:
        # Half-formed callbacks go through handle_callback too, so they are rejected
        if self.flow.has_callback_params(callback_url):
            logger.info("OAuth callback detected")
            try:
                token = await self.flow.handle_callback(callback_url)
            except (CSRFMismatch, MalformedCallback):
                self._clear_session()
                raise
            return await self._adopt_token(token)

        if self.is_authenticated:
            return self.get_auth_status()

        existing = self.flow.stored_token()
        if existing:
            auth_trace(logger, settings.auth_debug, f"existing token found {mask(existing)}")
            try:
                return await self._adopt_token(existing)
            except AuthenticationError:
                logger.warning("Stored GitHub token is no longer valid, cleared")

        return self.get_auth_status()

    async def _adopt_token(self, token: str) -> AuthStatus:
        """Make ``token`` the session token and load the user behind it."""
        self.api.set_token(token)
        self.flow.remember_token(token)
        try:
            user_data, scopes = await self.api.get_user_with_scopes()
        except AuthenticationError:
            self._clear_session()
            raise

        self._token = token
        self._user = GitHubUser.model_validate(user_data)
        self._scopes = scopes
        logger.info(f"Signed in to GitHub as {self._user.login} (scopes: {', '.join(scopes) or 'none'})")
        return self.get_auth_status()

    def _clear_session(self) -> None:
        self.flow.forget_token()
        self.api.clear_token()
        self._token = None
        self._user = None
        self._scopes = []

    async def _call(self, operation: Awaitable[T]) -> T:
        """Await a REST operation, dropping the session if the token is rejected."""
        try:
            return await operation
        except AuthenticationError:
            logger.warning("GitHub rejected the token, clearing session")
            self._clear_session()
            raise

    def _require_session(self) -> GitHubUser:
        if not self.is_authenticated or self._user is None:
            raise NotAuthenticated("User must be authenticated")
        return self._user

    def login(self, scopes: Optional[List[str]] = None) -> str:
        """Start the PKCE redirect flow; returns the URL to send the user to."""
        return self.flow.build_authorization_url(scopes)

    async def start_device_auth(self, scopes: Optional[List[str]] = None) -> DeviceAuthorization:
        """Start the Device Flow; returns the user code and a poll handle."""
        session = await self.flow.start_device_flow(scopes)
        return DeviceAuthorization(
            user_code=session.user_code,
            verification_uri=session.verification_uri,
            expires_in=session.expires_in,
            session=session,
            _adopt=self._adopt_token,
        )

    def logout(self) -> None:
        """Sign out and clear all authentication data."""
        self.flow.reset()
        self._clear_session()
        logger.info("Signed out of GitHub")

    def get_auth_status(self) -> AuthStatus:
        return AuthStatus(
            is_authenticated=self.is_authenticated,
            user=self._user,
            token=self._token,
            scopes=list(self._scopes),
        )

    get_session = get_auth_status

    @property
    def current_user(self) -> Optional[GitHubUser]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token) and self._user is not None

    # ------------------------------------------------------------------
    # GitHub account
    # ------------------------------------------------------------------

    async def refresh_user(self) -> GitHubUser:
        self._require_session()
        self._user = GitHubUser.model_validate(await self._call(self.api.get_user()))
        return self._user

    async def test_connection(self) -> bool:
        if not self._token:
            return False
        ok = await self.api.test_connection()
        if not ok:
            logger.info("GitHub connection test failed")
        return ok

    async def get_repositories(self, **filters: Any) -> List[Dict[str, Any]]:
        self._require_session()
        return await self._call(self.api.list_user_repositories(**filters))

    async def create_repository(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require_session()
        return await self._call(self.api.create_repository(params))

    async def delete_repository(self, name: str) -> None:
        user = self._require_session()
        await self._call(self.api.delete_repository(user.login, name))

    async def ensure_repository(
        self, name: str, description: Optional[str] = None, private: bool = False
    ) -> Dict[str, Any]:
        """Return the user's repository ``name``, creating it when missing."""
        user = self._require_session()
        try:
            return await self._call(self.api.get_repository(user.login, name))
        except NotFoundError:
            logger.info(f"Creating repository {user.login}/{name}")
            params: Dict[str, Any] = {"name": name, "private": private, "auto_init": True}
            if description:
                params["description"] = description
            return await self._call(self.api.create_repository(params))

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy_to_pages(
        self,
        repo: str,
        files: Iterable[FileInput],
        branch: Optional[str] = None,
    ) -> str:
        """
        Publish ``files`` to ``repo`` and serve them with GitHub Pages.

        Args:
            repo: Repository name under the signed-in user
            files: FileRecords or mappings with path/content/message
            branch: Branch to publish (defaults to the configured Pages branch)

        Returns:
            The site URL

        Raises:
            NotAuthenticated: If nobody is signed in
            GitHubAPIError: If uploading or enabling Pages fails
        """
        user = self._require_session()
        records = [
            item if isinstance(item, FileRecord) else FileRecord.model_validate(item)
            for item in files
        ]
        owner = user.login

        await self.upload_files(owner, repo, records, branch=branch)
        await self._enable_pages(owner, repo, branch or self._pages_branch)

        url = pages_url(owner, repo)
        logger.info(f"Deployed {len(records)} file(s) to {url}")
        return url

    async def upload_files(
        self,
        owner: str,
        repo: str,
        files: Iterable[FileRecord],
        branch: Optional[str] = None,
    ) -> SyncReport:
        self._require_session()
        return await self._call(self.sync.upload_files(owner, repo, files, branch=branch))

    async def _enable_pages(self, owner: str, repo: str, branch: str) -> None:
        config = {"source": {"branch": branch, "path": self._pages_path}}
        try:
            await self._call(self.api.enable_pages(owner, repo, config))
            logger.info(f"GitHub Pages enabled for {owner}/{repo}")
        except ConflictError:
            logger.info(f"GitHub Pages already enabled for {owner}/{repo}")
        except ValidationError as e:
            if not await self._call(self.api.has_pages_enabled(owner, repo)):
                raise
            logger.warning(f"GitHub Pages already enabled for {owner}/{repo}: {e.message}")

    async def aclose(self) -> None:
        await self.api.stop()
