"""HTTP endpoints for signing in to GitHub and publishing a site."""

import logging
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from .config import SCOPE_SETS
from .deploy.orchestrator import DeploymentService
from .errors import (
    ConfigurationError,
    CSRFMismatch,
    GitHubAPIError,
    GitHubErrorKind,
    MalformedCallback,
    NotAuthenticated,
    OAuthProviderError,
    SiteDeployerError,
    TokenExchangeFailed,
)
from .oauth.device import DevicePollHandle
from .sync.file_sync import FileRecord

logger = logging.getLogger(__name__)

API_STATUS = {
    GitHubErrorKind.UNAUTHORIZED: 401,
    GitHubErrorKind.FORBIDDEN: 403,
    GitHubErrorKind.NOT_FOUND: 404,
    GitHubErrorKind.CONFLICT: 409,
    GitHubErrorKind.VALIDATION: 422,
    GitHubErrorKind.RATE_LIMITED: 429,
}


def _service(request: Request) -> DeploymentService:
    return request.app.state.service


def _error(status_code: int, error: str, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
    )


def _error_response(exc: SiteDeployerError) -> JSONResponse:
    """Map a package error onto an OAuth-style JSON error body."""
    if isinstance(exc, OAuthProviderError):
        return _error(400, exc.error, exc.message)
    if isinstance(exc, MalformedCallback):
        return _error(400, "invalid_request", exc.message)
    if isinstance(exc, CSRFMismatch):
        return _error(400, "invalid_state", exc.message)
    if isinstance(exc, TokenExchangeFailed):
        return _error(502, "token_exchange_failed", exc.message)
    if isinstance(exc, ConfigurationError):
        return _error(500, "server_error", exc.message)
    if isinstance(exc, NotAuthenticated):
        return _error(401, "not_authenticated", exc.message)
    if isinstance(exc, GitHubAPIError):
        return _error(API_STATUS.get(exc.kind, 502), exc.kind.value, exc.message)
    return _error(500, "server_error", exc.message)


def _requested_scopes(request: Request) -> Optional[List[str]]:
    """Scopes from ``?scope=a b`` or a preset name via ``?scopes=basic``."""
    preset = request.query_params.get("scopes")
    if preset and preset in SCOPE_SETS:
        return list(SCOPE_SETS[preset])
    scope = request.query_params.get("scope")
    return scope.split() if scope else None


async def auth_start(request: Request) -> Response:
    """
    GET /auth/start - Initiates the PKCE authorization flow.

    Query params:
        scope: Optional space-separated scopes
        scopes: Optional preset name (minimal, basic, full, organization)
    """
    try:
        url = _service(request).login(_requested_scopes(request))
    except SiteDeployerError as e:
        return _error_response(e)
    return RedirectResponse(url=url, status_code=302)


async def auth_callback(request: Request) -> JSONResponse:
    """
    GET /auth/callback - Handles the OAuth callback with code exchange.

    Query params:
        code: Authorization code from GitHub
        state: State parameter for CSRF protection
        error: Error code if authorization failed
    """
    service = _service(request)
    try:
        status = await service.initialize(str(request.url))
    except SiteDeployerError as e:
        logger.error(f"OAuth callback failed: {e.message}")
        return _error_response(e)
    return JSONResponse(content=status.public_view())


async def device_start(request: Request) -> JSONResponse:
    """
    POST /auth/device - Starts the Device Flow and polls in the background.

    The caller shows ``user_code`` and ``verification_uri`` to the user and
    then watches GET /auth/device (or /auth/session) for completion.
    """
    service = _service(request)
    previous: Optional[DevicePollHandle] = getattr(request.app.state, "device_poll", None)
    if previous is not None and not previous.done():
        previous.cancel()

    try:
        authorization = await service.start_device_auth(_requested_scopes(request))
    except SiteDeployerError as e:
        return _error_response(e)

    handle = authorization.start_polling()
    handle.add_done_callback(_log_device_outcome)
    request.app.state.device_poll = handle
    request.app.state.device_authorization = authorization

    return JSONResponse(
        content={
            "user_code": authorization.user_code,
            "verification_uri": authorization.verification_uri,
            "expires_in": authorization.expires_in,
        }
    )


def _log_device_outcome(handle: DevicePollHandle) -> None:
    if handle.cancelled():
        logger.info("Device flow polling cancelled")
        return
    error = handle.exception()
    if error is not None:
        logger.warning(f"Device flow ended without a token: {error}")


async def device_status(request: Request) -> JSONResponse:
    """GET /auth/device - Progress of the current device authorization."""
    authorization = getattr(request.app.state, "device_authorization", None)
    if authorization is None:
        return _error(404, "not_found", "No device authorization in progress")
    content = authorization.session.describe()
    content["session"] = _service(request).get_auth_status().public_view()
    return JSONResponse(content=content)


async def device_cancel(request: Request) -> JSONResponse:
    """DELETE /auth/device - Stops polling for the current device authorization."""
    handle: Optional[DevicePollHandle] = getattr(request.app.state, "device_poll", None)
    cancelled = handle is not None and not handle.done() and handle.cancel()
    return JSONResponse(content={"cancelled": bool(cancelled)})


async def session_status(request: Request) -> JSONResponse:
    """GET /auth/session - Who is signed in."""
    return JSONResponse(content=_service(request).get_auth_status().public_view())


async def logout(request: Request) -> JSONResponse:
    """POST /auth/logout - Clears the session and any in-flight attempt."""
    _service(request).logout()
    return JSONResponse(content={"is_authenticated": False})


async def deploy(request: Request) -> JSONResponse:
    """
    POST /deploy - Publishes a file set and returns the site URL.

    Body: { "repo": "...", "files": [{"path": "...", "content": "..."}], "branch": "main" }
    """
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "invalid_request", "Invalid JSON body")

    if not isinstance(body, dict):
        return _error(400, "invalid_request", "Body must be a JSON object")

    repo = body.get("repo")
    files = body.get("files")
    if not repo or not isinstance(files, list) or not files:
        return _error(400, "invalid_request", "Missing repo or files")

    try:
        records = [FileRecord.model_validate(item) for item in files]
    except PydanticValidationError as e:
        return _error(400, "invalid_request", str(e))

    try:
        url = await _service(request).deploy_to_pages(repo, records, branch=body.get("branch"))
    except SiteDeployerError as e:
        logger.error(f"Deploy to {repo} failed: {e.message}")
        return _error_response(e)

    return JSONResponse(content={"url": url})


def get_routes() -> List[Route]:
    """Return routes for sign-in and deployment endpoints."""
    return [
        Route("/auth/start", endpoint=auth_start, methods=["GET"]),
        Route("/auth/callback", endpoint=auth_callback, methods=["GET"]),
        Route("/auth/device", endpoint=device_start, methods=["POST"]),
        Route("/auth/device", endpoint=device_status, methods=["GET"]),
        Route("/auth/device", endpoint=device_cancel, methods=["DELETE"]),
        Route("/auth/session", endpoint=session_status, methods=["GET"]),
        Route("/auth/logout", endpoint=logout, methods=["POST"]),
        Route("/deploy", endpoint=deploy, methods=["POST"]),
    ]
