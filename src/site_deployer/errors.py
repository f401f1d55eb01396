"""Error taxonomy shared by the OAuth engine, REST client and deployer.

Every error carries a human-readable ``message`` suitable for display and an
optional ``detail`` holding the raw provider body for diagnostics.
"""

from enum import Enum
from typing import Optional


class SiteDeployerError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class OAuthError(SiteDeployerError):
    """Base class for authorization flow failures. Never retryable."""


class ConfigurationError(OAuthError):
    """The OAuth client is missing required configuration."""


class OAuthProviderError(OAuthError):
    """GitHub reported an ``error`` on the authorization callback."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"GitHub authorization failed: {description or error}"
        super().__init__(message, detail=error)


class MalformedCallback(OAuthError):
    """The callback URL is missing the ``code`` or ``state`` parameter."""


class CSRFMismatch(OAuthError):
    """The callback ``state`` does not match a live authorization attempt."""


class TokenExchangeFailed(OAuthError):
    """Exchanging the authorization code for a token failed."""


class DeviceFlowExpired(OAuthError):
    """The device code expired before the user authorized it."""


class DeviceFlowDenied(OAuthError):
    """The user declined the device authorization request."""


class DeviceFlowCancelled(OAuthError):
    """Device flow polling was cancelled by the caller."""


class NotAuthenticated(SiteDeployerError):
    """An operation requiring a signed-in user was attempted without one."""


# ---------------------------------------------------------------------------
# GitHub REST API
# ---------------------------------------------------------------------------


class GitHubErrorKind(str, Enum):
    """Classification tag assigned once by the REST client."""

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {GitHubErrorKind.RATE_LIMITED, GitHubErrorKind.SERVER, GitHubErrorKind.NETWORK}
)


class GitHubAPIError(SiteDeployerError):
    """A classified GitHub REST API failure."""

    kind: GitHubErrorKind = GitHubErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.status = status
        self.retry_after = retry_after
        super().__init__(message, detail=detail)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, status={self.status!r})"


class AuthenticationError(GitHubAPIError):
    kind = GitHubErrorKind.UNAUTHORIZED


class ForbiddenError(GitHubAPIError):
    kind = GitHubErrorKind.FORBIDDEN


class RateLimitedError(GitHubAPIError):
    kind = GitHubErrorKind.RATE_LIMITED


class NotFoundError(GitHubAPIError):
    kind = GitHubErrorKind.NOT_FOUND


class ConflictError(GitHubAPIError):
    kind = GitHubErrorKind.CONFLICT


class ValidationError(GitHubAPIError):
    kind = GitHubErrorKind.VALIDATION


class ServerError(GitHubAPIError):
    kind = GitHubErrorKind.SERVER


class NetworkError(GitHubAPIError):
    kind = GitHubErrorKind.NETWORK


class UnknownAPIError(GitHubAPIError):
    kind = GitHubErrorKind.UNKNOWN
