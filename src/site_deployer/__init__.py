"""Sign in to GitHub without a client secret and publish sites to GitHub Pages."""

from .deploy import AuthStatus, DeploymentService, GitHubUser, ServiceRegistry
from .http_client import GitHubClient
from .oauth import AuthorizationFlow, MemoryEphemeralStore
from .sync import FileRecord, FileSyncEngine

__version__ = "0.1.0"

__all__ = [
    "AuthStatus",
    "AuthorizationFlow",
    "DeploymentService",
    "FileRecord",
    "FileSyncEngine",
    "GitHubClient",
    "GitHubUser",
    "MemoryEphemeralStore",
    "ServiceRegistry",
]
