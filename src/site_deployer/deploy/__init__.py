"""Deployment orchestration and the session facade."""

from .orchestrator import DeploymentService, DeviceAuthorization, pages_url
from .registry import ServiceRegistry
from .session import AuthStatus, GitHubUser
from .single_flight import SingleFlight

__all__ = [
    "DeploymentService",
    "DeviceAuthorization",
    "ServiceRegistry",
    "AuthStatus",
    "GitHubUser",
    "SingleFlight",
    "pages_url",
]
