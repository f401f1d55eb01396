"""GitHub OAuth module: PKCE redirect flow and Device Authorization Flow."""

from .device import DeviceFlowSession, DevicePollHandle
from .flow import AuthorizationFlow
from .pkce import PKCEParams, generate_csrf_state, generate_pkce, verify_pkce
from .state import (
    AuthAttemptState,
    AuthAttemptStore,
    MemoryEphemeralStore,
    SecureEphemeralStore,
)

__all__ = [
    "AuthorizationFlow",
    "DeviceFlowSession",
    "DevicePollHandle",
    "PKCEParams",
    "generate_pkce",
    "generate_csrf_state",
    "verify_pkce",
    "AuthAttemptState",
    "AuthAttemptStore",
    "MemoryEphemeralStore",
    "SecureEphemeralStore",
]
