"""Ephemeral storage for in-flight OAuth parameters and the bearer token."""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

AUTH_STATE_KEY = "github_auth_state"
TOKEN_KEY = "github_token"


class SecureEphemeralStore(Protocol):
    """
    Tab-scoped key/value storage for short-lived auth secrets.

    Implementations must never persist values beyond the lifetime of the
    owning session (a browser tab, a CLI process).
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...

    def clear_all(self) -> None: ...


class MemoryEphemeralStore:
    """
    Thread-safe in-memory implementation of SecureEphemeralStore.

    The process is the "tab": values vanish when it exits and are never
    written to disk.
    """

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def clear(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values


@dataclass
class AuthAttemptState:
    """Parameters of one in-flight PKCE authorization attempt."""

    state: str
    code_verifier: str
    created_at: float
    redirect_uri: str
    requested_scopes: List[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "AuthAttemptState":
        data = json.loads(raw)
        return cls(
            state=data["state"],
            code_verifier=data["code_verifier"],
            created_at=float(data["created_at"]),
            redirect_uri=data["redirect_uri"],
            requested_scopes=list(data.get("requested_scopes") or []),
        )


class AuthAttemptStore:
    """
    Single-slot, TTL-bound storage of the current AuthAttemptState.

    Attempts expire after a configurable TTL (default 5 minutes). An attempt
    whose age is equal to or greater than the TTL is discarded on load.
    """

    def __init__(
        self,
        store: SecureEphemeralStore,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the attempt store.

        Args:
            store: Backing ephemeral store
            ttl_seconds: Time-to-live for attempts in seconds
            clock: Wall-clock source returning epoch seconds
        """
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def save(self, attempt: AuthAttemptState) -> None:
        """Persist an attempt, replacing any previous one."""
        self._store.set(AUTH_STATE_KEY, attempt.to_json())

    def load(self) -> Optional[AuthAttemptState]:
        """
        Return the stored attempt if present, well-formed and not expired.

        Expired or malformed entries are cleared as a side effect.
        """
        raw = self._store.get(AUTH_STATE_KEY)
        if not raw:
            return None

        try:
            attempt = AuthAttemptState.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed auth attempt state: {e}")
            self.clear()
            return None

        if not attempt.state or not attempt.code_verifier:
            self.clear()
            return None

        if self._clock() - attempt.created_at >= self._ttl:
            logger.info("Discarding expired auth attempt state")
            self.clear()
            return None

        return attempt

    def clear(self) -> None:
        self._store.clear(AUTH_STATE_KEY)
