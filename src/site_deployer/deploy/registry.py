"""Registry of DeploymentService instances owned by the composition root."""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from .orchestrator import DeploymentService

logger = logging.getLogger(__name__)

ServiceKey = Tuple[str, str]
ServiceFactory = Callable[[str, str], DeploymentService]


class ServiceRegistry:
    """
    At most one live DeploymentService per (client_id, redirect_uri).

    Components that independently ask for the service share one instance,
    so there is a single session, a single user fetch and one set of logs.
    """

    def __init__(self, factory: Optional[ServiceFactory] = None):
        self._factory: ServiceFactory = factory or DeploymentService
        self._instances: Dict[ServiceKey, DeploymentService] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        client_id: str,
        redirect_uri: str,
        factory: Optional[ServiceFactory] = None,
    ) -> DeploymentService:
        """
        Return the service for this key, constructing it on first use.

        Args:
            client_id: OAuth App client ID
            redirect_uri: Redirect URI registered for the app
            factory: Overrides the registry's factory for this construction

        Returns:
            The shared DeploymentService
        """
        key = (client_id, redirect_uri)
        with self._lock:
            service = self._instances.get(key)
            if service is None:
                service = (factory or self._factory)(client_id, redirect_uri)
                self._instances[key] = service
                logger.info(f"Created deployment service for redirect URI {redirect_uri}")
            return service

    def get(self, client_id: str, redirect_uri: str) -> Optional[DeploymentService]:
        with self._lock:
            return self._instances.get((client_id, redirect_uri))

    def discard(self, client_id: str, redirect_uri: str) -> Optional[DeploymentService]:
        with self._lock:
            return self._instances.pop((client_id, redirect_uri), None)

    def clear(self) -> None:
        """Forget every instance without closing it."""
        with self._lock:
            self._instances.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    async def aclose(self) -> None:
        """Close every service's HTTP client and empty the registry."""
        with self._lock:
            services = list(self._instances.values())
            self._instances.clear()
        for service in services:
            await service.aclose()
