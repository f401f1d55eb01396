"""Application entry point - creates and configures the Starlette application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from .config import settings
from .deploy.orchestrator import DeploymentService
from .deploy.registry import ServiceRegistry
from .routes import get_routes
from .server import create_mcp_server

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def healthz(request: Request) -> JSONResponse:
    """
    Health check endpoint.

    Returns 200 OK if the server is running.
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "site-deployer",
            "version": "0.1.0",
        }
    )


async def root(request: Request) -> JSONResponse:
    """
    Root endpoint with server information.

    Provides links to important endpoints.
    """
    return JSONResponse(
        content={
            "name": "Site Deployer",
            "version": "0.1.0",
            "description": "Sign in to GitHub without a client secret and publish sites to GitHub Pages",
            "endpoints": {
                "health": "/healthz",
                "auth_start": "/auth/start",
                "auth_callback": "/auth/callback",
                "device_login": "/auth/device",
                "session": "/auth/session",
                "logout": "/auth/logout",
                "deploy": "/deploy",
                "mcp": "/mcp",
            },
        }
    )


def create_app(
    registry: Optional[ServiceRegistry] = None,
    service: Optional[DeploymentService] = None,
) -> Starlette:
    """
    Create the Starlette application with all routes.

    The application is the composition root: it owns the service registry
    and resolves the one DeploymentService for the configured OAuth App.

    Args:
        registry: Registry to resolve the service from (a new one by default)
        service: Pre-built service, bypassing the registry

    Returns:
        Configured Starlette application
    """
    registry = registry if registry is not None else ServiceRegistry()
    if service is None:
        service = registry.get_or_create(
            settings.github_client_id, settings.github_redirect_uri
        )

    mcp_server = create_mcp_server(service)

    @asynccontextmanager
    async def lifespan(app):
        """Application lifespan handler for startup/shutdown."""
        logger.info("Starting Site Deployer...")
        logger.info(f"Server URL: {settings.server_url}")
        if not service.client_id:
            logger.warning("GITHUB_CLIENT_ID is not set; sign-in endpoints will fail")

        # Initialize MCP session manager - required when embedding in Starlette
        async with mcp_server.session_manager.run():
            logger.info("Site Deployer ready")
            yield

        logger.info("Shutting down Site Deployer...")
        handle = getattr(app.state, "device_poll", None)
        if handle is not None and not handle.done():
            handle.cancel()
        await registry.aclose()
        await service.aclose()
        logger.info("Shutdown complete")

    routes = [
        Route("/", endpoint=root, methods=["GET"]),
        Route("/healthz", endpoint=healthz, methods=["GET"]),
        *get_routes(),
        Mount("/mcp", app=mcp_server.streamable_http_app()),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.registry = registry
    app.state.service = service
    return app


# Create the application instance
app = create_app()


def main():
    """Run the server using uvicorn."""
    import uvicorn

    uvicorn.run(
        "site_deployer.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
