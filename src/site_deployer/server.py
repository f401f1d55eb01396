"""MCP Server setup with FastMCP."""

import logging
from urllib.parse import urlparse

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from .config import settings
from .deploy.orchestrator import DeploymentService
from .tools.deploy_tools import register_tools

logger = logging.getLogger(__name__)


def create_mcp_server(service: DeploymentService) -> FastMCP:
    """
    Create and configure the MCP server.

    The tools act on behalf of whoever is signed in to ``service``; the MCP
    endpoint itself adds no authentication of its own.

    Args:
        service: The deployment service shared with the HTTP routes

    Returns:
        FastMCP server instance
    """
    # streamable_http_path="/" keeps endpoints at the root of the mount point
    # so when mounted at /mcp, endpoints are at /mcp instead of /mcp/mcp
    server_host = urlparse(settings.server_url).netloc

    transport_security = TransportSecuritySettings(
        enable_dns_rebinding_protection=True,
        allowed_hosts=[
            "localhost:*",
            "127.0.0.1:*",
            f"{server_host}",
            f"{server_host}:*",
        ],
        allowed_origins=[
            "http://localhost:*",
            "http://127.0.0.1:*",
            f"http://{server_host}",
            f"https://{server_host}",
        ],
    )

    mcp = FastMCP(
        name="site-deployer",
        streamable_http_path="/",
        transport_security=transport_security,
    )

    register_tools(mcp, service)

    logger.info("MCP server created with deploy_site and github_session tools")

    return mcp
