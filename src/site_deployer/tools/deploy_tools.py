"""MCP tools exposing the deployer to assistant clients."""

import json
import logging
from typing import Dict, List

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from ..deploy.orchestrator import DeploymentService
from ..errors import GitHubAPIError, NotAuthenticated

logger = logging.getLogger(__name__)


def register_tools(mcp: FastMCP, service: DeploymentService) -> None:
    """
    Register MCP tools with the server.

    Args:
        mcp: The FastMCP server instance
        service: The deployment service shared with the HTTP routes
    """

    @mcp.tool(
        name="deploy_site",
        description=(
            "Publish files to a GitHub repository of the signed-in user and serve "
            "them with GitHub Pages. Returns the site URL."
        ),
    )
    async def deploy_site(repo: str, files: List[Dict[str, str]]) -> str:
        """
        Publish a file set and return its GitHub Pages URL.

        Args:
            repo: Repository name under the signed-in account
            files: Items with ``path``, ``content`` and optional ``message``

        Raises:
            ValueError: If nobody is signed in or GitHub rejects the publish
        """
        try:
            url = await service.deploy_to_pages(repo, files)
        except NotAuthenticated as e:
            raise ValueError(
                "Not signed in to GitHub. Open /auth/start or use the device login first."
            ) from e
        except GitHubAPIError as e:
            logger.error(f"deploy_site failed: {e!r}")
            raise ValueError(e.message) from e
        except PydanticValidationError as e:
            raise ValueError(f"Invalid files: {e}") from e

        logger.debug(f"deploy_site published {repo}")
        return url

    @mcp.tool(
        name="github_session",
        description="Report whether a GitHub account is signed in, and which one.",
    )
    async def github_session() -> str:
        """Return the current session (token masked) as JSON."""
        return json.dumps(service.get_auth_status().public_view())
