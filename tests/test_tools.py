# Tests for tools/deploy_tools.py

import json
from urllib.parse import parse_qs, urlparse

import pytest

from site_deployer.tools.deploy_tools import register_tools

from .conftest import REDIRECT_URI


class RecordingMCP:
    """Captures the functions registered through ``@mcp.tool``."""

    def __init__(self):
        self.tools = {}

    def tool(self, name=None, description=None, **kwargs):
        def decorator(fn):
            self.tools[name or fn.__name__] = fn
            return fn

        return decorator


@pytest.fixture
def tools(service):
    mcp = RecordingMCP()
    register_tools(mcp, service)
    return mcp.tools


async def _sign_in(service) -> None:
    state = parse_qs(urlparse(service.login()).query)["state"][0]
    await service.initialize(f"{REDIRECT_URI}?code=code_xyz&state={state}")


def test_tools_registered(tools):
    assert set(tools) == {"deploy_site", "github_session"}


@pytest.mark.asyncio
async def test_session_tool_reports_signed_out(tools):
    assert json.loads(await tools["github_session"]())["is_authenticated"] is False


@pytest.mark.asyncio
async def test_deploy_requires_sign_in(tools):
    with pytest.raises(ValueError, match="Not signed in"):
        await tools["deploy_site"]("site", [{"path": "index.html", "content": "x"}])


@pytest.mark.asyncio
async def test_deploy_returns_url(tools, service, github):
    await _sign_in(service)
    url = await tools["deploy_site"]("site", [{"path": "index.html", "content": "<p>hi</p>"}])
    assert url == "https://octocat.github.io/site"
    assert github.files["index.html"][0] == b"<p>hi</p>"

    session = json.loads(await tools["github_session"]())
    assert session["user"]["login"] == "octocat"
    assert session["token"] != "tok_abc"


@pytest.mark.asyncio
async def test_github_failure_becomes_value_error(tools, service, github):
    await _sign_in(service)
    github.fail_next[("PUT", "/repos/octocat/site/contents/index.html")] = [403]
    with pytest.raises(ValueError, match="forbidden"):
        await tools["deploy_site"]("site", [{"path": "index.html", "content": "x"}])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "files",
    [[{"path": "/abs.html", "content": "x"}], [{"path": "index.html"}]],
)
async def test_invalid_files_become_value_error(tools, service, github, files):
    await _sign_in(service)
    with pytest.raises(ValueError, match="Invalid files"):
        await tools["deploy_site"]("site", files)
    assert github.writes() == []
