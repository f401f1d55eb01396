# Shared fixtures: an in-memory GitHub behind httpx.MockTransport, fake clocks.

import base64
import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote

import httpx
import pytest

from site_deployer.deploy.orchestrator import DeploymentService
from site_deployer.http_client.github_client import GitHubClient
from site_deployer.oauth.flow import AuthorizationFlow
from site_deployer.oauth.state import MemoryEphemeralStore

CLIENT_ID = "Iv1.test_client"
REDIRECT_URI = "http://localhost:8000/auth/callback"


def _blob_sha(content: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


class FakeGitHub:
    """Just enough of github.com and api.github.com for the deployer."""

    def __init__(self, login: str = "octocat"):
        self.login = login
        self.valid_tokens = {"tok_abc"}
        self.exchange_token = "tok_abc"
        self.exchange_error: Optional[Dict[str, str]] = None
        self.exchange_status = 200
        self.scopes = "public_repo, user:email"

        self.files: Dict[str, Tuple[bytes, str]] = {}
        self.repos = {"site"}
        self.pages_enabled = False
        self.pages_conflict_status = 409

        self.device_responses: List[Dict[str, Any]] = []
        self.device_code_response: Dict[str, Any] = {
            "device_code": "dev_123",
            "user_code": "ABCD-EFGH",
            "verification_uri": "https://github.com/login/device",
            "expires_in": 900,
            "interval": 5,
        }

        # Forced failures: (method, path) -> list of statuses to return first
        self.fail_next: Dict[Tuple[str, str], List[int]] = {}

        self.calls: List[Tuple[str, str]] = []
        self.requests: List[httpx.Request] = []
        self.token_requests: List[Dict[str, str]] = []

    # -- helpers -----------------------------------------------------------

    def put_file(self, path: str, content: str) -> str:
        data = content.encode("utf-8")
        sha = _blob_sha(data)
        self.files[path] = (data, sha)
        return sha

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def writes(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT" and "/contents/" in r.url.path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    # -- routing -------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        self.calls.append((request.method, path))
        self.requests.append(request)

        forced = self.fail_next.get((request.method, path))
        if forced:
            return httpx.Response(forced.pop(0), json={"message": "forced failure"})

        if request.url.host == "github.com":
            return self._oauth(request, path)
        return self._api(request, path)

    def _oauth(self, request: httpx.Request, path: str) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if path == "/login/device/code":
            return httpx.Response(200, json=self.device_code_response)
        if path == "/login/oauth/access_token":
            self.token_requests.append(form)
            if form.get("grant_type", "").endswith("device_code"):
                if self.device_responses:
                    return httpx.Response(200, json=self.device_responses.pop(0))
                return httpx.Response(200, json={"error": "authorization_pending"})
            if self.exchange_error:
                return httpx.Response(200, json=self.exchange_error)
            if self.exchange_status != 200:
                return httpx.Response(self.exchange_status, text="bad gateway")
            return httpx.Response(
                200,
                json={"access_token": self.exchange_token, "token_type": "bearer", "scope": self.scopes},
            )
        return httpx.Response(404, json={"message": "Not Found"})

    def _api(self, request: httpx.Request, path: str) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            return httpx.Response(401, json={"message": "Bad credentials"})

        if path == "/user":
            return httpx.Response(
                200,
                json={"id": 1, "login": self.login, "name": "The Octocat", "avatar_url": "https://a/x.png"},
                headers={"X-OAuth-Scopes": self.scopes},
            )
        if path == "/user/repos":
            if request.method == "POST":
                body = json.loads(request.content)
                self.repos.add(body["name"])
                if body.get("auto_init"):
                    self.put_file("README.md", f"# {body['name']}\n")
                return httpx.Response(201, json={"name": body["name"], "full_name": f"{self.login}/{body['name']}"})
            return httpx.Response(200, json=[{"name": name} for name in sorted(self.repos)])
        if path == "/rate_limit":
            return httpx.Response(200, json={"rate": {"limit": 5000, "remaining": 4999, "reset": 0}})

        parts = path.split("/")
        # /repos/{owner}/{repo}/...
        if len(parts) >= 4 and parts[1] == "repos":
            repo = parts[3]
            rest = parts[4:]
            if repo not in self.repos:
                return httpx.Response(404, json={"message": "Not Found"})
            if not rest:
                if request.method == "DELETE":
                    self.repos.discard(repo)
                    return httpx.Response(204)
                return httpx.Response(200, json={"name": repo, "default_branch": "main"})
            if rest[0] == "contents":
                return self._contents(request, "/".join(rest[1:]))
            if rest[0] == "pages":
                return self._pages(request)
        return httpx.Response(404, json={"message": "Not Found"})

    def _contents(self, request: httpx.Request, file_path: str) -> httpx.Response:
        existing = self.files.get(file_path)
        if request.method == "GET":
            if existing is None:
                return httpx.Response(404, json={"message": "Not Found"})
            data, sha = existing
            return httpx.Response(
                200,
                json={
                    "path": file_path,
                    "sha": sha,
                    "size": len(data),
                    "encoding": "base64",
                    "content": base64.encodebytes(data).decode("ascii"),
                },
            )
        if request.method == "PUT":
            body = json.loads(request.content)
            data = base64.b64decode(body["content"])
            sha = body.get("sha")
            if existing is not None:
                if not sha:
                    return httpx.Response(
                        422, json={"message": "Invalid request.\n\n\"sha\" wasn't supplied."}
                    )
                if sha != existing[1]:
                    return httpx.Response(409, json={"message": f"{file_path} does not match {sha}"})
                new_sha = _blob_sha(data)
                self.files[file_path] = (data, new_sha)
                return httpx.Response(200, json={"content": {"path": file_path, "sha": new_sha}})
            new_sha = _blob_sha(data)
            self.files[file_path] = (data, new_sha)
            return httpx.Response(201, json={"content": {"path": file_path, "sha": new_sha}})
        return httpx.Response(405)

    def _pages(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            if self.pages_enabled:
                return httpx.Response(
                    self.pages_conflict_status,
                    json={"message": "GitHub Pages is already enabled."},
                )
            self.pages_enabled = True
            return httpx.Response(201, json={"url": "https://api.github.com/pages", "status": None})
        if request.method == "GET":
            if not self.pages_enabled:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"status": "built"})
        return httpx.Response(204)


class FakeClock:
    """Monotonic and wall clock advanced only by the fake sleep."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryEphemeralStore()


@pytest.fixture
def http(github):
    return github.client()


@pytest.fixture
def flow(http, store, clock):
    return AuthorizationFlow(
        CLIENT_ID,
        REDIRECT_URI,
        store,
        http=http,
        clock=clock,
        monotonic=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def api(http, clock):
    return GitHubClient(http=http, sleep=clock.sleep, clock=clock)


@pytest.fixture
def service(flow, api, store):
    return DeploymentService(CLIENT_ID, REDIRECT_URI, store=store, flow=flow, api=api)
