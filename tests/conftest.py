"""
Shared fixtures: an in-memory GitHub API served through httpx.MockTransport.
"""

from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import quote

import httpx
import pytest

from services.repowalk import Config, RepoWalker, git_blob_hash


API = "https://api.github.com"
RAW = "https://raw.githubusercontent.com"


class FakeGitHub:
    """Routes full URLs to canned responses and records every request."""

    def __init__(self):
        self.routes: dict[str, Any] = {}
        self.calls: list[str] = []

    def add(
        self,
        url: str,
        payload: Any = None,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> None:
        if body is None:
            body = json.dumps(payload).encode("utf-8")
        self.routes[url] = (status, body, headers or {})

    def fail(self, url: str) -> None:
        """Make requests to url raise a network error."""
        self.routes[url] = "connect-error"

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if route == "connect-error":
            raise httpx.ConnectError("connection refused", request=request)
        status, body, headers = route
        return httpx.Response(status, content=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, url: str) -> int:
        return self.calls.count(url)

    # Helpers for a repository "octo/demo"

    def add_tree(self, entries: list[dict[str, Any]], branch: str = "main", repo: str = "octo/demo", **kwargs) -> str:
        url = f"{API}/repos/{repo}/git/trees/{branch}?recursive=1"
        self.add(url, {"sha": "f" * 40, "url": url, "tree": entries, "truncated": False}, **kwargs)
        return url

    def add_raw(self, path: str, content: bytes, branch: str = "main", repo: str = "octo/demo") -> str:
        url = f"{RAW}/{repo}/{branch}/{quote(path)}"
        self.add(url, body=content)
        return url


def blob(path: str, content: bytes, mode: str = "100644") -> dict[str, Any]:
    sha = git_blob_hash(content)
    return {
        "path": path,
        "mode": mode,
        "type": "blob",
        "sha": sha,
        "size": len(content),
        "url": f"{API}/repos/octo/demo/git/blobs/{sha}",
    }


def tree(path: str) -> dict[str, Any]:
    return {"path": path, "mode": "040000", "type": "tree", "sha": "d" * 40}


class Clock:
    """Settable time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GITHUB_TOKEN", "REPOWALK_CACHE_DIR", "REPOWALK_CACHE_TTL", "REPOWALK_LOCAL_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def local_root(tmp_path):
    return tmp_path / "local"


@pytest.fixture
def make_walker(tmp_path, fake_github, clock, local_root):
    """Build a RepoWalker for octo/demo@main backed by the fake API."""
    walkers: list[RepoWalker] = []

    def factory(policy: str = "read-only", hooks=None, **sections) -> RepoWalker:
        data = {
            "cache": {"path": str(tmp_path / "cache"), "ttl": 3600},
            "defaults": {"repo": "octo/demo", "branch": "main", "local_path": str(local_root)},
        }
        for name, values in sections.items():
            data.setdefault(name, {}).update(values)
        walker = RepoWalker(
            Config.from_dict(data),
            policy=policy,
            hooks=hooks,
            transport=fake_github.transport,
            clock=clock,
        )
        walkers.append(walker)
        return walker

    yield factory

    for walker in walkers:
        walker.close()
