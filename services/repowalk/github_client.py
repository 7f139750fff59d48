"""
GitHub API client for repository metadata, tree snapshots and file content.

Every GET goes through fetch(), which consults the response cache first,
records rate limit headers and Link pagination after each real round trip,
and stores successful bodies back into the cache.

Endpoints:
  - GET /repos/{owner}/{repo} - Repository info
  - GET /users/{user}/repos - Repository listing (paged)
  - GET /repos/{owner}/{repo}/git/refs/heads/ - Branch heads
  - GET /repos/{owner}/{repo}/git/trees/{branch}?recursive=1 - File tree
  - GET raw.githubusercontent.com/{owner}/{repo}/{branch}/{path} - File content
"""

from __future__ import annotations

import base64
import json
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from .cache import ResponseCache
from .config import GitHubConfig
from .models import BranchRef, Contact, RepositoryInfo, TreeEntry, TreeSnapshot
from .ratelimit import PaginationState, RateLimitState, parse_next_link, parse_pagination
from .repo_ref import RepoRef
from .utils import ApiError, NotFoundError, TransportError


@dataclass
class FetchResult:
    """A response body plus what fetch() learned about it."""
    url: str
    status_code: int
    body: bytes
    from_cache: bool = False
    pagination: Optional[PaginationState] = None
    next_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class GitHubClient:
    """
    GitHub REST API client with response caching and rate limit accounting.

    Holds in-memory tables of repository info (keyed by lowercase
    "user/repo") and user repository listings (keyed by lowercase user).
    """

    def __init__(
        self,
        config: Optional[GitHubConfig] = None,
        cache: Optional[ResponseCache] = None,
        rate_limit: Optional[RateLimitState] = None,
        transport: Optional[httpx.BaseTransport] = None,
        raw_download: bool = True,
    ):
        """
        Initialize GitHub client.

        Args:
            config: API settings. Token falls back to the GITHUB_TOKEN env var.
            cache: Response cache; None disables caching.
            rate_limit: Shared rate limit state; a fresh one is created if omitted.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
            raw_download: Download files from the raw host instead of the API.
        """
        self.config = config or GitHubConfig()
        self.cache = cache
        self.rate_limit = rate_limit or RateLimitState()
        self.raw_download = raw_download

        token = self.config.token or os.getenv("GITHUB_TOKEN")

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.config.user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
            logger.info("Using authenticated GitHub API (5000 req/hour limit)")
        else:
            logger.warning("Using unauthenticated GitHub API (60 req/hour limit)")

        self._client = httpx.Client(
            headers=headers,
            timeout=self.config.timeout,
            transport=transport,
            follow_redirects=True,
        )

        self.repository_info: dict[str, RepositoryInfo] = {}
        self.user_repositories: dict[str, dict[str, RepositoryInfo]] = {}
        self.network_calls = 0
        self._calls_lock = threading.Lock()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Fetch path
    # =========================================================================

    def http_get(self, url: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        """Single network GET. Network failures become TransportError."""
        logger.debug(f"GET {url}")
        try:
            response = self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Network error fetching {url}: {e}", url=url) from e
        with self._calls_lock:
            self.network_calls += 1
        return response

    def fetch(self, url: str, ttl: Optional[int] = None, cacheable: bool = True) -> FetchResult:
        """
        Fetch a URL, serving it from the cache while fresh.

        Rate limit and pagination are refreshed only on a real round trip;
        cache hits carry no pagination state. Only 2xx bodies are cached.
        """
        if not cacheable or self.cache is None or not self.cache.enabled:
            return self._fetch_network(url, store=False)

        with self.cache.lock(url):
            body = self.cache.get(url, ttl)
            if body is not None:
                return FetchResult(url=url, status_code=200, body=body, from_cache=True)
            return self._fetch_network(url, store=True)

    def fetch_cached(self, url: str, ttl: Optional[int] = None) -> bytes:
        """Body of a cacheable GET."""
        return self.fetch(url, ttl).body

    def _fetch_network(self, url: str, store: bool) -> FetchResult:
        response = self.http_get(url)
        self.rate_limit.update(response.headers)

        result = FetchResult(
            url=url,
            status_code=response.status_code,
            body=response.content,
            pagination=parse_pagination(response.headers.get("Link"), url),
            next_url=parse_next_link(response.headers.get("Link")),
        )
        if store and result.ok:
            try:
                self.cache.put(url, result.body)
            except OSError as e:
                logger.warning(f"Could not cache {url}: {e}")
        return result

    def _get_json(
        self,
        url: str,
        what: str,
        ttl: Optional[int] = None,
        cacheable: bool = True,
    ) -> tuple[Any, FetchResult]:
        """Fetch and decode JSON, turning error documents into exceptions."""
        result = self.fetch(url, ttl, cacheable)
        try:
            data = json.loads(result.body)
        except ValueError:
            raise ApiError(
                f"Malformed JSON for {what} (HTTP {result.status_code})",
                status_code=result.status_code,
            )

        if not result.ok:
            message = data.get("message") if isinstance(data, dict) else None
            message = message or f"HTTP {result.status_code}"
            if result.status_code == 404:
                raise NotFoundError(f"ERROR: can't get {what}: {message}")
            raise ApiError(f"ERROR: can't get {what}: {message}", status_code=result.status_code)

        return data, result

    @staticmethod
    def _message_error(data: Any, what: str, status_code: int) -> ApiError:
        if isinstance(data, dict) and data.get("message"):
            return ApiError(f"ERROR: {what}: {data['message']}", status_code=status_code)
        return ApiError(f"Bad response for {what}", status_code=status_code)

    # =========================================================================
    # Metadata
    # =========================================================================

    def fetch_repository_info(self, ref: RepoRef, ttl: Optional[int] = None) -> RepositoryInfo:
        """GET /repos/{owner}/{repo} -> RepositoryInfo (memoized per session)."""
        if ref.key in self.repository_info:
            return self.repository_info[ref.key]

        url = f"{self.config.api_url}/repos/{ref.full_name}"
        try:
            data, result = self._get_json(url, f"repository '{ref}'", ttl)
        except NotFoundError as e:
            raise NotFoundError(str(e), ref=ref.full_name) from e

        if not isinstance(data, dict) or "default_branch" not in data:
            raise self._message_error(data, f"can't get repository '{ref}'", result.status_code)

        info = RepositoryInfo.from_api(data)
        self.repository_info[ref.key] = info
        return info

    def fetch_default_branch(self, ref: RepoRef, ttl: Optional[int] = None) -> str:
        """
        Default branch of a repository.

        Uses the owner's repository listing when it is already loaded,
        otherwise the repository info.
        """
        user_key = ref.user.lower()
        if user_key in self.user_repositories:
            listing = self.user_repositories[user_key]
            repo_key = ref.repo.lower()
            if repo_key not in listing:
                raise NotFoundError(
                    f"Not found '{ref.repo}' in repositories list of git-user '{ref.user}'",
                    ref=ref.full_name,
                )
            return listing[repo_key].default_branch

        return self.fetch_repository_info(ref, ttl).default_branch

    def fetch_user_repositories(
        self,
        user: str,
        page: Optional[int] = None,
        ttl: Optional[int] = None,
    ) -> dict[str, RepositoryInfo]:
        """
        Repositories of a user keyed by lowercase name.

        Without `page`, follows pagination until every page is read and
        memoizes the full listing. With `page`, returns that page only.
        """
        user_key = user.lower()
        if page is None and user_key in self.user_repositories:
            return self.user_repositories[user_key]

        per_page = self.config.per_page
        base = f"{self.config.api_url}/users/{user}/repos"
        what = f"repositories of '{user}'"

        first_url = f"{base}?per_page={per_page}&page={page or 1}"
        items, result = self._get_repo_page(first_url, what)

        if page is None:
            if result.pagination is not None:
                for n in range(2, result.pagination.total_pages + 1):
                    more, _ = self._get_repo_page(result.pagination.page_url(n), what)
                    items.extend(more)
            elif result.next_url is not None:
                # Only rel="next" given: follow the chain. These pages skip the
                # cache, since a cached page would not say where the chain goes.
                seen = {first_url}
                next_url = result.next_url
                while next_url is not None and next_url not in seen:
                    seen.add(next_url)
                    more, page_result = self._get_repo_page(next_url, what, cacheable=False)
                    items.extend(more)
                    next_url = page_result.next_url
            elif result.from_cache:
                # Cache hits carry no Link header; keep going while pages come back full.
                n, last = 1, items
                while len(last) >= per_page:
                    n += 1
                    last, _ = self._get_repo_page(f"{base}?per_page={per_page}&page={n}", what)
                    items.extend(last)

        listing: dict[str, RepositoryInfo] = {}
        for item in items:
            info = RepositoryInfo.from_api(item)
            listing[info.name.lower()] = info
            self.repository_info[f"{user_key}/{info.name.lower()}"] = info

        if page is None:
            self.user_repositories[user_key] = listing
        logger.info(f"Loaded {len(listing)} repositories of {user}")
        return listing

    def _get_repo_page(
        self,
        url: str,
        what: str,
        cacheable: bool = True,
    ) -> tuple[list[dict[str, Any]], FetchResult]:
        data, result = self._get_json(url, what, cacheable=cacheable)
        if not isinstance(data, list):
            raise self._message_error(data, f"git_user_repositories_list {what}", result.status_code)
        return list(data), result

    def fetch_branches(self, ref: RepoRef, ttl: Optional[int] = None) -> list[BranchRef]:
        """GET /repos/{owner}/{repo}/git/refs/heads/ -> [BranchRef]."""
        url = f"{self.config.api_url}/repos/{ref.full_name}/git/refs/heads/"
        try:
            data, result = self._get_json(url, f"branches of '{ref}'", ttl)
        except NotFoundError as e:
            raise NotFoundError(str(e), ref=ref.full_name) from e

        if isinstance(data, dict) and "ref" in data:
            data = [data]  # a single head comes back as an object
        if not isinstance(data, list):
            raise self._message_error(data, f"branches of '{ref}'", result.status_code)
        return [BranchRef.from_api(item) for item in data]

    def fetch_repository_contacts(self, ref: RepoRef) -> dict[str, list[Contact]]:
        """Authors and committers of every branch head, keyed by email."""
        contacts: dict[str, list[Contact]] = {}
        for branch in self.fetch_branches(ref):
            if not branch.commit_url:
                continue
            commit, _ = self._get_json(branch.commit_url, f"commit {branch.sha[:8]}")
            for role in ("author", "committer"):
                person = commit.get(role) if isinstance(commit, dict) else None
                if not person or not person.get("email"):
                    continue
                contact = Contact(name=person.get("name", ""), role=f"{ref.full_name}#{role}")
                known = contacts.setdefault(person["email"], [])
                if contact not in known:
                    known.append(contact)
        return contacts

    # =========================================================================
    # Tree snapshot
    # =========================================================================

    def tree_url(self, ref: RepoRef, branch: str) -> str:
        return (
            f"{self.config.api_url}/repos/{ref.full_name}"
            f"/git/trees/{quote(branch, safe='')}?recursive=1"
        )

    def fetch_tree_snapshot(self, ref: RepoRef, branch: str, ttl: Optional[int] = None) -> TreeSnapshot:
        """
        Recursive listing of a branch.

        Raises:
            NotFoundError: the repository or branch does not exist.
            ApiError: the API answered with anything else unexpected.
        """
        url = self.tree_url(ref, branch)
        not_found = f"Not found '{ref}' branch='{branch}'"
        try:
            data, result = self._get_json(url, f"tree of '{ref}' branch='{branch}'", ttl)
        except NotFoundError as e:
            raise NotFoundError(f"{not_found}: {e}", ref=ref.full_name, branch=branch) from e

        if not isinstance(data, dict) or "sha" not in data:
            raise NotFoundError(not_found, ref=ref.full_name, branch=branch)
        if "tree" not in data:
            raise self._message_error(data, f"tree of '{ref}'", result.status_code)

        snapshot = TreeSnapshot.from_api(data, source_url=url)
        if snapshot.truncated:
            logger.warning(f"Tree listing of {ref}@{branch} was truncated by the API")
        logger.info(
            f"Tree {ref}@{branch}: {len(snapshot)} entries"
            f"{' (cached)' if result.from_cache else ''}"
        )
        return snapshot

    # =========================================================================
    # File content
    # =========================================================================

    def raw_file_url(self, ref: RepoRef, branch: str, path: str) -> str:
        return f"{self.config.raw_url}/{ref.full_name}/{quote(branch, safe='')}/{quote(path)}"

    def download_file(self, ref: RepoRef, branch: str, entry: TreeEntry) -> bytes:
        """
        Download a blob's content.

        Raw mode hits the raw content host (not rate limited); API mode
        decodes the base64 payload of the blob/contents endpoint.
        """
        if self.raw_download:
            url = self.raw_file_url(ref, branch, entry.path)
            result = self.fetch(url, cacheable=False)
            if result.status_code == 404:
                raise NotFoundError(f"File not found: {entry.path}", ref=ref.full_name, branch=branch)
            if not result.ok:
                raise ApiError(
                    f"Raw download returned HTTP {result.status_code} for {entry.path}",
                    status_code=result.status_code,
                )
            return result.body

        url = entry.url or (
            f"{self.config.api_url}/repos/{ref.full_name}/contents/{quote(entry.path)}"
            f"?ref={quote(branch, safe='')}"
        )
        data, result = self._get_json(url, f"content of {entry.path}", cacheable=False)
        if not isinstance(data, dict) or "content" not in data:
            raise self._message_error(data, f"content of {entry.path}", result.status_code)
        if data.get("encoding", "base64") != "base64":
            raise ApiError(f"Unsupported encoding {data.get('encoding')!r} for {entry.path}")
        return base64.b64decode(data["content"])

    # =========================================================================
    # Rate limit
    # =========================================================================

    def check_rate_limit(self) -> dict[str, Any]:
        """Ask the API for the current budget (does not count against it)."""
        data, _ = self._get_json(f"{self.config.api_url}/rate_limit", "rate limit", cacheable=False)
        return data.get("resources", {}).get("core", {}) if isinstance(data, dict) else {}
