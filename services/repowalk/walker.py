"""
Reconciliation walker: compare a remote tree snapshot with a local directory.

For every entry of the snapshot, in listing order:
1. Map the posix path onto the local root
2. Classify it (blob: match / differs / missing; tree: present / missing)
3. Count the outcome and call the hook bound to it

Unknown entry types abort the whole walk. Hook failures are recorded on
the entry and the walk carries on with the next one.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from .cache import ResponseCache
from .config import Config
from .github_client import GitHubClient
from .hasher import local_blob_matches
from .hooks import WalkHooks, WalkPolicy, get_policy
from .models import (
    BranchRef,
    Contact,
    EntryResult,
    RepositoryInfo,
    TreeEntry,
    TreeSnapshot,
    WalkContext,
    WalkOutcome,
    WalkResult,
    WalkStatistics,
)
from .ratelimit import RateLimitState
from .repo_ref import RepoRef, RepoRefResolver, Require
from .utils import ConfigurationError, RepoWalkError, UnknownEntryTypeError, timed_operation


def local_path_for(root: Path, entry: TreeEntry) -> Path:
    """Full local path of a tree entry under root."""
    return root.joinpath(*entry.parts)


def classify_entry(entry: TreeEntry, full_path: Path) -> WalkOutcome:
    """
    Classify one tree entry against the local file system.

    Symbolic links (mode >= 120000) are never content-compared and always
    classify as DIFFERS when a local file exists.

    Raises:
        UnknownEntryTypeError: entry is neither a blob nor a tree.
    """
    if entry.is_blob:
        if not full_path.is_file():
            return WalkOutcome.MISSING_LOCALLY
        if not entry.is_symlink and local_blob_matches(full_path, entry.size, entry.sha):
            return WalkOutcome.MATCH
        return WalkOutcome.DIFFERS

    if entry.is_tree:
        return WalkOutcome.DIR_PRESENT if full_path.is_dir() else WalkOutcome.DIR_MISSING

    raise UnknownEntryTypeError(entry.type, entry.path)


class RepoWalker:
    """
    One logical sync session.

    Owns the session defaults (user/repo, branches, local paths), the API
    client with its cache and rate limit state, the bound hooks and policy,
    and the statistics of the latest walk.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        client: Optional[GitHubClient] = None,
        policy: str | WalkPolicy | None = None,
        hooks: Optional[WalkHooks] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the walker.

        Args:
            config: Configuration; defaults are used when omitted.
            client: Pre-built API client. Built from config when omitted.
            policy: Policy name or instance; overrides config.walk.policy.
            hooks: Hook slots; the default slots implement the canned policies.
            transport: httpx transport for the built client (tests).
            clock: Time source for cache freshness and rate limit reporting.
        """
        self.config = config or Config()

        defaults = self.config.defaults
        self.resolver = RepoRefResolver.from_pair(defaults.repo)
        self.default_branch: Optional[str] = defaults.branch
        self.branches: dict[str, str] = {k.lower(): v for k, v in defaults.branches.items()}
        self.default_local_path: Optional[str] = defaults.local_path
        self.local_paths: dict[str, str] = {k.lower(): v for k, v in defaults.local_paths.items()}

        if client is None:
            cache = ResponseCache(
                self.config.cache.path,
                ttl=self.config.cache.ttl,
                enabled=self.config.cache.enabled,
                clock=clock,
            )
            client = GitHubClient(
                self.config.github,
                cache=cache,
                rate_limit=RateLimitState(clock),
                transport=transport,
                raw_download=self.config.walk.raw_download,
            )
        self.client = client
        self.ttl = self.config.cache.ttl

        self.hooks = hooks or WalkHooks()
        if isinstance(policy, WalkPolicy):
            self.policy = policy
        else:
            self.policy = get_policy(policy or self.config.walk.policy)
        self.max_workers = max(1, self.config.walk.max_workers)

        self.stats = WalkStatistics()
        self.last_result: Optional[WalkResult] = None

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RepoWalker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def rate_limit(self) -> RateLimitState:
        return self.client.rate_limit

    # =========================================================================
    # Session defaults
    # =========================================================================

    def set_default_repo(self, value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        return self.resolver.set_defaults(value)

    def set_default_branch(self, branch: Optional[str]) -> None:
        self.default_branch = branch

    def set_branch_for_repo(self, repo: str, branch: Optional[str]) -> None:
        ref = self.resolver.resolve(repo)
        if branch:
            self.branches[ref.key] = branch
        else:
            self.branches.pop(ref.key, None)

    def set_default_local_path(self, path: Optional[str | Path]) -> None:
        self.default_local_path = str(path) if path else None

    def set_local_path_for_repo(self, repo: str, path: str | Path) -> None:
        self.local_paths[self.resolver.resolve(repo).key] = str(path)

    # =========================================================================
    # Policy switches
    # =========================================================================

    def read_only(self) -> None:
        self.policy = get_policy("read-only")

    def write_enable(self) -> None:
        self.policy = get_policy("write")

    def write_enable_overwrite(self) -> None:
        self.policy = get_policy("overwrite")

    # =========================================================================
    # Metadata
    # =========================================================================

    def repository_info(self, repo: Optional[str] = None) -> RepositoryInfo:
        return self.client.fetch_repository_info(self.resolver.resolve(repo), self.ttl)

    def user_repositories(
        self,
        user: Optional[str] = None,
        page: Optional[int] = None,
    ) -> dict[str, RepositoryInfo]:
        user, _ = self.resolver.split(user, Require.USER)
        return self.client.fetch_user_repositories(user, page=page, ttl=self.ttl)

    def branch_list(self, repo: Optional[str] = None) -> list[BranchRef]:
        return self.client.fetch_branches(self.resolver.resolve(repo), self.ttl)

    def repository_contacts(self, repo: Optional[str] = None) -> dict[str, list[Contact]]:
        return self.client.fetch_repository_contacts(self.resolver.resolve(repo))

    def resolve_branch(self, ref: RepoRef) -> str:
        """
        Branch to walk for a repository.

        Order: per-repository override, then the remote default branch when
        its metadata is already loaded, then the configured default branch,
        then a repository info request.
        """
        if self.branches.get(ref.key):
            return self.branches[ref.key]
        known = (
            ref.user.lower() in self.client.user_repositories
            or ref.key in self.client.repository_info
        )
        if not known and self.default_branch:
            return self.default_branch
        return self.client.fetch_default_branch(ref, self.ttl)

    def resolve_local_root(self, ref: RepoRef, local_path: Optional[str | Path] = None) -> Path:
        path = local_path or self.local_paths.get(ref.key) or self.default_local_path
        if not path:
            raise ConfigurationError(f"local path undefined for '{ref}'", field="local_path")
        return Path(path)

    # =========================================================================
    # Walk
    # =========================================================================

    def walk(
        self,
        local_path: Optional[str | Path] = None,
        repo: Optional[str | RepoRef] = None,
        branch: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> WalkResult:
        """
        Reconcile a remote branch with a local directory.

        Args:
            local_path: Local root; falls back to the per-repository or default path.
            repo: "user/repo"; missing halves fall back to the session defaults.
            branch: Branch or ref; resolved through resolve_branch() when omitted.
            cancel_event: When set, no further entries are classified.

        Returns:
            WalkResult with statistics and per-entry outcomes.

        Raises:
            ConfigurationError, NotFoundError, TransportError, ApiError: before
                any entry is visited.
            UnknownEntryTypeError: mid-walk; no result is produced.
        """
        ref = self.resolver.resolve(repo)
        branch = branch or self.resolve_branch(ref)
        root = self.resolve_local_root(ref, local_path)

        snapshot = self.client.fetch_tree_snapshot(ref, branch, self.ttl)

        self.stats = WalkStatistics()
        self.last_result = None
        result = WalkResult(ref=ref, branch=branch, local_root=root, stats=self.stats)

        if self.hooks.prepare is not None and self.hooks.prepare(snapshot, root, ref, branch):
            logger.info(f"Walk of {ref}@{branch} stopped by prepare hook")
            result.prepared_only = True
            return self._finish(result)

        logger.info(
            f"Walking {ref}@{branch} into {root} "
            f"({len(snapshot)} entries, policy={self.policy.name}, workers={self.max_workers})"
        )

        fetch_content = partial(self.client.download_file, ref, branch)
        try:
            with timed_operation(f"Walk of {ref}@{branch}", log_level="debug"):
                if self.max_workers > 1:
                    self._walk_pooled(snapshot, root, ref, branch, fetch_content, result, cancel_event)
                else:
                    self._walk_sequential(snapshot, root, ref, branch, fetch_content, result, cancel_event)
        except UnknownEntryTypeError as e:
            logger.error(f"Walk of {ref}@{branch} aborted: {e}")
            raise

        return self._finish(result)

    def _skip(self, entry: TreeEntry) -> bool:
        return self.hooks.path_filter is not None and bool(self.hooks.path_filter(entry))

    def _walk_sequential(
        self,
        snapshot: TreeSnapshot,
        root: Path,
        ref: RepoRef,
        branch: str,
        fetch_content: Callable[[TreeEntry], bytes],
        result: WalkResult,
        cancel_event: Optional[threading.Event],
    ) -> None:
        for entry in snapshot:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            if self._skip(entry):
                result.skipped += 1
                continue
            result.entries.append(self._visit(entry, root, ref, branch, fetch_content))

    def _walk_pooled(
        self,
        snapshot: TreeSnapshot,
        root: Path,
        ref: RepoRef,
        branch: str,
        fetch_content: Callable[[TreeEntry], bytes],
        result: WalkResult,
        cancel_event: Optional[threading.Event],
    ) -> None:
        futures: list[Future] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            try:
                for entry in snapshot:
                    if cancel_event is not None and cancel_event.is_set():
                        result.cancelled = True
                        break
                    if self._skip(entry):
                        result.skipped += 1
                        continue
                    # Checked here so nothing after an unknown entry gets submitted.
                    if not (entry.is_blob or entry.is_tree):
                        raise UnknownEntryTypeError(entry.type, entry.path)
                    futures.append(executor.submit(
                        self._visit_unless_cancelled,
                        cancel_event, entry, root, ref, branch, fetch_content,
                    ))
            except UnknownEntryTypeError:
                for future in futures:
                    future.cancel()
                raise

            for future in futures:
                entry_result = future.result()
                if entry_result is None:
                    result.cancelled = True
                else:
                    result.entries.append(entry_result)

    def _visit_unless_cancelled(
        self,
        cancel_event: Optional[threading.Event],
        *args,
    ) -> Optional[EntryResult]:
        """Worker body: queued entries are dropped once the walk is cancelled."""
        if cancel_event is not None and cancel_event.is_set():
            return None
        return self._visit(*args)

    def _visit(
        self,
        entry: TreeEntry,
        root: Path,
        ref: RepoRef,
        branch: str,
        fetch_content: Callable[[TreeEntry], bytes],
    ) -> EntryResult:
        full_path = local_path_for(root, entry)
        outcome = classify_entry(entry, full_path)
        self.stats.record(outcome)
        logger.debug(f"{outcome.value:<16} {entry.path}")

        entry_result = EntryResult(path=entry.path, outcome=outcome)
        hook = self.hooks.for_outcome(outcome)
        if hook is None:
            return entry_result

        ctx = WalkContext(
            outcome=outcome,
            full_path=full_path,
            entry=entry,
            ref=ref,
            branch=branch,
            effects=self.policy.effects,
            fetch_content=fetch_content,
        )
        try:
            hook(ctx)
        except RepoWalkError as e:
            logger.warning(f"Hook for {entry.path} ({outcome.value}) failed: {e}")
            entry_result.error = e
        return entry_result

    def _finish(self, result: WalkResult) -> WalkResult:
        result.rate_limit_remaining = self.rate_limit.remaining
        result.rate_limit_reset_in = self.rate_limit.seconds_until_reset()

        if self.hooks.finalize is not None:
            result = self.hooks.finalize(result)

        self.last_result = result
        logger.info(
            f"Walk of {result.ref}@{result.branch} done: "
            f"matched={result.stats.matched} missing_or_new={result.stats.missing_or_new} "
            f"conflicts={result.stats.conflicts} failures={len(result.failures)}"
            f"{' (cancelled)' if result.cancelled else ''}"
        )
        return result

    def get_stats(self) -> dict[str, Any]:
        """Statistics of the last completed walk plus rate limit state."""
        data: dict[str, Any] = {"rate_limit": self.rate_limit.as_dict()}
        if self.last_result is not None:
            data["walk"] = self.last_result.as_dict()
        return data
