"""
Repository Walker

Reconciles a local directory with a GitHub repository tree snapshot,
classifying every remote file and directory against local state and
dispatching pluggable side effects through named hooks.

Features:
- Git blob hashing to compare files without downloading them
- Read-only, write and overwrite policies
- Disk-backed TTL response cache
- Rate limit accounting and Link header pagination
"""

from .config import (
    Config,
    GitHubConfig,
    DefaultsConfig,
    CacheConfig,
    WalkConfig,
    LoggingConfig,
)
from .cache import ResponseCache
from .hasher import git_blob_hash, hash_file, local_blob_matches
from .github_client import GitHubClient, FetchResult
from .hooks import (
    SideEffects,
    WalkHooks,
    WalkPolicy,
    get_policy,
    read_only_policy,
    write_policy,
    overwrite_policy,
)
from .models import (
    BranchRef,
    Contact,
    EntryResult,
    EntryType,
    RepositoryInfo,
    TreeEntry,
    TreeSnapshot,
    WalkContext,
    WalkOutcome,
    WalkResult,
    WalkStatistics,
)
from .ratelimit import PaginationState, RateLimitState, parse_pagination
from .repo_ref import RepoRef, RepoRefResolver, Require
from .walker import RepoWalker, classify_entry
from .utils import (
    setup_logging,
    setup_detailed_logging,
    timed_operation,
    RepoWalkError,
    ConfigurationError,
    NotFoundError,
    TransportError,
    ApiError,
    UnknownEntryTypeError,
    LocalIOError,
)

__all__ = [
    # Config
    "Config",
    "GitHubConfig",
    "DefaultsConfig",
    "CacheConfig",
    "WalkConfig",
    "LoggingConfig",
    # Cache
    "ResponseCache",
    # Hashing
    "git_blob_hash",
    "hash_file",
    "local_blob_matches",
    # GitHub
    "GitHubClient",
    "FetchResult",
    "PaginationState",
    "RateLimitState",
    "parse_pagination",
    # References
    "RepoRef",
    "RepoRefResolver",
    "Require",
    # Models
    "BranchRef",
    "Contact",
    "EntryResult",
    "EntryType",
    "RepositoryInfo",
    "TreeEntry",
    "TreeSnapshot",
    "WalkContext",
    "WalkOutcome",
    "WalkResult",
    "WalkStatistics",
    # Hooks
    "SideEffects",
    "WalkHooks",
    "WalkPolicy",
    "get_policy",
    "read_only_policy",
    "write_policy",
    "overwrite_policy",
    # Walker
    "RepoWalker",
    "classify_entry",
    # Utils
    "setup_logging",
    "setup_detailed_logging",
    "timed_operation",
    "RepoWalkError",
    "ConfigurationError",
    "NotFoundError",
    "TransportError",
    "ApiError",
    "UnknownEntryTypeError",
    "LocalIOError",
]
