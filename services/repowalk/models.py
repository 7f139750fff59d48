"""
Typed records built from API payloads and produced by the walk.

Every decode goes through a from_api() constructor that checks required
fields once at the boundary; a missing field becomes an ApiError here
instead of an attribute check somewhere inside the walker.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from .utils import ApiError, RepoWalkError

if TYPE_CHECKING:
    from .hooks import SideEffects
    from .repo_ref import RepoRef


SYMLINK_MODE = 120000

# Fields kept from each repository of a user listing
INTERESTING_REPO_FIELDS = (
    "id",
    "name",
    "description",
    "fork",
    "forks_count",
    "watchers",
    "homepage",
    "created_at",
    "updated_at",
    "pushed_at",
    "size",
    "has_wiki",
    "has_downloads",
    "has_pages",
    "has_issues",
    "open_issues_count",
    "language",
    "default_branch",
)


def _require(item: dict[str, Any], key: str, what: str) -> Any:
    if key not in item or item[key] is None:
        raise ApiError(f"Malformed {what}: missing '{key}'")
    return item[key]


class EntryType(str, Enum):
    """Tree entry kinds the walker understands."""
    BLOB = "blob"
    TREE = "tree"


@dataclass(frozen=True)
class TreeEntry:
    """One node of a recursive tree listing."""
    path: str  # posix separated, relative to the repository root
    type: str  # 'blob' or 'tree'; anything else aborts the walk
    mode: int  # 100644 file, 100755 executable, 120000 symlink, 40000 tree
    sha: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None

    def __post_init__(self):
        # Paths map straight onto the local root, so they must stay inside it.
        if not self.parts or self.path.startswith("/") or ".." in self.parts:
            raise ApiError(f"Unsafe tree entry path: {self.path!r}")

    @property
    def is_blob(self) -> bool:
        return self.type == EntryType.BLOB.value

    @property
    def is_tree(self) -> bool:
        return self.type == EntryType.TREE.value

    @property
    def is_symlink(self) -> bool:
        return self.mode >= SYMLINK_MODE

    @property
    def parts(self) -> list[str]:
        return [p for p in self.path.split("/") if p]

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "TreeEntry":
        path = _require(item, "path", "tree entry")
        entry_type = _require(item, "type", "tree entry")
        raw_mode = item.get("mode", "0")
        try:
            mode = int(raw_mode)
        except (TypeError, ValueError):
            raise ApiError(f"Malformed tree entry {path}: bad mode {raw_mode!r}")

        sha = item.get("sha")
        size = item.get("size")
        if entry_type == EntryType.BLOB.value:
            sha = _require(item, "sha", f"blob {path}")
            raw_size = _require(item, "size", f"blob {path}")
            try:
                size = int(raw_size)
            except (TypeError, ValueError):
                raise ApiError(f"Malformed blob {path}: bad size {raw_size!r}")

        return cls(
            path=path,
            type=entry_type,
            mode=mode,
            sha=sha,
            size=size,
            url=item.get("url"),
        )


@dataclass(frozen=True)
class TreeSnapshot:
    """Immutable recursive listing of one ref."""
    sha: str
    source_url: str
    entries: tuple[TreeEntry, ...]
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @classmethod
    def from_api(cls, data: dict[str, Any], source_url: str) -> "TreeSnapshot":
        tree = data.get("tree")
        if not isinstance(tree, list):
            raise ApiError("Malformed tree response: 'tree' is not a list")
        return cls(
            sha=data["sha"],
            source_url=source_url,
            entries=tuple(TreeEntry.from_api(item) for item in tree),
            truncated=bool(data.get("truncated", False)),
        )


@dataclass
class RepositoryInfo:
    """Repository metadata; `fields` holds the interesting subset of the payload."""
    name: str
    full_name: str
    default_branch: str
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RepositoryInfo":
        name = _require(data, "name", "repository")
        return cls(
            name=name,
            full_name=data.get("full_name") or name,
            default_branch=_require(data, "default_branch", f"repository {name}"),
            fields={key: data.get(key) for key in INTERESTING_REPO_FIELDS},
        )


@dataclass(frozen=True)
class BranchRef:
    """A branch head from /git/refs/heads/."""
    name: str
    ref: str
    sha: str
    commit_url: Optional[str] = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "BranchRef":
        ref = _require(item, "ref", "branch ref")
        obj = _require(item, "object", f"branch ref {ref}")
        return cls(
            name=ref.removeprefix("refs/heads/"),
            ref=ref,
            sha=_require(obj, "sha", f"branch ref {ref}"),
            commit_url=obj.get("url"),
        )


@dataclass(frozen=True)
class Contact:
    """Someone who authored or committed a branch head."""
    name: str
    role: str  # "user/repo#author" or "user/repo#committer"


class WalkOutcome(str, Enum):
    """Classification of one tree entry against the local file system."""
    MATCH = "match"
    DIFFERS = "differs"
    MISSING_LOCALLY = "missing_locally"
    DIR_PRESENT = "dir_present"
    DIR_MISSING = "dir_missing"

    @property
    def counter(self) -> str:
        """Name of the WalkStatistics field this outcome increments."""
        if self in (WalkOutcome.MATCH, WalkOutcome.DIR_PRESENT):
            return "matched"
        if self in (WalkOutcome.MISSING_LOCALLY, WalkOutcome.DIR_MISSING):
            return "missing_or_new"
        return "conflicts"


@dataclass
class WalkStatistics:
    """Counters for one walk pass. Safe to update from worker threads."""
    matched: int = 0
    missing_or_new: int = 0
    conflicts: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: WalkOutcome) -> None:
        with self._lock:
            name = outcome.counter
            setattr(self, name, getattr(self, name) + 1)

    @property
    def total(self) -> int:
        return self.matched + self.missing_or_new + self.conflicts

    def as_dict(self) -> dict[str, int]:
        return {
            "matched": self.matched,
            "missing_or_new": self.missing_or_new,
            "conflicts": self.conflicts,
        }


@dataclass(frozen=True)
class WalkContext:
    """Everything a hook gets for one classified entry."""
    outcome: WalkOutcome
    full_path: Path
    entry: TreeEntry
    ref: "RepoRef"
    branch: str
    effects: "SideEffects"
    fetch_content: Callable[[TreeEntry], bytes]


@dataclass
class EntryResult:
    """Outcome of one entry, plus the hook failure if there was one."""
    path: str
    outcome: WalkOutcome
    error: Optional[RepoWalkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class WalkResult:
    """Result of a completed (not aborted) walk."""
    ref: "RepoRef"
    branch: str
    local_root: Path
    stats: WalkStatistics
    entries: list[EntryResult] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False
    prepared_only: bool = False
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset_in: Optional[float] = None

    @property
    def failures(self) -> list[EntryResult]:
        return [e for e in self.entries if e.error is not None]

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.failures

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.stats.as_dict())
        data["failures"] = len(self.failures)
        data["skipped"] = self.skipped
        if self.rate_limit_reset_in is not None:
            data["rate_limit_reset_in"] = round(self.rate_limit_reset_in)
        return data
