"""
Hook slots, side-effect primitives and the canned walk policies.

The walker calls exactly one hook per classified entry. The default hook
bodies only do something when the matching side-effect primitive is bound,
so the three policies differ only in which primitives they bind:

  read-only  nothing bound; the walk classifies and counts
  write      make_dirs + write_file: fetch missing files, create missing dirs
  overwrite  write + resolve_conflict: delete a differing file, then fetch it
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .models import TreeEntry, TreeSnapshot, WalkContext, WalkOutcome, WalkResult
from .repo_ref import RepoRef
from .utils import ConfigurationError, LocalIOError


Hook = Callable[[WalkContext], None]
PathFilter = Callable[[TreeEntry], bool]
PrepareHook = Callable[[TreeSnapshot, Path, RepoRef, str], bool]
FinalizeHook = Callable[[WalkResult], WalkResult]


# =============================================================================
# Side-effect primitives
# =============================================================================

def make_dirs(path: Path) -> None:
    """Create a directory and its parents; an existing directory is fine."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LocalIOError(f"Cannot create directory {path}: {e}", path=str(path)) from e
    if not path.is_dir():
        raise LocalIOError(f"Not a directory: {path}", path=str(path))


def write_file(path: Path, content: bytes) -> None:
    try:
        path.write_bytes(content)
    except OSError as e:
        raise LocalIOError(f"Cannot write {path}: {e}", path=str(path)) from e


def delete_local_file(ctx: WalkContext) -> bool:
    """Conflict resolver for overwrite mode: remove the local copy, then refetch."""
    try:
        ctx.full_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        raise LocalIOError(f"Cannot remove {ctx.full_path}: {e}", path=str(ctx.full_path)) from e
    logger.debug(f"Removed differing local file {ctx.full_path}")
    return True


@dataclass(frozen=True)
class SideEffects:
    """Primitives bound for a walk. Unbound means the effect is skipped."""
    make_dirs: Optional[Callable[[Path], None]] = None
    write_file: Optional[Callable[[Path, bytes], None]] = None
    resolve_conflict: Optional[Callable[[WalkContext], bool]] = None


# =============================================================================
# Default hook bodies
# =============================================================================

def fetch_missing_file(ctx: WalkContext) -> None:
    """Download the blob and write it, creating parent directories first."""
    effects = ctx.effects
    if effects.write_file is None:
        return

    # Listing order is not guaranteed parent-first, so never rely on a
    # tree entry for the parent having been visited.
    parent = ctx.full_path.parent
    if not parent.is_dir():
        if effects.make_dirs is None:
            raise LocalIOError(f"Parent directory missing: {parent}", path=str(ctx.full_path))
        effects.make_dirs(parent)

    content = ctx.fetch_content(ctx.entry)
    effects.write_file(ctx.full_path, content)

    if not ctx.full_path.is_file():
        raise LocalIOError(f"File absent after write: {ctx.full_path}", path=str(ctx.full_path))
    logger.debug(f"Wrote {ctx.full_path} ({len(content)} bytes)")


def create_missing_dir(ctx: WalkContext) -> None:
    if ctx.effects.make_dirs is not None:
        ctx.effects.make_dirs(ctx.full_path)


def resolve_conflict(ctx: WalkContext) -> None:
    """Let the bound resolver decide; overwriting means delete, then fetch as missing."""
    resolver = ctx.effects.resolve_conflict
    if resolver is None:
        return
    if resolver(ctx):
        fetch_missing_file(ctx)


# =============================================================================
# Hook slots
# =============================================================================

@dataclass(frozen=True)
class WalkHooks:
    """One slot per outcome plus optional walk-level callbacks."""
    on_match: Optional[Hook] = None
    on_differs: Optional[Hook] = resolve_conflict
    on_missing_locally: Optional[Hook] = fetch_missing_file
    on_dir_present: Optional[Hook] = None
    on_dir_missing: Optional[Hook] = create_missing_dir
    path_filter: Optional[PathFilter] = None
    prepare: Optional[PrepareHook] = None
    finalize: Optional[FinalizeHook] = None

    def for_outcome(self, outcome: WalkOutcome) -> Optional[Hook]:
        return {
            WalkOutcome.MATCH: self.on_match,
            WalkOutcome.DIFFERS: self.on_differs,
            WalkOutcome.MISSING_LOCALLY: self.on_missing_locally,
            WalkOutcome.DIR_PRESENT: self.on_dir_present,
            WalkOutcome.DIR_MISSING: self.on_dir_missing,
        }[outcome]

    def with_changes(self, **changes) -> "WalkHooks":
        return replace(self, **changes)


# =============================================================================
# Policies
# =============================================================================

@dataclass(frozen=True)
class WalkPolicy:
    name: str
    effects: SideEffects = field(default_factory=SideEffects)


def read_only_policy() -> WalkPolicy:
    return WalkPolicy("read-only", SideEffects())


def write_policy() -> WalkPolicy:
    return WalkPolicy("write", SideEffects(make_dirs=make_dirs, write_file=write_file))


def overwrite_policy() -> WalkPolicy:
    return WalkPolicy(
        "overwrite",
        SideEffects(
            make_dirs=make_dirs,
            write_file=write_file,
            resolve_conflict=delete_local_file,
        ),
    )


POLICIES: dict[str, Callable[[], WalkPolicy]] = {
    "read-only": read_only_policy,
    "write": write_policy,
    "overwrite": overwrite_policy,
}


def get_policy(name: str) -> WalkPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown walk policy '{name}' (expected one of {', '.join(POLICIES)})",
            field="policy",
        ) from None
