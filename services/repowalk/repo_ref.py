"""
Repository reference parsing.

A reference is written as "user/repo", but any of the characters in
DELIMITERS may separate the two halves ("user:repo", "user repo", ...).
Missing halves fall back to the resolver's defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Optional

from .utils import ConfigurationError


DELIMITERS = "/\\ ,:;|*#"


class Require(IntFlag):
    """Which halves of a reference must be present after defaulting."""
    NONE = 0
    USER = 1
    REPO = 2
    BOTH = 3


@dataclass(frozen=True)
class RepoRef:
    """A resolved user/repo pair. Original case is kept for outbound URLs."""
    user: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.user}/{self.repo}"

    @property
    def key(self) -> str:
        """Lowercase "user/repo", used for in-memory tables and lookups."""
        return self.full_name.lower()

    def __str__(self) -> str:
        return self.full_name


def split_pair(value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Split a free-form reference on the first delimiter.

    Empty halves come back as None. A value without any delimiter is
    treated as a bare user name.
    """
    if not value:
        return None, None

    for i, char in enumerate(value):
        if char in DELIMITERS:
            user, repo = value[:i], value[i + 1:]
            break
    else:
        user, repo = value, ""

    return user or None, repo or None


class RepoRefResolver:
    """Resolve references against session defaults."""

    def __init__(self, default_user: Optional[str] = None, default_repo: Optional[str] = None):
        self.default_user = default_user
        self.default_repo = default_repo

    @classmethod
    def from_pair(cls, value: Optional[str]) -> "RepoRefResolver":
        user, repo = split_pair(value)
        return cls(user, repo)

    def set_defaults(self, value: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        """Replace both defaults from a "user/repo" string; returns the new pair."""
        self.default_user, self.default_repo = split_pair(value)
        return self.default_user, self.default_repo

    def check(
        self,
        user: Optional[str],
        repo: Optional[str],
        require: Require = Require.BOTH,
    ) -> tuple[Optional[str], Optional[str]]:
        """Fill required halves from defaults, failing on the first one still missing."""
        if require & Require.USER and not user:
            user = self.default_user
            if not user:
                raise ConfigurationError("git-user undefined", field="user")
        if require & Require.REPO and not repo:
            repo = self.default_repo
            if not repo:
                raise ConfigurationError("git-repository undefined", field="repo")
        return user, repo

    def split(
        self,
        value: Optional[str],
        require: Require = Require.NONE,
    ) -> tuple[Optional[str], Optional[str]]:
        """Split a reference and apply the required-field check."""
        user, repo = split_pair(value)
        return self.check(user, repo, require)

    def bind(self, user: Optional[str] = None, repo: Optional[str] = None) -> str:
        """Inverse of split: produce "user/repo", both halves required."""
        user, repo = self.check(user, repo, Require.BOTH)
        return f"{user}/{repo}"

    def resolve(self, value: Optional[str | RepoRef] = None) -> RepoRef:
        """Resolve a reference with both halves required."""
        if isinstance(value, RepoRef):
            return value
        user, repo = self.split(value, Require.BOTH)
        return RepoRef(user, repo)
