"""
Configuration management for the repository walker.

Loads and validates settings from walk_config.yaml with environment variable overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger


POLICY_NAMES = ("read-only", "write", "overwrite")


@dataclass
class GitHubConfig:
    """Remote API settings."""
    api_url: str = "https://api.github.com"
    raw_url: str = "https://raw.githubusercontent.com"
    token: Optional[str] = None
    timeout: float = 30.0
    user_agent: str = "repowalk/1.0"
    per_page: int = 100


@dataclass
class DefaultsConfig:
    """Session defaults used when a call omits user, repo, branch or path."""
    repo: Optional[str] = None  # "user/repo" or just "user"
    branch: Optional[str] = None
    local_path: Optional[str] = None
    branches: dict[str, str] = field(default_factory=dict)  # "user/repo" -> branch
    local_paths: dict[str, str] = field(default_factory=dict)  # "user/repo" -> path


@dataclass
class CacheConfig:
    """Disk response cache settings."""
    enabled: bool = True
    path: str = "./cache/responses"
    ttl: int = 3600  # seconds


@dataclass
class WalkConfig:
    """Reconciliation walk settings."""
    policy: str = "read-only"
    raw_download: bool = True
    max_workers: int = 1


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = "./logs/repowalk.log"
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class Config:
    """
    Main configuration container.

    Loads from walk_config.yaml with optional environment variable overrides.
    """
    github: GitHubConfig = field(default_factory=GitHubConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    walk: WalkConfig = field(default_factory=WalkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to walk_config.yaml. If None, uses default locations.

        Returns:
            Config instance with loaded settings.
        """
        if config_path is None:
            candidates = [
                Path("walk_config.yaml"),
                Path(__file__).parent.parent.parent / "walk_config.yaml",
                Path("/etc/repowalk/walk_config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    "Config file not found. Tried: " + ", ".join(str(c) for c in candidates)
                )

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from {config_path}")

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "github" in data:
            gh = data["github"] or {}
            config.github = GitHubConfig(
                api_url=gh.get("api_url", config.github.api_url).rstrip("/"),
                raw_url=gh.get("raw_url", config.github.raw_url).rstrip("/"),
                token=gh.get("token", config.github.token),
                timeout=float(gh.get("timeout", config.github.timeout)),
                user_agent=gh.get("user_agent", config.github.user_agent),
                per_page=int(gh.get("per_page", config.github.per_page)),
            )

        if "defaults" in data:
            d = data["defaults"] or {}
            config.defaults = DefaultsConfig(
                repo=d.get("repo", config.defaults.repo),
                branch=d.get("branch", config.defaults.branch),
                local_path=d.get("local_path", config.defaults.local_path),
                branches=dict(d.get("branches") or {}),
                local_paths=dict(d.get("local_paths") or {}),
            )

        if "cache" in data:
            cache = data["cache"] or {}
            config.cache = CacheConfig(
                enabled=bool(cache.get("enabled", config.cache.enabled)),
                path=cache.get("path", config.cache.path),
                ttl=int(cache.get("ttl", config.cache.ttl)),
            )

        if "walk" in data:
            walk = data["walk"] or {}
            config.walk = WalkConfig(
                policy=walk.get("policy", config.walk.policy),
                raw_download=bool(walk.get("raw_download", config.walk.raw_download)),
                max_workers=int(walk.get("max_workers", config.walk.max_workers)),
            )

        if "logging" in data:
            log_cfg = data["logging"] or {}
            config.logging = LoggingConfig(
                level=log_cfg.get("level", config.logging.level),
                file=log_cfg.get("file", config.logging.file),
                max_size_mb=log_cfg.get("max_size_mb", config.logging.max_size_mb),
                backup_count=log_cfg.get("backup_count", config.logging.backup_count),
            )

        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if os.getenv("GITHUB_TOKEN"):
            self.github.token = os.getenv("GITHUB_TOKEN")

        if os.getenv("REPOWALK_CACHE_DIR"):
            self.cache.path = os.getenv("REPOWALK_CACHE_DIR")
        if os.getenv("REPOWALK_CACHE_TTL"):
            self.cache.ttl = int(os.getenv("REPOWALK_CACHE_TTL"))

        if os.getenv("REPOWALK_LOCAL_PATH"):
            self.defaults.local_path = os.getenv("REPOWALK_LOCAL_PATH")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.
        Empty list means configuration is valid.
        """
        errors = []

        if self.walk.policy not in POLICY_NAMES:
            errors.append(
                f"Unknown walk.policy '{self.walk.policy}' (expected one of {', '.join(POLICY_NAMES)})"
            )
        if self.walk.max_workers < 1:
            errors.append("walk.max_workers must be at least 1")

        if self.cache.enabled and self.cache.ttl <= 0:
            errors.append("cache.ttl must be positive when the cache is enabled")

        if self.github.timeout <= 0:
            errors.append("github.timeout must be positive")
        if not 1 <= self.github.per_page <= 100:
            errors.append("github.per_page must be between 1 and 100")

        return errors
