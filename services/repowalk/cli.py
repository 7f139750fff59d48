"""
CLI interface for the repository walker.

Provides commands for:
- Walking a repository against a local directory
- Repository, branch and contact listings
- Cache management
- Rate limit status and configuration validation

Usage Examples:
    # Dry run: classify only
    python -m services.repowalk.cli walk octocat/Hello-World ./hello

    # Download missing files and directories
    python -m services.repowalk.cli walk octocat/Hello-World ./hello --policy write

    # List a user's repositories
    python -m services.repowalk.cli repos octocat
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cache import ResponseCache
from .config import Config
from .utils import RepoWalkError, setup_detailed_logging, setup_logging
from .walker import RepoWalker

app = typer.Typer(
    name="repowalk",
    help="Reconcile a local directory with a GitHub repository tree",
    add_completion=False,
)

console = Console()


def _load_config(config_path: Optional[Path]) -> Config:
    """Load the config file; without --config a missing file means defaults."""
    try:
        return Config.load(config_path)
    except FileNotFoundError as e:
        if config_path is None:
            return Config.from_dict({})
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)


def _setup(config: Config, verbose: bool = False, debug: bool = False) -> None:
    if debug:
        setup_detailed_logging(level="DEBUG", log_file=config.logging.file)
    else:
        setup_logging(
            level="DEBUG" if verbose else config.logging.level,
            log_file=config.logging.file,
            max_size_mb=config.logging.max_size_mb,
            backup_count=config.logging.backup_count,
            verbose=not verbose,
        )


def _apply_cache_flags(config: Config, no_cache: bool, ttl: Optional[int]) -> None:
    if no_cache:
        config.cache.enabled = False
    if ttl is not None:
        config.cache.ttl = ttl


ConfigOption = typer.Option(None, "--config", "-c", help="Path to walk_config.yaml")


# =============================================================================
# Walk
# =============================================================================

@app.command("walk")
def walk(
    repo: Optional[str] = typer.Argument(None, help="user/repo (defaults from config)"),
    local_path: Optional[Path] = typer.Argument(None, help="Local directory"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch or ref"),
    policy: Optional[str] = typer.Option(
        None,
        "--policy", "-p",
        help="read-only, write or overwrite",
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads"),
    api_download: bool = typer.Option(
        False,
        "--api-download",
        help="Download through the contents API instead of the raw host",
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Disable the response cache"),
    ttl: Optional[int] = typer.Option(None, "--ttl", help="Cache time-to-live in seconds"),
    show_entries: bool = typer.Option(False, "--entries", "-e", help="List every entry outcome"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """
    Compare a repository branch with a local directory.

    In read-only mode (default) nothing is written; write mode fetches
    missing files and directories; overwrite mode also replaces differing files.
    """
    config = _load_config(config_path)
    _setup(config, verbose, debug)
    _apply_cache_flags(config, no_cache, ttl)
    if workers is not None:
        config.walk.max_workers = workers
    if api_download:
        config.walk.raw_download = False

    try:
        with RepoWalker(config, policy=policy) as walker:
            result = walker.walk(local_path=local_path, repo=repo, branch=branch)
    except RepoWalkError as e:
        console.print(f"[red]Walk aborted: {e}[/red]")
        raise typer.Exit(2)

    if show_entries:
        table = Table(title="Entries", box=box.ROUNDED)
        table.add_column("Path", style="cyan")
        table.add_column("Outcome", style="green")
        table.add_column("Error", style="red")
        for entry in result.entries:
            table.add_row(entry.path, entry.outcome.value, str(entry.error or ""))
        console.print(table)

    reset = (
        f"{result.rate_limit_reset_in:.0f}s"
        if result.rate_limit_reset_in is not None else "unknown"
    )
    console.print(Panel(
        f"[green]Walk Complete[/green] {result.ref}@{result.branch} -> {result.local_root}\n\n"
        f"Matched: {result.stats.matched}\n"
        f"Missing or new: {result.stats.missing_or_new}\n"
        f"Conflicts: {result.stats.conflicts}\n"
        f"Skipped: {result.skipped}\n"
        f"Failures: {len(result.failures)}\n"
        f"Rate limit: {result.rate_limit_remaining if result.rate_limit_remaining is not None else '?'} "
        f"remaining, resets in {reset}",
        box=box.ROUNDED,
    ))

    for failure in result.failures:
        console.print(f"  [red]✗[/red] {failure.path}: {failure.error}")

    if result.failures:
        raise typer.Exit(1)


# =============================================================================
# Metadata Commands
# =============================================================================

@app.command("info")
def repo_info(
    repo: Optional[str] = typer.Argument(None, help="user/repo"),
    config_path: Optional[Path] = ConfigOption,
):
    """Show repository information."""
    config = _load_config(config_path)
    _setup(config)

    try:
        with RepoWalker(config) as walker:
            info = walker.repository_info(repo)
    except RepoWalkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=info.full_name, box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in info.fields.items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command("repos")
def list_repos(
    user: Optional[str] = typer.Argument(None, help="GitHub user"),
    page: Optional[int] = typer.Option(None, "--page", help="Fetch a single page only"),
    config_path: Optional[Path] = ConfigOption,
):
    """List a user's repositories."""
    config = _load_config(config_path)
    _setup(config)

    try:
        with RepoWalker(config) as walker:
            repos = walker.user_repositories(user, page=page)
    except RepoWalkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Repositories ({len(repos)})", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Default branch", style="yellow")
    table.add_column("Language", style="magenta")
    table.add_column("Description", style="white")
    for info in repos.values():
        table.add_row(
            info.name,
            info.default_branch,
            str(info.fields.get("language") or ""),
            str(info.fields.get("description") or ""),
        )
    console.print(table)


@app.command("branches")
def list_branches(
    repo: Optional[str] = typer.Argument(None, help="user/repo"),
    config_path: Optional[Path] = ConfigOption,
):
    """List branch heads of a repository."""
    config = _load_config(config_path)
    _setup(config)

    try:
        with RepoWalker(config) as walker:
            branches = walker.branch_list(repo)
    except RepoWalkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    for branch in branches:
        console.print(f"  [cyan]{branch.name}[/cyan] {branch.sha[:12]}")


@app.command("contacts")
def list_contacts(
    repo: Optional[str] = typer.Argument(None, help="user/repo"),
    config_path: Optional[Path] = ConfigOption,
):
    """List authors and committers of every branch head."""
    config = _load_config(config_path)
    _setup(config)

    try:
        with RepoWalker(config) as walker:
            contacts = walker.repository_contacts(repo)
    except RepoWalkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Contacts", box=box.ROUNDED)
    table.add_column("Email", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Role", style="yellow")
    for email, people in contacts.items():
        for person in people:
            table.add_row(email, person.name, person.role)
    console.print(table)


@app.command("rate-limit")
def rate_limit(
    config_path: Optional[Path] = ConfigOption,
):
    """Show the current API rate limit."""
    config = _load_config(config_path)
    _setup(config)

    try:
        with RepoWalker(config) as walker:
            core = walker.client.check_rate_limit()
    except RepoWalkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"Limit: {core.get('limit', '?')}  "
        f"Remaining: {core.get('remaining', '?')}  "
        f"Reset: {core.get('reset', '?')}"
    )


# =============================================================================
# Cache Commands
# =============================================================================

@app.command("cache-stats")
def cache_stats(
    config_path: Optional[Path] = ConfigOption,
):
    """Show response cache statistics."""
    config = _load_config(config_path)
    cache = ResponseCache(config.cache.path, config.cache.ttl, enabled=config.cache.enabled)
    stats = cache.stats()

    table = Table(title="Cache Statistics", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Enabled", str(stats["enabled"]))
    table.add_row("Directory", stats["path"])
    table.add_row("TTL", f"{stats['ttl']}s")
    table.add_row("Entries", str(stats["entries"]))
    table.add_row("Size", f"{stats['size_bytes'] / 1024:.1f} KB")

    console.print(table)


@app.command("cache-clear")
def cache_clear(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Invalidate a single URL"),
    config_path: Optional[Path] = ConfigOption,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Clear cached responses."""
    config = _load_config(config_path)
    cache = ResponseCache(config.cache.path, config.cache.ttl)

    if url:
        removed = cache.invalidate(url)
        console.print("[green]Invalidated[/green]" if removed else "[yellow]Not cached[/yellow]")
        return

    if not force and not typer.confirm(f"Clear every cached response in {cache.cache_dir}?"):
        console.print("[blue]Cancelled[/blue]")
        raise typer.Exit(0)

    console.print(f"[green]Removed {cache.clear()} cached responses[/green]")


# =============================================================================
# Config Commands
# =============================================================================

@app.command("validate-config")
def validate_config(
    config_path: Optional[Path] = ConfigOption,
):
    """Validate configuration file."""
    config = _load_config(config_path)

    errors = config.validate()

    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)
    else:
        console.print("[green]✓ Configuration is valid[/green]")


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
