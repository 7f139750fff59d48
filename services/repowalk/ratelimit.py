"""
Rate limit accounting and Link header pagination.

GitHub reports its request budget in X-RateLimit-* headers and pages
listings with an RFC 5988 Link header:

    <https://api.github.com/user/1/repos?per_page=100&page=2>; rel="next",
    <https://api.github.com/user/1/repos?per_page=100&page=4>; rel="last"
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger


_LINK_RE = re.compile(r'<([^>]*)>\s*;\s*rel="?([^";]+)"?')

PAGE_PLACEHOLDER = "{page}"


@dataclass(frozen=True)
class PaginationState:
    """Paging hints derived from one listing response."""
    total_pages: int
    base_url: str
    page_param_template: str  # query string with "{page}" in place of the page number

    def page_url(self, page: int) -> str:
        query = self.page_param_template.replace(PAGE_PLACEHOLDER, str(page))
        return f"{self.base_url}?{query}" if query else self.base_url


def strip_query(url: str) -> str:
    """Return url without its query string and fragment."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def parse_link_header(link: Optional[str]) -> dict[str, str]:
    """Parse a Link header into {rel: url}."""
    if not link:
        return {}
    return {rel.strip(): url for url, rel in _LINK_RE.findall(link)}


def parse_next_link(link: Optional[str]) -> Optional[str]:
    """URL of the rel="next" page, or None on the last page."""
    return parse_link_header(link).get("next")


def _page_of(url: str) -> Optional[int]:
    for name, value in parse_qsl(urlsplit(url).query):
        if name == "page":
            try:
                return int(value)
            except ValueError:
                return None
    return None


def _template_from(url: str) -> str:
    params = [(k, v) for k, v in parse_qsl(urlsplit(url).query) if k != "page"]
    query = urlencode(params)
    page_part = f"page={PAGE_PLACEHOLDER}"
    return f"{query}&{page_part}" if query else page_part


def parse_pagination(link: Optional[str], request_url: str) -> Optional[PaginationState]:
    """
    Derive pagination state for a listing request.

    Returns None when the response carries no usable Link header,
    meaning the listing fits on a single page.
    """
    rels = parse_link_header(link)
    if not rels:
        return None

    base_url = strip_query(request_url)

    if "last" in rels:
        total = _page_of(rels["last"])
        template_source = rels["last"]
    elif "prev" in rels:
        # On the last page GitHub only sends prev/first.
        prev_page = _page_of(rels["prev"])
        total = prev_page + 1 if prev_page is not None else None
        template_source = rels["prev"]
    else:
        return None

    if total is None:
        return None

    return PaginationState(
        total_pages=total,
        base_url=base_url,
        page_param_template=_template_from(template_source),
    )


class RateLimitState:
    """
    Request budget reported by the most recent response carrying rate limit headers.

    Shared by every fetch of a session; updated only after a real network round trip.
    """

    LOW_WATERMARK = 10

    def __init__(self, clock: Callable[[], float] = time.time):
        self.limit: Optional[int] = None
        self.remaining: Optional[int] = None
        self.reset_at: Optional[datetime] = None
        self._clock = clock
        self._lock = threading.Lock()

    def update(self, headers: Mapping[str, str]) -> bool:
        """Overwrite counters from response headers. Returns True if any were present."""
        limit = headers.get("X-RateLimit-Limit")
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if limit is None and remaining is None and reset is None:
            return False

        with self._lock:
            try:
                if limit is not None:
                    self.limit = int(limit)
                if remaining is not None:
                    self.remaining = int(remaining)
                if reset is not None:
                    self.reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc)
            except ValueError:
                logger.warning(f"Ignoring malformed rate limit headers: {limit}/{remaining}/{reset}")
                return False

        if self.remaining is not None and self.remaining < self.LOW_WATERMARK:
            logger.warning(f"Rate limit low: {self.remaining}/{self.limit} requests remaining")
        return True

    def seconds_until_reset(self) -> Optional[float]:
        """Seconds until the budget resets, or None when unknown."""
        if self.reset_at is None:
            return None
        return max(0.0, self.reset_at.timestamp() - self._clock())

    def as_dict(self) -> dict[str, Optional[float]]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.timestamp() if self.reset_at else None,
            "reset_in": self.seconds_until_reset(),
        }
