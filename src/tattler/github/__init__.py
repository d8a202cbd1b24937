"""GitHub provider: API client and paginated notification fetcher."""

from .client import FOOTER_PATHS, PROVIDER_TYPE, GitHubClient
from .fetcher import MAX_PAGES, NO_CACHE, RELOAD, CacheMode, PaginatedFetcher

__all__ = [
    "PROVIDER_TYPE",
    "FOOTER_PATHS",
    "GitHubClient",
    # Fetching
    "CacheMode",
    "NO_CACHE",
    "RELOAD",
    "MAX_PAGES",
    "PaginatedFetcher",
]
