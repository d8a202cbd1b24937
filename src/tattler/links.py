"""Parsing for RFC 8288 style Link headers.

GitHub paginates with headers like:

    <https://api.github.com/notifications?page=2>; rel="next",
    <https://api.github.com/notifications?page=5>; rel="last"
"""

from __future__ import annotations

import re

from .log import get_logger

_log = get_logger("links")

_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')


def parse_links(header: str | None) -> dict[str, str]:
    """Parse a Link header into a mapping of relation name -> URL.

    Malformed entries are skipped so one bad entry can't hide the others.
    """
    links: dict[str, str] = {}
    if not header:
        return links

    for entry in header.split(","):
        match = _LINK_RE.search(entry)
        if not match:
            if entry.strip():
                _log.warning("skipping malformed link entry: %r", entry.strip()[:200])
            continue
        url, rel = match.group(1), match.group(2)
        # rel may hold several space separated relation types
        for name in rel.split():
            links[name] = url

    return links
