"""Notification records as tracked by tattler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import MalformedResponse

# API resource segments whose web page uses a different (singular) segment
_HTML_SEGMENTS = {
    "/pulls/": "/pull/",
    "/commits/": "/commit/",
}


def api_to_html(api_url: str | None, api_base: str, site_base: str) -> str | None:
    """Translate an API resource URL into the matching github.com page.

    https://api.github.com/repos/o/r/pulls/7 -> https://github.com/o/r/pull/7

    Returns None for URLs outside the repos API.
    """
    prefix = f"{api_base}repos/"
    if not api_url or not api_url.startswith(prefix):
        return None
    path = "/" + api_url[len(prefix) :]
    for api_segment, html_segment in _HTML_SEGMENTS.items():
        path = path.replace(api_segment, html_segment)
    if "/releases/" in path:
        # release pages are addressed by tag, not id; land on the list
        path = path.split("/releases/")[0] + "/releases"
    return f"{site_base}{path.lstrip('/')}"


@dataclass(frozen=True)
class NotificationRecord:
    """One notification thread.

    Identity is ``id``. Records are immutable; the store swaps in a new
    record when a later fetch reports changed fields.
    """

    id: str
    subject_title: str
    subject_url: str | None
    updated_at: str
    reason: str
    unread: bool
    url: str  # deep link to the web page
    repository: str = ""
    subject_type: str = ""

    @classmethod
    def from_github(
        cls,
        data: dict[str, Any],
        api_base: str = "https://api.github.com/",
        site_base: str = "https://github.com/",
    ) -> NotificationRecord:
        """Create a record from one item of GET /notifications."""
        if not isinstance(data, dict) or "id" not in data:
            raise MalformedResponse(f"notification without id: {str(data)[:200]}")

        subject = data.get("subject") or {}
        repository = data.get("repository") or {}
        subject_url = subject.get("url")
        url = (
            api_to_html(subject_url, api_base, site_base)
            or repository.get("html_url")
            or f"{site_base}notifications"
        )
        return cls(
            id=str(data["id"]),
            subject_title=subject.get("title", ""),
            subject_url=subject_url,
            updated_at=data.get("updated_at", ""),
            reason=data.get("reason", ""),
            unread=bool(data.get("unread", True)),
            url=url,
            repository=repository.get("full_name", ""),
            subject_type=subject.get("type", ""),
        )
