"""Shared fixtures: a fake aiohttp session and notification payloads."""

from __future__ import annotations

import json
from collections import deque
from typing import Any

import pytest

from tattler.config import Config, GitHubConfig


class FakeResponse:
    """Enough of aiohttp.ClientResponse for tattler's request code."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        headers: dict[str, str] | None = None,
        reason: str = "",
        raw: str | None = None,
    ) -> None:
        self.status = status
        self._body = body
        self._raw = raw
        self.headers = dict(headers or {})
        self.reason = reason

    async def json(self) -> Any:
        if self._raw is not None:
            return json.loads(self._raw)
        return self._body

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class FakeSession:
    """Replays queued responses in order and records every request.

    A queued exception is raised instead of returning a response.
    """

    def __init__(self, *responses: FakeResponse | BaseException) -> None:
        self.responses: deque[FakeResponse | BaseException] = deque(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: FakeResponse | BaseException) -> None:
        self.responses.extend(responses)

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request: {method} {url}")
        response = self.responses.popleft()
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


def make_item(
    thread_id: str | int,
    title: str = "Fix the thing",
    unread: bool = True,
    updated_at: str = "2024-05-01T12:00:00Z",
    kind: str = "pulls",
) -> dict[str, Any]:
    """One item as returned by GET /notifications."""
    return {
        "id": str(thread_id),
        "unread": unread,
        "reason": "review_requested",
        "updated_at": updated_at,
        "subject": {
            "title": title,
            "url": f"https://api.github.com/repos/octo/widgets/{kind}/{thread_id}",
            "type": "PullRequest" if kind == "pulls" else "Issue",
        },
        "repository": {
            "full_name": "octo/widgets",
            "html_url": "https://github.com/octo/widgets",
        },
    }


def page(
    items: list[dict[str, Any]],
    next_url: str | None = None,
    etag: str | None = None,
    headers: dict[str, str] | None = None,
) -> FakeResponse:
    """A 200 notifications page, optionally linking to the next one."""
    response_headers = {
        "X-Poll-Interval": "60",
        "X-RateLimit-Remaining": "4999",
        "X-RateLimit-Reset": "0",
    }
    response_headers.update(headers or {})
    if next_url:
        response_headers["Link"] = f'<{next_url}>; rel="next"'
    if etag:
        response_headers["ETag"] = etag
    return FakeResponse(200, items, response_headers)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def config(tmp_path) -> Config:
    config = Config(github=GitHubConfig())
    config.badge.path = tmp_path / "badge"
    return config
