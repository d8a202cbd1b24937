"""GitHub API client.

One instance per logged-in account. Besides the notification calls it
carries the OAuth helpers used at login/logout time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import aiohttp

from ..config import GitHubConfig
from ..errors import AuthRequired, NotFoundError, RemoteError, ScopeInsufficient
from ..log import get_logger
from ..records import NotificationRecord
from ..state import NotificationStateStore
from .fetcher import NO_CACHE, CacheMode, PaginatedFetcher

_log = get_logger("github.client")

PROVIDER_TYPE = "github"

FOOTER_PATHS = {
    "all": "notifications?all=1",
    "unread": "notifications",
    "participating": "notifications/participating",
}


def _scopes(value: str | None) -> list[str]:
    if not value:
        return []
    return [s.strip() for s in value.replace(",", " ").split() if s.strip()]


class GitHubClient:
    """API access for one GitHub account.

    Notification IDs handed to the rest of tattler are namespaced with the
    client id ("<client id>:<thread id>") so the registry can route them.
    """

    PROVIDER_TYPE = PROVIDER_TYPE

    def __init__(
        self,
        client_id: str,
        config: GitHubConfig | None = None,
        token: str | None = None,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.id = client_id
        self.config = config or GitHubConfig()
        self.timeout = timeout
        self.headers: dict[str, str] = {"Accept": "application/vnd.github.v3+json"}
        self._session = session
        self._owns_session = session is None
        self.store = NotificationStateStore()
        # set while the credential is missing or rejected
        self.needs_auth = False
        self.fetcher = PaginatedFetcher(
            self.session, api_base=self.config.api_url, site_base=self.config.site_url
        )
        if token:
            self.set_token(token)

    # --- Identity / routing ---

    @property
    def namespace(self) -> str:
        return f"{self.id}:"

    def notification_id(self, thread_id: str) -> str:
        return f"{self.namespace}{thread_id}"

    def owns(self, notification_id: str) -> bool:
        return notification_id.startswith(self.namespace)

    def thread_id(self, notification_id: str) -> str:
        if not self.owns(notification_id):
            raise NotFoundError(f"{notification_id} does not belong to {self.id}")
        return notification_id[len(self.namespace) :]

    # --- Credentials ---

    @property
    def authorized(self) -> bool:
        return "Authorization" in self.headers

    @property
    def token(self) -> str | None:
        value = self.headers.get("Authorization")
        return value.removeprefix("token ") if value else None

    def set_token(self, token: str) -> None:
        self.headers["Authorization"] = f"token {token}"

    def clear_token(self) -> None:
        self.headers.pop("Authorization", None)

    @property
    def info_url(self) -> str:
        """Page where the user can review or revoke the OAuth app grant."""
        return f"{self.config.site_url}settings/connections/applications/{self.config.client_id}"

    @property
    def notifications_url(self) -> str:
        return f"{self.config.api_url}notifications"

    def footer_url(self, footer: str) -> str | None:
        path = FOOTER_PATHS.get(footer)
        return f"{self.config.site_url}{path}" if path else None

    def auth_url(self, state: str, redirect_uri: str | None = None) -> str:
        params = {"client_id": self.config.client_id, "scope": self.config.scope, "state": state}
        if redirect_uri:
            params["redirect_uri"] = redirect_uri
        return f"{self.config.site_url}login/oauth/authorize?{urlencode(params)}"

    async def get_token(self, code: str, state: str, redirect_uri: str | None = None) -> str:
        """Exchange an OAuth code for a token and start using it."""
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "state": state,
        }
        if redirect_uri:
            form["redirect_uri"] = redirect_uri
        status, _headers, body = await self._send(
            "POST",
            f"{self.config.site_url}login/oauth/access_token",
            data=form,
            headers={"Accept": "application/json"},
        )
        if status != 200 or not isinstance(body, dict):
            raise RemoteError(status, f"token exchange returned {status}")
        if "access_token" not in body:
            raise AuthRequired(f"token exchange failed: {body.get('error', 'unknown error')}")

        granted = _scopes(body.get("scope"))
        if self.config.scope not in granted:
            raise ScopeInsufficient(self.config.scope, granted)
        self.set_token(body["access_token"])
        return body["access_token"]

    async def authorize(self, token: str) -> bool:
        """Check a token and start using it.

        With OAuth app credentials configured this asks the applications API;
        otherwise it reads the X-OAuth-Scopes header of GET /user.

        Raises:
            AuthRequired: the token is invalid
            ScopeInsufficient: the token lacks the configured scope
        """
        if self.config.has_app_credentials:
            status, _headers, body = await self._send(
                "POST",
                f"{self.config.api_url}applications/{self.config.client_id}/token",
                json={"access_token": token},
                auth=aiohttp.BasicAuth(self.config.client_id, self.config.client_secret),
            )
            if status >= 500:
                raise RemoteError(status, f"token check returned {status}")
            if status != 200 or not isinstance(body, dict):
                raise AuthRequired(f"token invalid ({status})")
            granted = _scopes(",".join(body.get("scopes", [])))
        else:
            status, headers, _body = await self._send(
                "GET",
                f"{self.config.api_url}user",
                headers={**self.headers, "Authorization": f"token {token}"},
            )
            if status >= 500:
                raise RemoteError(status, f"token check returned {status}")
            if status != 200:
                raise AuthRequired(f"token invalid ({status})")
            if "X-OAuth-Scopes" not in headers:
                # fine-grained tokens don't report scopes; the first poll will tell
                _log.info("token scopes not reported, accepting")
                self.set_token(token)
                return True
            granted = _scopes(headers.get("X-OAuth-Scopes"))

        if self.config.scope not in granted:
            raise ScopeInsufficient(self.config.scope, granted)
        self.set_token(token)
        return True

    async def deauthorize(self, token: str) -> bool:
        """Revoke the token. Needs OAuth app credentials; returns False without them."""
        if not self.config.has_app_credentials:
            return False
        status, _headers, _body = await self._send(
            "DELETE",
            f"{self.config.api_url}applications/{self.config.client_id}/token",
            json={"access_token": token},
            auth=aiohttp.BasicAuth(self.config.client_id, self.config.client_secret),
        )
        if status not in (204, 404):
            raise RemoteError(status, f"revoking token returned {status}")
        return True

    # --- Notifications ---

    async def fetch_notifications(
        self, cache_mode: CacheMode = NO_CACHE
    ) -> list[NotificationRecord] | None:
        return await self.fetcher.fetch_all(self.notifications_url, self.headers, cache_mode)

    async def mark_notifications_read(self, last_read_at: str | None) -> bool:
        """Mark everything up to last_read_at read on GitHub.

        Returns False (and does nothing) before the first successful poll.
        """
        if last_read_at is None or not self.authorized:
            return False
        status, _headers, _body = await self._send(
            "PUT",
            self.notifications_url,
            json={"last_read_at": last_read_at},
            headers=self.headers,
        )
        # 202 means GitHub will finish asynchronously
        if status in (202, 205):
            return True
        raise RemoteError(status, f"marking all notifications read returned {status}")

    async def mark_notification_read(self, thread_id: str) -> None:
        status, _headers, _body = await self._send(
            "PATCH", f"{self.notifications_url}/threads/{thread_id}", headers=self.headers
        )
        if not 200 <= status < 300:
            raise RemoteError(status, f"marking {thread_id} read returned {status}")

    async def ignore_notification(self, thread_id: str) -> None:
        status, _headers, _body = await self._send(
            "PUT",
            f"{self.notifications_url}/threads/{thread_id}/subscription",
            json={"ignored": True},
            headers=self.headers,
        )
        if status != 200:
            raise RemoteError(status, f"ignoring {thread_id} returned {status}")

    async def unsubscribe_notification(self, thread_id: str) -> None:
        status, _headers, _body = await self._send(
            "DELETE",
            f"{self.notifications_url}/threads/{thread_id}/subscription",
            headers=self.headers,
        )
        if status != 204:
            raise RemoteError(status, f"unsubscribing {thread_id} returned {status}")

    async def get_notification_details(self, record: NotificationRecord) -> dict[str, Any]:
        """Load the notification's subject (issue, pull request, ...)."""
        if not record.subject_url:
            raise NotFoundError(f"{record.subject_title} has no subject URL")
        status, _headers, body = await self._send("GET", record.subject_url, headers=self.headers)
        if status != 200 or not isinstance(body, dict):
            raise RemoteError(
                status, f"could not load details for {record.subject_title}: error {status}"
            )
        return body

    async def get_notification_url(self, thread_id: str) -> str | None:
        """Web URL to open for a notification.

        Prefers the subject's html_url (exact comment/PR page) and falls back to
        the deep link derived when the record was fetched.
        """
        record = self.store.get(thread_id)
        if record is None:
            return None
        try:
            details = await self.get_notification_details(record)
        except (RemoteError, NotFoundError) as e:
            _log.info("using derived link for %s: %s", thread_id, e)
            return record.url
        return details.get("html_url") or record.url

    # --- Transport ---

    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _send(
        self, method: str, url: str, **kwargs: Any
    ) -> tuple[int, Mapping[str, str], Any]:
        """Send one request. Returns (status, headers, JSON body or None)."""
        try:
            async with self.session().request(method, url, **kwargs) as response:
                body = None
                if response.status == 200:
                    try:
                        body = await response.json()
                    except (aiohttp.ContentTypeError, ValueError):
                        body = None
                return response.status, response.headers, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteError(None, f"{method} {url} failed: {e}") from e
