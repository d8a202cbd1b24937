"""Tests for the GitHub API client."""

import aiohttp
import pytest
from conftest import FakeResponse, FakeSession, make_item, page

from tattler.config import GitHubConfig
from tattler.errors import AuthRequired, NotFoundError, RemoteError, ScopeInsufficient
from tattler.github import GitHubClient

APP = GitHubConfig(client_id="cid", client_secret="secret")


def make_client(session, config=None, token="t0k"):
    return GitHubClient("github-1", config or GitHubConfig(), token=token, session=session)


def test_notification_ids_are_namespaced():
    client = GitHubClient("github-1")
    nid = client.notification_id("123")
    assert nid == "github-1:123"
    assert client.owns(nid)
    assert client.thread_id(nid) == "123"
    assert not client.owns("github-2:123")
    with pytest.raises(NotFoundError):
        client.thread_id("github-2:123")


def test_token_header():
    client = GitHubClient("github-1", token="abc")
    assert client.authorized
    assert client.headers["Authorization"] == "token abc"
    assert client.token == "abc"
    client.clear_token()
    assert not client.authorized
    assert client.token is None


def test_urls():
    client = GitHubClient("github-1", APP)
    assert client.notifications_url == "https://api.github.com/notifications"
    assert client.info_url == "https://github.com/settings/connections/applications/cid"
    assert client.footer_url("all") == "https://github.com/notifications?all=1"
    assert client.footer_url("unread") == "https://github.com/notifications"
    assert client.footer_url("participating") == "https://github.com/notifications/participating"
    assert client.footer_url("options") is None

    url = client.auth_url("st4te")
    assert url.startswith("https://github.com/login/oauth/authorize?")
    assert "client_id=cid" in url
    assert "scope=repo" in url
    assert "state=st4te" in url


@pytest.mark.asyncio
async def test_fetch_notifications_uses_auth_headers():
    session = FakeSession(page([make_item(1)]))
    client = make_client(session)
    records = await client.fetch_notifications()
    assert [r.id for r in records] == ["1"]
    call = session.calls[0]
    assert call["url"] == "https://api.github.com/notifications"
    assert call["headers"]["Authorization"] == "token t0k"
    assert call["headers"]["Accept"] == "application/vnd.github.v3+json"


@pytest.mark.asyncio
async def test_authorize_with_personal_token():
    session = FakeSession(FakeResponse(200, {"login": "octo"}, {"X-OAuth-Scopes": "repo, gist"}))
    client = make_client(session, token=None)
    assert await client.authorize("new") is True
    assert client.token == "new"
    assert session.calls[0]["url"] == "https://api.github.com/user"
    assert session.calls[0]["headers"]["Authorization"] == "token new"


@pytest.mark.asyncio
async def test_authorize_fine_grained_token_without_scopes_header():
    session = FakeSession(FakeResponse(200, {"login": "octo"}))
    client = make_client(session, token=None)
    assert await client.authorize("new") is True
    assert client.authorized


@pytest.mark.asyncio
async def test_authorize_insufficient_scope():
    session = FakeSession(FakeResponse(200, {}, {"X-OAuth-Scopes": "gist"}))
    client = make_client(session, token=None)
    with pytest.raises(ScopeInsufficient) as exc_info:
        await client.authorize("new")
    assert exc_info.value.granted == ["gist"]
    assert not client.authorized


@pytest.mark.asyncio
async def test_authorize_rejected_token():
    session = FakeSession(FakeResponse(401))
    with pytest.raises(AuthRequired):
        await make_client(session, token=None).authorize("bad")


@pytest.mark.asyncio
async def test_authorize_server_error_is_not_a_bad_token():
    session = FakeSession(FakeResponse(503))
    with pytest.raises(RemoteError) as exc_info:
        await make_client(session, token=None).authorize("t0k")
    assert exc_info.value.status == 503


@pytest.mark.asyncio
async def test_authorize_with_app_credentials():
    session = FakeSession(FakeResponse(200, {"scopes": ["repo"], "token": "t0k"}))
    client = make_client(session, APP, token=None)
    assert await client.authorize("t0k") is True
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://api.github.com/applications/cid/token"
    assert call["json"] == {"access_token": "t0k"}
    assert call["auth"] == aiohttp.BasicAuth("cid", "secret")


@pytest.mark.asyncio
async def test_authorize_with_app_credentials_rejected():
    session = FakeSession(FakeResponse(404))
    with pytest.raises(AuthRequired):
        await make_client(session, APP, token=None).authorize("t0k")


@pytest.mark.asyncio
async def test_get_token_exchanges_code():
    session = FakeSession(FakeResponse(200, {"access_token": "fresh", "scope": "repo,gist"}))
    client = make_client(session, APP, token=None)
    assert await client.get_token("c0de", "st4te") == "fresh"
    assert client.token == "fresh"
    call = session.calls[0]
    assert call["url"] == "https://github.com/login/oauth/access_token"
    assert call["data"]["code"] == "c0de"
    assert call["data"]["state"] == "st4te"


@pytest.mark.asyncio
async def test_get_token_error_response():
    session = FakeSession(FakeResponse(200, {"error": "bad_verification_code"}))
    with pytest.raises(AuthRequired, match="bad_verification_code"):
        await make_client(session, APP, token=None).get_token("c0de", "st4te")


@pytest.mark.asyncio
async def test_get_token_scope_check():
    session = FakeSession(FakeResponse(200, {"access_token": "fresh", "scope": "gist"}))
    with pytest.raises(ScopeInsufficient):
        await make_client(session, APP, token=None).get_token("c0de", "st4te")


@pytest.mark.asyncio
async def test_deauthorize():
    session = FakeSession(FakeResponse(204))
    assert await make_client(session, APP).deauthorize("t0k") is True
    assert session.calls[0]["method"] == "DELETE"


@pytest.mark.asyncio
async def test_deauthorize_without_app_credentials_is_a_no_op():
    session = FakeSession()
    assert await make_client(session).deauthorize("t0k") is False
    assert session.calls == []


@pytest.mark.asyncio
async def test_mark_notifications_read():
    session = FakeSession(FakeResponse(205))
    client = make_client(session)
    assert await client.mark_notifications_read("2024-05-01T12:00:00Z") is True
    call = session.calls[0]
    assert call["method"] == "PUT"
    assert call["json"] == {"last_read_at": "2024-05-01T12:00:00Z"}


@pytest.mark.asyncio
async def test_mark_notifications_read_accepted_async():
    session = FakeSession(FakeResponse(202))
    assert await make_client(session).mark_notifications_read("2024-05-01T12:00:00Z") is True


@pytest.mark.asyncio
async def test_mark_notifications_read_before_first_poll():
    session = FakeSession()
    assert await make_client(session).mark_notifications_read(None) is False
    assert session.calls == []


@pytest.mark.asyncio
async def test_mark_notifications_read_failure():
    session = FakeSession(FakeResponse(500))
    with pytest.raises(RemoteError):
        await make_client(session).mark_notifications_read("2024-05-01T12:00:00Z")


@pytest.mark.asyncio
async def test_thread_actions():
    session = FakeSession(FakeResponse(205), FakeResponse(200, {}), FakeResponse(204))
    client = make_client(session)
    await client.mark_notification_read("7")
    await client.ignore_notification("7")
    await client.unsubscribe_notification("7")

    assert [(c["method"], c["url"]) for c in session.calls] == [
        ("PATCH", "https://api.github.com/notifications/threads/7"),
        ("PUT", "https://api.github.com/notifications/threads/7/subscription"),
        ("DELETE", "https://api.github.com/notifications/threads/7/subscription"),
    ]
    assert session.calls[1]["json"] == {"ignored": True}


@pytest.mark.asyncio
async def test_thread_action_failure():
    session = FakeSession(FakeResponse(404))
    with pytest.raises(RemoteError) as exc_info:
        await make_client(session).mark_notification_read("7")
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_get_notification_url_prefers_html_url():
    session = FakeSession(
        page([make_item(7)]),
        FakeResponse(200, {"html_url": "https://github.com/octo/widgets/pull/7#issuecomment-1"}),
    )
    client = make_client(session)
    client.store.apply_fetch_result(await client.fetch_notifications())

    url = await client.get_notification_url("7")
    assert url == "https://github.com/octo/widgets/pull/7#issuecomment-1"
    assert session.calls[1]["url"] == "https://api.github.com/repos/octo/widgets/pulls/7"


@pytest.mark.asyncio
async def test_get_notification_url_falls_back_to_derived_link():
    session = FakeSession(page([make_item(7)]), FakeResponse(404))
    client = make_client(session)
    client.store.apply_fetch_result(await client.fetch_notifications())
    assert await client.get_notification_url("7") == "https://github.com/octo/widgets/pull/7"


@pytest.mark.asyncio
async def test_get_notification_url_unknown_thread():
    client = make_client(FakeSession())
    assert await client.get_notification_url("404") is None


@pytest.mark.asyncio
async def test_transport_error_becomes_remote_error():
    session = FakeSession(aiohttp.ClientConnectionError("reset"))
    with pytest.raises(RemoteError) as exc_info:
        await make_client(session).mark_notification_read("7")
    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    session = FakeSession()
    client = make_client(session)
    await client.close()
    assert session.closed is False
