"""
Unit tests for the search API client.
"""

from unittest.mock import AsyncMock, patch

import pytest

from xhs_writer.clients.search_client import (
    SearchClient,
    SearchClientConfig,
    generate_trace_id,
    is_auth_rejection,
)
from xhs_writer.utils.exceptions import (
    APIError,
    AuthError,
    ParsingError,
    RateLimitError,
    ServerError,
    TransportError,
)


@pytest.fixture
def config():
    """Create test configuration."""
    return SearchClientConfig(
        endpoint="https://search.example.com/api/sns/web/v1/search/notes",
        timeout=5,
        probe_timeout=2,
        page_size=20,
    )


@pytest.fixture
def client(config):
    """Create test client."""
    return SearchClient(config)


def ok_payload(items=None, has_more=False):
    return {"success": True, "msg": "成功", "data": {"items": items or [], "has_more": has_more}}


def test_generate_trace_id():
    """Test trace ids are lowercase hex of the requested length."""
    trace_id = generate_trace_id(21)
    assert len(trace_id) == 21
    assert all(c in "0123456789abcdef" for c in trace_id)
    assert generate_trace_id() != generate_trace_id()


@pytest.mark.parametrize(
    "status, payload, expected",
    [
        (401, None, True),
        (403, {"success": True}, True),
        (200, {"success": False, "msg": "登录已过期"}, True),
        (200, {"success": False, "msg": "Unauthorized request"}, True),
        (200, {"success": False, "msg": "参数错误"}, False),
        (200, {"success": True, "msg": "login ok"}, False),
        (500, None, False),
        (429, {"success": False, "msg": "too many requests"}, False),
    ],
)
def test_is_auth_rejection(status, payload, expected):
    """Test the credential-rejection classification."""
    assert is_auth_rejection(status, payload) is expected


def test_request_shape(client):
    """Test headers carry the cookie and body carries paging."""
    headers = client._build_headers("a1=xyz")
    body = client._build_body("防晒", 2, 20)

    assert headers["cookie"] == "a1=xyz"
    assert len(headers["x-b3-traceid"]) == 16
    assert body["keyword"] == "防晒"
    assert body["page"] == 2
    assert body["page_size"] == 20
    assert body["sort"] == "popularity_descending"


@pytest.mark.asyncio
async def test_search_notes_success(client):
    """Test a successful page returns the data object."""
    payload = ok_payload(items=[{"id": "n1", "model_type": "note"}], has_more=True)

    with patch.object(client, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = (200, payload, "{}")

        data = await client.search_notes("防晒", 1, "cookie")

    assert data["has_more"] is True
    assert data["items"][0]["id"] == "n1"
    body, cookie, timeout = mock_post.await_args.args
    assert body["page_size"] == 20
    assert cookie == "cookie"
    assert timeout == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, payload, error",
    [
        (401, None, AuthError),
        (200, {"success": False, "msg": "请先登录"}, AuthError),
        (429, None, RateLimitError),
        (502, None, ServerError),
        (404, None, APIError),
        (200, {"success": False, "msg": "参数错误"}, APIError),
        (200, None, ParsingError),
        (200, {"success": True, "data": {"items": "nope"}}, ParsingError),
    ],
)
async def test_search_notes_errors(client, status, payload, error):
    """Test status and payload classification."""
    with patch.object(client, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = (status, payload, "<html>blocked</html>")

        with pytest.raises(error):
            await client.search_notes("防晒", 1, "cookie")


@pytest.mark.asyncio
async def test_auth_rejection_counted(client):
    """Test that rejections are tracked in statistics."""
    with patch.object(client, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = (403, None, "")
        with pytest.raises(AuthError) as exc_info:
            await client.search_notes("防晒", 1, "cookie")

    assert exc_info.value.status_code == 403
    assert client.get_stats()["auth_rejections"] == 1


@pytest.mark.asyncio
async def test_transport_error_propagates(client):
    """Test that network failures surface as TransportError."""
    with patch.object(client, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.side_effect = TransportError("Request timed out after 5s")
        with pytest.raises(TransportError):
            await client.search_notes("防晒", 1, "cookie")


@pytest.mark.asyncio
async def test_probe_uses_probe_timeout(client):
    """Test probe sends a one-item search and returns status and payload."""
    with patch.object(client, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = (200, ok_payload(), "{}")

        status, payload = await client.probe("cookie")

    assert status == 200
    assert payload["success"] is True
    body, cookie, timeout = mock_post.await_args.args
    assert body["page_size"] == 1
    assert timeout == 2
    assert client.get_stats()["probes"] == 1


@pytest.mark.asyncio
async def test_context_manager(config):
    """Test async context manager opens and closes the session."""
    async with SearchClient(config) as client:
        assert client._session is not None
        assert not client._session.closed
    assert client._session.closed
