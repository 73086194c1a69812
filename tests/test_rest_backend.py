"""
Unit tests for the REST bookmark backend.

The requests session is mocked; tests check the wire format and the
mapping of transport failures onto NetworkFailure.
"""

import pytest
import requests
from unittest.mock import Mock

from core.models.config import BackendConfig
from core.sync.errors import NetworkFailure
from smart_bookmarks.backend.rest import RestBookmarkBackend


ROW = {
    "id": "1",
    "user_id": "user-1",
    "title": "GitHub",
    "url": "https://github.com",
    "created_at": "2024-01-01T12:00:00+00:00",
}


def make_response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = "" if body is None else str(body)
    response.json.return_value = body
    return response


class TestRestBookmarkBackend:
    """Test suite for the PostgREST adapter"""

    @pytest.fixture
    def session(self):
        return Mock(spec=requests.Session)

    @pytest.fixture
    def backend(self, session):
        config = BackendConfig(url="https://api.example.com/", api_key="anon-key", timeout=5.0)
        return RestBookmarkBackend(config, session=session)

    @pytest.mark.asyncio
    async def test_fetch_all(self, backend, session):
        session.request.return_value = make_response(body=[ROW])

        bookmarks = await backend.fetch_all("user-1")

        assert [b.id for b in bookmarks] == ["1"]
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://api.example.com/rest/v1/bookmarks")
        assert kwargs["params"] == {
            "select": "*",
            "user_id": "eq.user-1",
            "order": "created_at.desc",
        }
        assert kwargs["timeout"] == 5.0
        assert kwargs["headers"]["apikey"] == "anon-key"
        assert kwargs["headers"]["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_access_token_preferred(self, session):
        config = BackendConfig(api_key="anon-key", access_token="user-jwt")
        backend = RestBookmarkBackend(config, session=session)
        session.request.return_value = make_response(body=[])

        await backend.fetch_all("user-1")

        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer user-jwt"
        assert headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_create(self, backend, session):
        session.request.return_value = make_response(status_code=201, body=[ROW])

        bookmark = await backend.create("GitHub", "https://github.com", "user-1")

        assert bookmark.id == "1"
        kwargs = session.request.call_args.kwargs
        assert session.request.call_args.args[0] == "POST"
        assert kwargs["json"] == [{"title": "GitHub", "url": "https://github.com", "user_id": "user-1"}]
        assert kwargs["headers"]["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_create_without_row(self, backend, session):
        session.request.return_value = make_response(status_code=201, body=[])

        with pytest.raises(NetworkFailure):
            await backend.create("GitHub", "https://github.com", "user-1")

    @pytest.mark.asyncio
    async def test_delete(self, backend, session):
        session.request.return_value = make_response(status_code=204)

        await backend.delete("1")

        assert session.request.call_args.args[0] == "DELETE"
        assert session.request.call_args.kwargs["params"] == {"id": "eq.1"}

    @pytest.mark.asyncio
    async def test_http_error_status(self, backend, session):
        session.request.return_value = make_response(status_code=500, body="boom")

        with pytest.raises(NetworkFailure) as exc_info:
            await backend.fetch_all("user-1")

        assert exc_info.value.status_code == 500
        assert backend.get_stats()["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_transport_error(self, backend, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NetworkFailure, match="refused"):
            await backend.delete("1")

    @pytest.mark.asyncio
    async def test_invalid_json(self, backend, session):
        response = make_response(body=None)
        response.json.side_effect = ValueError("no json")
        session.request.return_value = response

        with pytest.raises(NetworkFailure, match="invalid JSON"):
            await backend.fetch_all("user-1")

    @pytest.mark.asyncio
    async def test_malformed_row(self, backend, session):
        session.request.return_value = make_response(body=[{"id": "1"}])

        with pytest.raises(NetworkFailure, match="malformed"):
            await backend.fetch_all("user-1")

    @pytest.mark.asyncio
    async def test_health_check(self, backend, session):
        session.request.return_value = make_response(body=[])
        assert await backend.health_check() is True

        session.request.side_effect = requests.Timeout("slow")
        assert await backend.health_check() is False

    def test_close(self, backend, session):
        backend.close()
        session.close.assert_called_once()
