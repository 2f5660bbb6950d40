"""Tests for the API client: token lifecycle, 401 refresh and identity
rotation."""

import io
from datetime import datetime, timedelta

import pytest
import requests  # type: ignore[import-untyped]

from catalog_sync.api_client import ApiClient, ApiError, ApiSession, AuthenticationError
from catalog_sync.config import USER_AGENTS
from conftest import BASE_URL, TOKEN, make_response


class TestAuthentication:
    def test_token_is_cached(self, client, fake_http):
        """Logs in once and reuses the token for later calls."""
        fake_http.add("GET", "/product/SP-1", make_response(404))

        client.get_product("SP-1")
        client.get_product("SP-1")

        assert len(fake_http.calls_to("POST", "/auth")) == 1
        assert fake_http.calls_to("POST", "/auth")[0].json == {"username": "user", "password": "secret"}

    def test_bearer_header(self, client, fake_http):
        """Requests carry the bearer token and the current User-Agent."""
        fake_http.add("GET", "/product/SP-1", make_response(404))

        client.get_product("SP-1")

        headers = fake_http.calls_to("GET", "/product/")[0].headers
        assert headers["Authorization"] == f"Bearer {TOKEN}"
        assert headers["User-Agent"] == USER_AGENTS[0]

    def test_expires_in_sets_expiry(self, client):
        """expires_in from the login response sets the token expiry."""
        before = datetime.now()

        client.authenticate()

        assert client.session.expires_at >= before + timedelta(seconds=86400)

    def test_expired_token_is_refreshed(self, client, fake_http):
        """An expired token triggers a fresh login."""
        client.authenticate()
        client.session.expires_at = datetime.now() - timedelta(seconds=1)

        client.authenticate()

        assert len(fake_http.calls_to("POST", "/auth")) == 2

    def test_missing_credentials(self, fake_http):
        """No credentials means no login request at all."""
        client = ApiClient(base_url=BASE_URL, username=None, password=None, http=fake_http)

        with pytest.raises(AuthenticationError):
            client.authenticate()

        assert fake_http.calls == []

    def test_rejected_login(self, client, fake_http):
        """A non-2xx login response raises AuthenticationError."""
        fake_http.add("POST", "/auth", make_response(403, {"code": "invalid_credentials"}))

        with pytest.raises(AuthenticationError, match="HTTP 403"):
            client.authenticate()

    def test_login_network_error(self, client, fake_http):
        """Network errors during login surface as AuthenticationError."""
        fake_http.add("POST", "/auth", requests.exceptions.ConnectionError("down"))

        with pytest.raises(AuthenticationError):
            client.authenticate()

    def test_login_without_token(self, client, fake_http):
        """A login response without a token is an error."""
        fake_http.add("POST", "/auth", make_response(200, {"expires_in": 10}))

        with pytest.raises(AuthenticationError, match="No token"):
            client.authenticate()


class TestUnauthorizedRetry:
    def test_401_reauthenticates_and_retries_once(self, client, fake_http):
        """A 401 forces a re-login and exactly one retry."""
        fake_http.add("GET", "/product/SP-1", make_response(401), make_response(200, {"id": 3}))

        resp = client.get_product("SP-1")

        assert resp.status_code == 200
        assert len(fake_http.calls_to("POST", "/auth")) == 2
        assert len(fake_http.calls_to("GET", "/product/SP-1")) == 2

    def test_second_401_is_returned(self, client, fake_http):
        """A 401 on the retry is returned to the caller, not retried again."""
        fake_http.add("GET", "/product/SP-1", make_response(401))

        resp = client.get_product("SP-1")

        assert resp.status_code == 401
        assert len(fake_http.calls_to("GET", "/product/SP-1")) == 2

    def test_files_are_rewound_before_retry(self, client, fake_http):
        """File handles are rewound so the retry sends the full body."""
        fake_http.add("POST", "/product", make_response(401), make_response(201, {"id": 9}))
        handle = io.BytesIO(b"image-bytes")
        handle.read()

        resp = client.create_product([("reference", "SP-1")], [("images[0]", ("a.jpg", handle, "image/jpeg"))])

        assert resp.status_code == 201
        assert handle.tell() == 0
        post_calls = fake_http.calls_to("POST", "/product")
        assert [c.file_fields for c in post_calls] == [["images[0]"], ["images[0]"]]


class TestApiSession:
    def test_rotate_user_agent_cycles(self):
        """Rotation walks the identity pool and wraps around."""
        session = ApiSession(user_agents=["a", "b"])

        assert session.user_agent == "a"
        assert session.rotate_user_agent() == "b"
        assert session.rotate_user_agent() == "a"

    def test_rotated_identity_is_used(self, client, fake_http):
        """Requests after a rotation use the new User-Agent."""
        fake_http.add("GET", "/product/SP-1", make_response(404))

        client.session.rotate_user_agent()
        client.get_product("SP-1")

        assert fake_http.calls_to("GET", "/product/")[0].headers["User-Agent"] == USER_AGENTS[1]

    def test_token_valid(self):
        """Tokens are valid until expiry and after invalidate() no longer."""
        session = ApiSession()
        now = datetime(2025, 1, 1, 12, 0)

        assert not session.token_valid(now)
        session.store_token("t", 60, now=now)
        assert session.token_valid(now + timedelta(seconds=59))
        assert not session.token_valid(now + timedelta(seconds=61))

        session.invalidate()
        assert not session.token_valid(now)


class TestEndpoints:
    def test_update_uses_put_on_id(self, client, fake_http):
        """Updates are PUT to /product/<id> with the form fields."""
        fake_http.add("PUT", "/product/55", make_response(200, {"id": 55}))

        resp = client.update_product("55", [("reference", "SP-1")], [])

        assert resp.ok
        call = fake_http.calls_to("PUT")[0]
        assert call.url == f"{BASE_URL}/product/55"
        assert call.form == {"reference": "SP-1"}

    def test_statistics(self, client, fake_http):
        """Statistics are fetched with the default type and period."""
        fake_http.add("GET", "/statistics", make_response(200, {"products": 10}))

        assert client.get_statistics() == {"products": 10}
        assert fake_http.calls_to("GET", "/statistics")[0].params == {"type": "general", "period": "7days"}

    def test_statistics_error(self, client, fake_http):
        """A failing statistics call raises ApiError with the status."""
        fake_http.add("GET", "/statistics", make_response(500, content=b"oops"))

        with pytest.raises(ApiError) as exc_info:
            client.get_statistics()

        assert exc_info.value.status_code == 500

    def test_connection_ok(self, client, fake_http):
        """A working API reports success, a masked token and the stats."""
        fake_http.add("GET", "/statistics", make_response(200, {"products": 10}))

        result = client.test_connection()

        assert result["success"]
        assert result["token"] == f"{TOKEN[:12]}..."
        assert result["stats"] == {"products": 10}

    def test_connection_failure(self, client, fake_http):
        """A failed login is reported, not raised."""
        fake_http.add("POST", "/auth", make_response(500))

        result = client.test_connection()

        assert not result["success"]
        assert "HTTP 500" in result["error"]
