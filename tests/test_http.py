"""Tests for HTTP transport implementations."""

from unittest.mock import MagicMock

import pytest
import requests

from traccarkit._auth import AuthProvider, TokenAuthProvider
from traccarkit._http import HttpClient, RequestsHttpClient


def make_client(auth_provider: AuthProvider | None = None, **kwargs) -> tuple[RequestsHttpClient, MagicMock]:
    session = MagicMock(spec=requests.Session)
    session.request.return_value = MagicMock(spec=requests.Response)
    return RequestsHttpClient(auth_provider=auth_provider, session=session, **kwargs), session


# =============================================================================
# HttpClient base class
# =============================================================================


class RecordingHttpClient(HttpClient):
    """Minimal HttpClient that records every request call."""

    def __init__(self):
        self.calls: list[dict] = []

    def request(self, method, url, params=None, data=None, headers=None, timeout=30, form=False):
        self.calls.append(
            {"method": method, "url": url, "params": params, "data": data, "headers": headers, "form": form}
        )
        return MagicMock(spec=requests.Response)


class TestHttpClientConvenienceMethods:
    """Tests for the verb helpers of HttpClient."""

    def test_get_delegates_to_request(self):
        client = RecordingHttpClient()

        client.get("http://server/api/devices", params={"id": 1})

        assert client.calls[0]["method"] == "GET"
        assert client.calls[0]["params"] == {"id": 1}

    def test_post_forwards_form_flag(self):
        client = RecordingHttpClient()

        client.post("http://server/api/session", data={"email": "a"}, form=True)

        assert client.calls[0]["method"] == "POST"
        assert client.calls[0]["form"] is True

    def test_put_and_delete(self):
        client = RecordingHttpClient()

        client.put("http://server/api/devices/1", data={"name": "truck"})
        client.delete("http://server/api/devices/1")

        assert [call["method"] for call in client.calls] == ["PUT", "DELETE"]
        assert client.calls[0]["data"] == {"name": "truck"}

    def test_close_is_a_no_op_by_default(self):
        RecordingHttpClient().close()


# =============================================================================
# RequestsHttpClient
# =============================================================================


class TestRequestsHttpClient:
    """Tests for the requests-based transport."""

    def test_sends_json_body_by_default(self):
        client, session = make_client()

        client.request("POST", "http://server/api/devices", data={"name": "truck"})

        kwargs = session.request.call_args.kwargs
        assert kwargs["json"] == {"name": "truck"}
        assert "data" not in kwargs

    def test_sends_form_body_when_requested(self):
        client, session = make_client()

        client.request("POST", "http://server/api/session", data={"email": "a@b.c", "password": "pw"}, form=True)

        kwargs = session.request.call_args.kwargs
        assert kwargs["data"] == {"email": "a@b.c", "password": "pw"}
        assert "json" not in kwargs

    def test_omits_body_when_data_is_none(self):
        client, session = make_client()

        client.get("http://server/api/devices")

        kwargs = session.request.call_args.kwargs
        assert "json" not in kwargs
        assert "data" not in kwargs

    def test_applies_auth_headers(self):
        client, session = make_client(TokenAuthProvider("my-token"))

        client.get("http://server/api/devices")

        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer my-token"
        assert headers["Accept"] == "application/json"

    def test_call_headers_win_over_auth_and_default_headers(self):
        client, session = make_client(
            TokenAuthProvider("my-token"),
            default_headers={"Accept": "text/plain", "User-Agent": "traccarkit"},
        )

        client.get(
            "http://server/api/devices",
            headers={"Authorization": "Bearer override", "If-None-Match": '"abc"'},
        )

        headers = session.request.call_args.kwargs["headers"]
        assert headers == {
            "Accept": "text/plain",
            "User-Agent": "traccarkit",
            "Authorization": "Bearer override",
            "If-None-Match": '"abc"',
        }

    def test_forwards_params_and_timeout(self):
        client, session = make_client()

        client.request("GET", "http://server/api/positions", params={"deviceId": 7}, timeout=5)

        args = session.request.call_args
        assert args.args == ("GET", "http://server/api/positions")
        assert args.kwargs["params"] == {"deviceId": 7}
        assert args.kwargs["timeout"] == 5

    def test_returns_the_session_response(self):
        client, session = make_client()

        assert client.get("http://server/api/devices") is session.request.return_value

    def test_propagates_transport_exceptions(self):
        client, session = make_client()
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(requests.ConnectionError):
            client.get("http://server/api/devices")

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_rejects_non_positive_timeout(self, timeout):
        client, _ = make_client()

        with pytest.raises(AssertionError, match="Timeout must be greater than 0"):
            client.get("http://server/api/devices", timeout=timeout)

    def test_rejects_non_auth_provider(self):
        with pytest.raises(AssertionError, match="AuthProvider"):
            RequestsHttpClient(auth_provider="token")  # type: ignore

    def test_exposes_auth_provider(self):
        auth = TokenAuthProvider("my-token")
        client, _ = make_client(auth)

        assert client.auth_provider is auth

    def test_close_leaves_injected_session_open(self):
        client, session = make_client()

        client.close()

        session.close.assert_not_called()

    def test_close_closes_owned_session(self, monkeypatch):
        owned = MagicMock(spec=requests.Session)
        monkeypatch.setattr("traccarkit._http.requests.Session", lambda: owned)
        client = RequestsHttpClient()

        client.close()

        owned.close.assert_called_once()
