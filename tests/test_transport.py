"""
Unit tests for the HTTP transport.

``requests.Session.request`` is replaced by a mock so no network is
used; each test checks how one kind of answer is classified.

pytest is required to run these tests.
"""

import itertools
from unittest import mock

import pytest
import requests

from admission_desk.errors import (
    ConfigurationError,
    ConnectionFailed,
    Forbidden,
    HttpError,
    MalformedResponse,
    RequestTimeout,
    Unauthorized,
)
from admission_desk.transport import TransportClient


def make_response(status, body=""):
    resp = requests.Response()
    resp.status_code = status
    resp._content = body.encode("utf-8")
    resp._content_consumed = True
    resp.encoding = "utf-8"
    return resp


def client_with(response=None, error=None, token="tok"):
    session = mock.Mock(spec=requests.Session)
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.return_value = response
    return TransportClient("http://server/", token_provider=lambda: token, session=session), session


def test_success_returns_json_and_sends_bearer():
    client, session = client_with(make_response(200, '{"ok": true}'))
    assert client.get("/api/ping") == {"ok": True}
    args, kwargs = session.request.call_args
    assert args == ("GET", "http://server/api/ping")
    assert kwargs["headers"]["Authorization"] == "Bearer tok"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["stream"] is True


def test_no_authorization_header_without_token():
    client, session = client_with(make_response(200, "{}"), token="")
    client.post("/login", {"username": "u"})
    kwargs = session.request.call_args[1]
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["data"] == '{"username": "u"}'


def test_empty_body_is_empty_object():
    client, _ = client_with(make_response(204, ""))
    assert client.get("/x") == {}


def test_invalid_json_is_malformed():
    client, _ = client_with(make_response(200, "<html>"))
    with pytest.raises(MalformedResponse):
        client.get("/x")


def test_401_carries_server_message():
    client, _ = client_with(make_response(401, '{"error": "Token expired"}'))
    with pytest.raises(Unauthorized) as excinfo:
        client.get("/x")
    assert str(excinfo.value) == "Token expired"
    assert excinfo.value.status == 401


def test_403_is_forbidden():
    client, _ = client_with(make_response(403, "nope"))
    with pytest.raises(Forbidden):
        client.get("/x")


def test_other_status_is_http_error_with_excerpt():
    body = "x" * 500
    client, _ = client_with(make_response(500, body))
    with pytest.raises(HttpError) as excinfo:
        client.get("/x")
    assert excinfo.value.status == 500
    assert len(excinfo.value.body) == 200
    assert str(excinfo.value).startswith("HTTP 500")


def test_timeout_and_connection_errors():
    client, _ = client_with(error=requests.Timeout("slow"))
    with pytest.raises(RequestTimeout):
        client.get("/x")
    client, _ = client_with(error=requests.ConnectionError("refused"))
    with pytest.raises(ConnectionFailed):
        client.get("/x")


def test_deadline_overrun_while_reading_body():
    client, _ = client_with(make_response(200, '{"a": 1}'))
    client.timeout_seconds = 5
    # monotonic: request start, then the first body chunk arrives too late
    clock = itertools.chain([0.0], itertools.repeat(10.0))
    with mock.patch("admission_desk.transport.time.monotonic", side_effect=clock):
        with pytest.raises(RequestTimeout):
            client.get("/x")


def test_base_url_required():
    with pytest.raises(ConfigurationError):
        TransportClient("")
