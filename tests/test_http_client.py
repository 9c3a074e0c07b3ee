"""
Tests for the transport retry layer.
The network is never touched: _send_once is patched, or runs against a fake session.
"""
import asyncio

import aiohttp
import pytest
from scrobbler.utils.http_client import (
    HttpError,
    InvalidResponse,
    RawResponse,
    RetryExhausted,
    TransientTransportError,
    _send_once,
    fetch_json,
    request_with_retry,
)

URL = "https://api.listenbrainz.org/1/submit-listens"


@pytest.fixture
def send(mocker):
    return mocker.patch("scrobbler.utils.http_client._send_once")


class TestRequestWithRetry:
    async def test_503_then_200_returns_success(self, send, sleep):
        send.side_effect = [RawResponse(503), RawResponse(200, '{"status": "ok"}')]

        response = await request_with_retry(None, "POST", URL, attempts=6, backoff=3, sleep=sleep)

        assert response.status == 200
        assert send.await_count == 2
        assert sleep.calls == [1.0]

    async def test_six_503_exhaust_retries(self, send, sleep):
        send.side_effect = [RawResponse(503)] * 6

        with pytest.raises(RetryExhausted):
            await request_with_retry(None, "POST", URL, attempts=6, backoff=3, sleep=sleep)

        assert send.await_count == 6
        assert sleep.calls == [1, 3, 9, 27, 81]

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 507])
    async def test_server_errors_are_retried(self, send, sleep, status):
        send.side_effect = [RawResponse(status), RawResponse(200)]

        response = await request_with_retry(None, "GET", URL, sleep=sleep)

        assert response.status == 200
        assert send.await_count == 2

    @pytest.mark.parametrize("status", [200, 400, 401, 404, 429, 501])
    async def test_other_statuses_return_immediately(self, send, sleep, status):
        send.side_effect = [RawResponse(status)]

        response = await request_with_retry(None, "GET", URL, sleep=sleep)

        assert response.status == status
        assert send.await_count == 1
        assert sleep.calls == []

    async def test_connection_error_is_retried(self, send, sleep):
        send.side_effect = [TransientTransportError("connection reset"), RawResponse(200)]

        response = await request_with_retry(None, "GET", URL, sleep=sleep)

        assert response.ok
        assert sleep.calls == [1.0]

    async def test_exhaustion_reports_last_reason(self, send, sleep):
        send.side_effect = [TransientTransportError("connection reset")] * 2

        with pytest.raises(RetryExhausted, match="connection reset"):
            await request_with_retry(None, "GET", URL, attempts=2, sleep=sleep)

    async def test_request_is_passed_through(self, send, sleep):
        send.side_effect = [RawResponse(200)]

        await request_with_retry(
            None, "POST", URL, headers={"Authorization": "token t"}, json_body={"a": 1}, sleep=sleep
        )

        args, kwargs = send.await_args
        assert args[1:] == ("POST", URL)
        assert kwargs["headers"] == {"Authorization": "token t"}
        assert kwargs["json_body"] == {"a": 1}


class TestRawResponse:
    def test_header_lookup_ignores_case(self):
        response = RawResponse(429, headers={"x-ratelimit-reset-in": "5"})
        assert response.header("X-RateLimit-Reset-In") == "5"

    def test_ok_is_2xx(self):
        assert RawResponse(204).ok
        assert not RawResponse(400).ok

    @pytest.mark.parametrize("body", ["<html>", b"<html>", b'{"status": "\xff\xfe"}', b"\xff"])
    def test_invalid_body_raises(self, body):
        with pytest.raises(InvalidResponse):
            RawResponse(200, body).json()

    def test_text_of_undecodable_body(self):
        assert RawResponse(500, b"bad \xff").text == "bad \ufffd"


class TestFetchJson:
    async def test_returns_parsed_body(self, send, sleep):
        send.side_effect = [RawResponse(200, '{"recordings": []}')]
        assert await fetch_json(None, URL, sleep=sleep) == {"recordings": []}

    async def test_client_error_raises_http_error(self, send, sleep):
        send.side_effect = [RawResponse(404, "not found")]

        with pytest.raises(HttpError) as exc_info:
            await fetch_json(None, URL, sleep=sleep)

        assert exc_info.value.status == 404


class FakeResponse:
    def __init__(self, status, body=b"", headers=None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def read(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class TestSendOnce:
    async def test_body_is_kept_as_bytes(self):
        session = FakeSession(FakeResponse(200, b'{"status": "\xff\xfe"}', {"X-RateLimit-Reset-In": "5"}))

        response = await _send_once(session, "POST", URL, json_body={"a": 1})

        assert response.body == b'{"status": "\xff\xfe"}'
        assert response.header("X-RateLimit-Reset-In") == "5"
        assert session.calls == [("POST", URL, {"headers": None, "params": None, "json": {"a": 1}})]

    @pytest.mark.parametrize("error", [
        aiohttp.ServerDisconnectedError(),
        aiohttp.ClientConnectionError("connection reset"),
        asyncio.TimeoutError(),
    ])
    async def test_request_errors_are_transient(self, error):
        with pytest.raises(TransientTransportError):
            await _send_once(FakeSession(error), "GET", URL)

    async def test_truncated_payload_is_transient(self):
        session = FakeSession(FakeResponse(200, aiohttp.ClientPayloadError("Response payload is not completed")))

        with pytest.raises(TransientTransportError):
            await _send_once(session, "GET", URL)
