"""Tests for response buffering and the single final flush."""

import asyncio

import pytest

from tokenmeter.capture import CapturedResponse, ResponseCapture, flush_response
from tokenmeter.exceptions import CaptureError


class RecordingSend:
    """Stand-in for the real ASGI send."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)


def _run(coro):
    return asyncio.run(coro)


class TestResponseCapture:
    """Tests for the buffering stage."""

    def test_defaults_to_200(self):
        capture = ResponseCapture()
        _run(capture({"type": "http.response.body", "body": b"ok"}))
        response = capture.seal()
        assert response.status == 200
        assert response.body == b"ok"

    def test_records_status_headers_and_chunks(self):
        capture = ResponseCapture()

        async def write():
            await capture(
                {
                    "type": "http.response.start",
                    "status": 201,
                    "headers": [(b"Content-Type", b"application/json"), (b"x-a", b"1")],
                }
            )
            await capture({"type": "http.response.body", "body": b'{"a":', "more_body": True})
            await capture({"type": "http.response.body", "body": b"", "more_body": True})
            await capture({"type": "http.response.body", "body": b"1}", "more_body": False})

        _run(write())
        response = capture.seal()
        assert response.status == 201
        assert response.body == b'{"a":1}'
        assert response.headers["content-type"] == "application/json"
        assert response.raw_headers[0] == (b"content-type", b"application/json")

    def test_nothing_reaches_real_send(self):
        """The capture never touches the client until flushed."""
        send = RecordingSend()
        capture = ResponseCapture()
        _run(capture({"type": "http.response.start", "status": 200, "headers": []}))
        _run(capture({"type": "http.response.body", "body": b"x"}))
        assert send.messages == []

    def test_write_after_seal_fails(self):
        capture = ResponseCapture()
        capture.seal()
        assert capture.sealed
        with pytest.raises(CaptureError):
            _run(capture({"type": "http.response.body", "body": b"late"}))

    def test_seal_twice_fails(self):
        capture = ResponseCapture()
        capture.seal()
        with pytest.raises(CaptureError):
            capture.seal()

    def test_ignores_other_messages(self):
        capture = ResponseCapture()
        _run(capture({"type": "http.response.trailers", "headers": []}))
        assert capture.seal().body == b""


class TestCapturedResponse:
    """Tests for the immutable captured response."""

    def test_multi_valued_headers(self):
        response = CapturedResponse(
            raw_headers=((b"set-cookie", b"a=1"), (b"set-cookie", b"b=2")),
        )
        assert response.headers.getlist("Set-Cookie") == ["a=1", "b=2"]

    def test_with_headers_replaces(self):
        response = CapturedResponse(
            raw_headers=((b"x-request-token-count", b"1"), (b"x-other", b"keep")),
        )
        updated = response.with_headers({"X-Request-Token-Count": "42"})
        assert updated.headers.getlist("x-request-token-count") == ["42"]
        assert updated.headers["x-other"] == "keep"
        # original untouched
        assert response.headers["x-request-token-count"] == "1"

    def test_with_headers_empty_returns_same(self):
        response = CapturedResponse()
        assert response.with_headers({}) is response

    def test_with_body_updates_content_length(self):
        response = CapturedResponse(raw_headers=((b"content-length", b"2"),), body=b"ab")
        updated = response.with_body(b"abcd")
        assert updated.body == b"abcd"
        assert updated.headers["content-length"] == "4"

    def test_with_body_without_content_length(self):
        response = CapturedResponse(body=b"ab")
        updated = response.with_body(b"abc")
        assert "content-length" not in updated.headers


class TestFlushResponse:
    def test_single_start_and_body(self):
        send = RecordingSend()
        response = CapturedResponse(
            status=404, raw_headers=((b"content-type", b"text/plain"),), body=b"missing"
        )
        _run(flush_response(send, response))

        assert send.messages == [
            {
                "type": "http.response.start",
                "status": 404,
                "headers": [(b"content-type", b"text/plain")],
            },
            {"type": "http.response.body", "body": b"missing", "more_body": False},
        ]
