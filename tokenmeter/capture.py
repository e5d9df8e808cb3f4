"""Buffering of ASGI responses.

The wrapped application writes into a ``ResponseCapture`` instead of the
real ``send``. Nothing is forwarded while it runs. Once it returns, the
capture is sealed into an immutable ``CapturedResponse`` which can be
inspected, rewritten (producing new objects) and finally written to the
client with ``flush_response``:

    capture = ResponseCapture()
    await app(scope, receive, capture)
    response = capture.seal()
    await flush_response(send, response)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import Message, Send

from .exceptions import CaptureError

logger = logging.getLogger(__name__)

DEFAULT_STATUS = 200


@dataclass(frozen=True)
class CapturedResponse:
    """A complete, buffered HTTP response."""

    status: int = DEFAULT_STATUS
    raw_headers: tuple[tuple[bytes, bytes], ...] = ()
    body: bytes = b""

    @property
    def headers(self) -> Headers:
        """Case-insensitive, multi-valued view of the headers."""
        return Headers(raw=list(self.raw_headers))

    def with_headers(self, values: dict[str, str]) -> CapturedResponse:
        """Return a copy with ``values`` set, replacing existing entries."""
        if not values:
            return self
        headers = MutableHeaders(raw=list(self.raw_headers))
        for name, value in values.items():
            headers[name] = value
        return replace(self, raw_headers=tuple(headers.raw))

    def with_body(self, body: bytes) -> CapturedResponse:
        """Return a copy carrying ``body``.

        A Content-Length header, if the upstream sent one, is updated to
        the new length.
        """
        if body == self.body:
            return self
        headers = MutableHeaders(raw=list(self.raw_headers))
        if "content-length" in headers:
            headers["content-length"] = str(len(body))
        return replace(self, raw_headers=tuple(headers.raw), body=body)


class ResponseCapture:
    """ASGI ``send`` replacement that buffers instead of forwarding.

    Status defaults to 200 when the application never sends a
    ``http.response.start`` message.
    """

    def __init__(self) -> None:
        self.status = DEFAULT_STATUS
        self.raw_headers: list[tuple[bytes, bytes]] = []
        self._chunks: list[bytes] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    async def __call__(self, message: Message) -> None:
        if self._sealed:
            raise CaptureError(
                "Write to a sealed response capture", details={"type": message["type"]}
            )

        message_type = message["type"]
        if message_type == "http.response.start":
            self.status = message.get("status", DEFAULT_STATUS)
            # Header lookups in starlette expect lower-cased names
            self.raw_headers = [(bytes(k).lower(), bytes(v)) for k, v in message.get("headers", [])]
        elif message_type == "http.response.body":
            chunk = message.get("body", b"")
            if chunk:
                self._chunks.append(chunk)
        else:
            logger.debug("Response capture ignoring %s message", message_type)

    def seal(self) -> CapturedResponse:
        """Stop buffering and return the captured response."""
        if self._sealed:
            raise CaptureError("Response capture already sealed")
        self._sealed = True
        return CapturedResponse(
            status=self.status,
            raw_headers=tuple(self.raw_headers),
            body=b"".join(self._chunks),
        )


async def flush_response(send: Send, response: CapturedResponse) -> None:
    """Write a response to the client: one start message, one body message."""
    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": list(response.raw_headers),
        }
    )
    await send({"type": "http.response.body", "body": response.body, "more_body": False})
