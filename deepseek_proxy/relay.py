"""Delivery of an upstream response to the downstream client."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi.responses import Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from .errors import ProxyError
from .translate import rewrite_response_model
from .upstream import BufferedPassThrough, UpstreamResult

logger = logging.getLogger(__name__)

# Framing is recomputed by the front end, so these never cross the proxy.
_SKIPPED_RESPONSE_HEADERS = {
    "connection",
    "content-encoding",
    "content-length",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

CloseCallback = Callable[[bool], Awaitable[None]]

# Status logged for a client that hung up before any byte was written.
CLIENT_CLOSED_REQUEST = 499


def _relayed_headers(result: UpstreamResult) -> list[tuple[str, str]]:
    return [
        (name, value)
        for name, value in result.headers
        if name.lower() not in _SKIPPED_RESPONSE_HEADERS
    ]


def _apply_headers(response: Response, headers: list[tuple[str, str]]) -> Response:
    # Raw pairs keep repeated fields (set-cookie) that a mapping would collapse.
    response.raw_headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers
    )
    return response


class RelayStreamingResponse(StreamingResponse):
    """Streams upstream bytes verbatim and always releases the upstream.

    ``on_close`` runs once the ASGI call is over, whatever the outcome, and is
    told whether the body was relayed to its end. Anything short of that means
    the client went away first.
    """

    def __init__(
        self,
        first_chunk: bytes,
        stream: BufferedPassThrough,
        status_code: int,
        headers: list[tuple[str, str]],
        on_close: CloseCallback,
    ) -> None:
        self._first_chunk = first_chunk
        self._upstream = stream
        self._on_close = on_close
        self.finished = False
        super().__init__(self._relay(), status_code=status_code)
        _apply_headers(self, headers)

    async def _relay(self) -> AsyncIterator[bytes]:
        try:
            if self._first_chunk:
                yield self._first_chunk
            async for chunk in self._upstream:
                yield chunk
        except ProxyError as exc:
            logger.error("Stream error: %s", exc)
        self.finished = True

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self.finished:
                self._upstream.destroy()
                logger.info("Client disconnected")
            await self._on_close(self.finished)


class ClientDisconnected(Exception):
    """The client hung up while the relay was still waiting on the upstream."""


async def _wait_for_disconnect(receive: Receive) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return


async def _read_first_chunk(stream: BufferedPassThrough, receive: Optional[Receive]) -> bytes:
    if receive is None:
        return await stream.read()

    read_task = asyncio.ensure_future(stream.read())
    watch_task = asyncio.ensure_future(_wait_for_disconnect(receive))
    try:
        await asyncio.wait({read_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (read_task, watch_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(read_task, watch_task, return_exceptions=True)
    if read_task.cancelled():
        raise ClientDisconnected()
    return read_task.result()


async def relay_stream(
    result: UpstreamResult,
    on_close: CloseCallback,
    receive: Optional[Receive] = None,
) -> Response:
    """Pipe the upstream event stream to the client as it arrives.

    The first chunk is awaited before any header is committed, so an upstream
    that fails immediately still gets a proper error response. When
    ``receive`` is given, a client that disconnects during that wait releases
    the upstream right away instead of when the first chunk shows up.
    """
    try:
        first_chunk = await _read_first_chunk(result.stream, receive)
    except ClientDisconnected:
        result.stream.destroy()
        logger.info("Client disconnected before the first upstream chunk")
        await on_close(False)
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return RelayStreamingResponse(
        first_chunk,
        result.stream,
        status_code=result.status or 500,
        headers=_relayed_headers(result),
        on_close=on_close,
    )


async def relay_buffered(result: UpstreamResult, public_model: str) -> Response:
    """Collect the whole upstream body, advertise the public model, send once."""
    chunks = [chunk async for chunk in result.stream]
    body = rewrite_response_model(b"".join(chunks), public_model)
    headers = _relayed_headers(result)
    if not any(name.lower() == "content-type" for name, _ in headers):
        headers.append(("content-type", "application/json"))
    response = Response(
        content=json.dumps(body, ensure_ascii=False).encode("utf-8"),
        status_code=result.status or 500,
    )
    return _apply_headers(response, headers)


async def relay(
    result: UpstreamResult,
    is_streaming_request: bool,
    public_model: str,
    on_close: Optional[CloseCallback] = None,
    receive: Optional[Receive] = None,
) -> Response:
    if is_streaming_request:
        if on_close is None:
            raise ValueError("streaming relay needs an on_close callback")
        return await relay_stream(result, on_close, receive)
    return await relay_buffered(result, public_model)
