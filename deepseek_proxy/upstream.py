"""Upstream connection handling: one HTTP/2 exchange per inbound request."""
from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from .config import ProxySettings
from .errors import UpstreamTransportFailure

logger = logging.getLogger(__name__)


def _filter_pseudo_headers(headers: Any) -> list[tuple[str, str]]:
    """Drop HTTP/2 pseudo-headers, keeping repeated fields such as set-cookie."""
    items = headers.multi_items() if isinstance(headers, httpx.Headers) else headers.items()
    return [(name, value) for name, value in items if not name.startswith(":")]


class BufferedPassThrough:
    """Byte buffer between the upstream reader and the downstream writer.

    ``write`` waits while more than ``high_water_mark`` bytes are queued, so
    a slow client never makes the proxy hold an unbounded response in memory.
    ``fail`` ends the stream with an error that a reader sees after draining
    what was already queued. ``destroy`` discards buffered data; a reader then
    sees the error passed to it (or end of stream when there is none).
    """

    def __init__(self, high_water_mark: int) -> None:
        self.high_water_mark = high_water_mark
        self._chunks: deque[bytes] = deque()
        self._size = 0
        self._ended = False
        self._destroyed = False
        self._error: Optional[BaseException] = None
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

    @property
    def buffered_bytes(self) -> int:
        return self._size

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def ended(self) -> bool:
        return self._ended

    async def write(self, chunk: bytes) -> bool:
        """Queue ``chunk``; returns False once the stream has been destroyed."""
        while self._size >= self.high_water_mark and not self._destroyed:
            self._writable.clear()
            await self._writable.wait()
        if self._destroyed or self._ended:
            return False
        if chunk:
            self._chunks.append(chunk)
            self._size += len(chunk)
            self._readable.set()
        return True

    def end(self) -> None:
        self._ended = True
        self._readable.set()

    def fail(self, error: BaseException) -> None:
        if self._destroyed or self._ended:
            return
        self._error = error
        self._ended = True
        self._readable.set()
        self._writable.set()

    def destroy(self, error: Optional[BaseException] = None) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._error = error
        self._chunks.clear()
        self._size = 0
        self._readable.set()
        self._writable.set()

    async def read(self) -> bytes:
        """Return the next chunk, or ``b""`` at end of stream."""
        while not self._chunks:
            if self._error is not None:
                raise self._error
            if self._destroyed or self._ended:
                return b""
            self._readable.clear()
            await self._readable.wait()
        chunk = self._chunks.popleft()
        self._size -= len(chunk)
        if self._size < self.high_water_mark:
            self._writable.set()
        return chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read()
            if not chunk:
                return
            yield chunk


@dataclass
class UpstreamResult:
    status: Optional[int]
    headers: list[tuple[str, str]]
    stream: BufferedPassThrough


class UpstreamGateway:
    """Owns the lifecycle of exactly one upstream connection.

    ``forward`` resolves once the response headers arrive. The body is pumped
    in the background into a :class:`BufferedPassThrough`; the connection is
    closed when the body ends, when the pump fails, or when ``aclose`` is
    called, and only the first of those actually closes it.
    """

    def __init__(
        self,
        settings: ProxySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._stream: Optional[BufferedPassThrough] = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def opened(self) -> bool:
        return self._client is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def _build_headers(self, body: Mapping[str, Any]) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self._settings.api_key}",
            "content-type": "application/json",
            "accept": "text/event-stream" if body.get("stream") else "application/json",
        }

    def _open_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.upstream_endpoint,
            http2=True,
            transport=self._transport,
            timeout=httpx.Timeout(self._settings.upstream_timeout),
        )

    async def forward(self, method: str, path: str, body: Mapping[str, Any]) -> UpstreamResult:
        if self._client is not None:
            raise RuntimeError("UpstreamGateway.forward may only be called once")

        stream = BufferedPassThrough(self._settings.stream_high_water_mark)
        self._stream = stream
        self._client = self._open_client()
        request = self._client.build_request(
            method,
            path,
            content=json.dumps(body).encode("utf-8"),
            headers=self._build_headers(body),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            failure = UpstreamTransportFailure(f"Upstream request failed: {exc}")
            logger.warning("upstream.error method=%s path=%s error=%s", method, path, exc)
            stream.destroy(failure)
            await self._close_connection()
            raise failure from exc
        except BaseException:
            stream.destroy()
            await self._close_connection()
            raise

        self._response = response
        logger.debug(
            "upstream.response method=%s path=%s status=%s http_version=%s",
            method,
            path,
            response.status_code,
            response.http_version,
        )
        self._pump_task = asyncio.create_task(self._pump(response, stream))
        return UpstreamResult(
            status=response.status_code,
            headers=_filter_pseudo_headers(response.headers),
            stream=stream,
        )

    async def _pump(self, response: httpx.Response, stream: BufferedPassThrough) -> None:
        try:
            async for chunk in response.aiter_bytes():
                if not await stream.write(chunk):
                    break
            stream.end()
        except httpx.HTTPError as exc:
            logger.warning("upstream.stream_error error=%s", exc)
            stream.fail(UpstreamTransportFailure(f"Upstream stream failed: {exc}"))
        except Exception as exc:
            logger.exception("upstream.stream_error error=%s", exc)
            stream.fail(UpstreamTransportFailure(f"Upstream stream failed: {exc}"))
        finally:
            await self._close_connection()

    async def _close_connection(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._response is not None:
                await self._response.aclose()
        finally:
            if self._client is not None:
                await self._client.aclose()
            logger.debug("upstream.closed")

    async def aclose(self) -> None:
        """Release the stream and the connection; safe to call repeatedly.

        Returns only once the connection is closed.
        """
        stream = self._stream
        task = self._pump_task
        if stream is not None:
            if task is not None and not task.done() and not stream.ended:
                task.cancel()
            stream.destroy()
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait([task])
        await self._close_connection()
