"""Per-request orchestration: read, validate, translate, forward, relay."""
from __future__ import annotations

import enum
import logging
import time
import uuid
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import Response

from .config import ProxySettings
from .errors import report_error
from .relay import relay
from .translate import (
    build_upstream_request,
    parse_chat_request,
    parse_request_body,
    validate_model,
)
from .upstream import UpstreamGateway

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    RECEIVED = "received"
    PARSING = "parsing"
    VALIDATING = "validating"
    TRANSLATING = "translating"
    UPSTREAM_CALLING = "upstream_calling"
    RELAYING = "relaying"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL_STATES = {SessionState.COMPLETED, SessionState.FAILED}


class ProxySession:
    """Handles one inbound chat-completion request from start to finish.

    A session owns exactly one :class:`UpstreamGateway`. Every failure is
    turned into a single JSON error response via :func:`report_error`, and
    the gateway is closed on every exit path. For streaming responses the
    relay takes over ownership and reports back through ``_finish_stream``.
    """

    def __init__(
        self,
        settings: ProxySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.session_id = uuid.uuid4().hex
        self.state = SessionState.RECEIVED
        self.gateway = UpstreamGateway(settings, transport=transport)
        self.stream = False
        self._started = time.perf_counter()
        self._method = ""
        self._path = ""
        self._status = 500

    def _advance(self, state: SessionState) -> None:
        if self.state in _TERMINAL_STATES:
            return
        logger.debug("session %s: %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    def _log_complete(self, status_code: int) -> None:
        duration_ms = (time.perf_counter() - self._started) * 1000.0
        logger.info(
            "request.complete request_id=%s method=%s path=%s status=%s duration_ms=%.2f stream=%s",
            self.session_id,
            self._method,
            self._path,
            status_code,
            duration_ms,
            self.stream,
        )

    async def handle(self, request: Request) -> Response:
        self._method = request.method
        self._path = request.url.path
        if request.url.query:
            self._path = f"{self._path}?{request.url.query}"

        handed_off = False
        try:
            self._advance(SessionState.PARSING)
            body = parse_request_body(await request.body())

            self._advance(SessionState.VALIDATING)
            validate_model(body.get("model"), self.settings.public_model)
            chat_request = parse_chat_request(body)
            self.stream = body.get("stream") is True

            self._advance(SessionState.TRANSLATING)
            upstream_body = build_upstream_request(chat_request, self.settings.upstream_model)

            self._advance(SessionState.UPSTREAM_CALLING)
            result = await self.gateway.forward(self._method, self._path, upstream_body)

            self._advance(SessionState.RELAYING)
            response = await relay(
                result,
                self.stream,
                self.settings.public_model,
                on_close=self._finish_stream,
                receive=request.receive,
            )
            self._status = response.status_code
            if self.stream:
                handed_off = True
                return response
            self._advance(SessionState.COMPLETED)
            self._log_complete(response.status_code)
            return response
        except Exception as exc:
            self._advance(SessionState.FAILED)
            response = report_error(exc)
            self._log_complete(response.status_code)
            return response
        finally:
            if not handed_off:
                await self.gateway.aclose()

    async def _finish_stream(self, finished: bool) -> None:
        await self.gateway.aclose()
        # A client that hangs up ends the exchange without an error response.
        self._advance(SessionState.COMPLETED)
        self._log_complete(self._status if finished else 499)
