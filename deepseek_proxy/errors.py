"""Error taxonomy and the single JSON error writer used by every route."""
from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Base class for failures that map to a client-visible status code."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(ProxyError):
    """Malformed JSON body or a missing/ill-typed required field."""

    status_code = 400


class UnsupportedModel(ProxyError):
    """The ``model`` field names something other than the public model."""

    status_code = 400


class UpstreamTransportFailure(ProxyError):
    """Connection-level failure while talking to the upstream."""

    status_code = 500


class MalformedUpstreamResponse(ProxyError):
    """A buffered upstream body that does not parse as a JSON object."""

    status_code = 502


def error_payload(code: int, message: str) -> dict[str, dict[str, object]]:
    return {"error": {"code": code, "message": message}}


def report_error(exc: BaseException) -> JSONResponse:
    """Turn any pipeline failure into exactly one terminating JSON response."""

    status_code = getattr(exc, "status_code", None) or 500
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    if isinstance(exc, ProxyError):
        logger.error("Error: %s", message)
    else:
        logger.exception("Unhandled error: %s", message, exc_info=exc)
    return JSONResponse(status_code=status_code, content=error_payload(status_code, message))
