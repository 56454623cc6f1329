"""FastAPI application factory for the DeepSeek translation proxy."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import ProxySettings
from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    settings: ProxySettings | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the FastAPI app with configured routers.

    ``transport`` replaces the network transport used for upstream calls;
    tests pass an ``httpx.MockTransport`` here.
    """

    settings = settings or ProxySettings.from_env()

    app = FastAPI(
        title="DeepSeek OpenAI Proxy",
        description="Serves OpenAI Chat Completions requests from the DeepSeek API.",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    app.state.settings = settings
    app.state.upstream_transport = transport

    logger.debug(
        "app created upstream=%s public_model=%s upstream_model=%s",
        settings.upstream_endpoint,
        settings.public_model,
        settings.upstream_model,
    )
    return app
