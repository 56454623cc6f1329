"""HTTP route handlers for the DeepSeek translation proxy."""
from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from .config import ProxySettings
from .schemas import ModelEntry, ModelsList
from .session import ProxySession

router = APIRouter()


def _models_payload(settings: ProxySettings) -> ModelsList:
    created = int(time.time())
    return ModelsList(
        data=[
            ModelEntry(id=settings.public_model, created=created, owned_by="openai"),
            ModelEntry(id=settings.upstream_model, created=created, owned_by="deepseek"),
        ]
    )


@router.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "service": "deepseek-proxy"})


@router.get("/models", response_model=None)
@router.get("/v1/models", response_model=None)
async def models(request: Request) -> JSONResponse:
    settings: ProxySettings = request.app.state.settings
    return JSONResponse(content=_models_payload(settings).model_dump())


@router.post("/chat/completions", response_model=None)
@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(request: Request) -> Response:
    session = ProxySession(
        request.app.state.settings,
        transport=getattr(request.app.state, "upstream_transport", None),
    )
    return await session.handle(request)
