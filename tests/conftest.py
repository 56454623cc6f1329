"""Shared test fixtures for the DeepSeek proxy."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from deepseek_proxy.app import create_app
from deepseek_proxy.config import ProxySettings

UPSTREAM = "https://upstream.test"


class CountingTransport(httpx.MockTransport):
    """MockTransport that remembers requests and how often it was closed.

    The gateway builds one ``AsyncClient`` per inbound request, so each
    client close lands here exactly once.
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self.close_calls = 0

        def record(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    async def aclose(self) -> None:
        self.close_calls += 1

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture()
def counting_transport():
    return CountingTransport


@pytest.fixture()
def settings() -> ProxySettings:
    return ProxySettings(api_key="test-key", upstream_endpoint=UPSTREAM)


@pytest.fixture()
def make_client(settings):
    """Return a factory building a TestClient whose upstream is ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        transport = CountingTransport(handler)
        return TestClient(create_app(settings, transport=transport)), transport

    return factory
