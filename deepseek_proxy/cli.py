"""Entry points for launching the proxy via uvicorn."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging

import uvicorn

from .app import create_app
from .config import ConfigError, ProxySettings

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def _build_settings(args: argparse.Namespace) -> ProxySettings:
    """Construct ProxySettings from the environment, then apply CLI overrides."""

    settings = ProxySettings.from_env(args.env_file)
    overrides = {
        "host": args.host,
        "port_http": args.port,
        "port_http2": args.tls_port,
        "tls_certfile": args.certfile,
        "tls_keyfile": args.keyfile,
        "upstream_timeout": args.upstream_timeout,
    }
    return dataclasses.replace(
        settings, **{key: value for key, value in overrides.items() if value is not None}
    )


def _log_configuration(settings: ProxySettings) -> None:
    tls_display = f"port {settings.port_http2}" if settings.tls_enabled else "disabled"
    timeout_display = (
        f"{settings.upstream_timeout:g}s" if settings.upstream_timeout is not None else "none"
    )
    logger.info("Initializing DeepSeek OpenAI Proxy ...")
    logger.info(
        "Loaded configuration host=%s http_port=%s tls=%s upstream=%s timeout=%s",
        settings.host,
        settings.port_http,
        tls_display,
        settings.upstream_endpoint,
        timeout_display,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the DeepSeek OpenAI proxy server")
    parser.add_argument("--host", default=None, help="Host interface to bind")
    parser.add_argument("--port", type=int, default=None, help="Plain HTTP port (PORT_HTTP)")
    parser.add_argument("--tls-port", type=int, default=None, help="TLS port (PORT_HTTP2)")
    parser.add_argument("--certfile", default=None, help="TLS certificate (TLS_CERTFILE)")
    parser.add_argument("--keyfile", default=None, help="TLS private key (TLS_KEYFILE)")
    parser.add_argument(
        "--upstream-timeout",
        type=float,
        default=None,
        help="Seconds to wait on the upstream before failing (default: no timeout)",
    )
    parser.add_argument("--env-file", default=None, help="dotenv file to load (default: ./.env)")
    return parser.parse_args(argv)


def _build_servers(settings: ProxySettings) -> list[uvicorn.Server]:
    app = create_app(settings)
    configs = [
        uvicorn.Config(app, host=settings.host, port=settings.port_http, log_level="info"),
    ]
    if settings.tls_enabled:
        configs.append(
            uvicorn.Config(
                app,
                host=settings.host,
                port=settings.port_http2,
                ssl_certfile=settings.tls_certfile,
                ssl_keyfile=settings.tls_keyfile,
                log_level="info",
            )
        )
    return [uvicorn.Server(config) for config in configs]


async def serve(settings: ProxySettings) -> None:
    """Run every configured listener on the current event loop."""

    servers = _build_servers(settings)
    tasks = [asyncio.create_task(server.serve()) for server in servers]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Signal handlers reach only one server; stop the rest with it.
        for server in servers:
            server.should_exit = True
        await asyncio.gather(*tasks, return_exceptions=True)


def run(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        settings = _build_settings(args)
        settings.require_api_key()
    except ConfigError as err:
        logger.error("[!] Configuration error: %s", err)
        raise SystemExit(1)

    _log_configuration(settings)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    run()
