"""Configuration helpers for the DeepSeek translation proxy."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEEPSEEK_ENDPOINT = "https://api.deepseek.com"
PUBLIC_MODEL = "gpt-4o"
UPSTREAM_MODEL = "deepseek-chat"
STREAM_HIGH_WATER_MARK = 1024 * 1024


class ConfigError(RuntimeError):
    """Raised when a required setting is missing or malformed."""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from exc


@dataclass(frozen=True)
class ProxySettings:
    """Runtime configuration values for the proxy service.

    Read once at startup and passed explicitly to ``create_app``; nothing
    mutates it afterwards.
    """

    api_key: str | None = None
    upstream_endpoint: str = DEEPSEEK_ENDPOINT
    public_model: str = PUBLIC_MODEL
    upstream_model: str = UPSTREAM_MODEL
    host: str = "0.0.0.0"
    port_http: int = 9001
    port_http2: int = 9000
    tls_certfile: str | None = None
    tls_keyfile: str | None = None
    upstream_timeout: float | None = None
    stream_high_water_mark: int = STREAM_HIGH_WATER_MARK

    @classmethod
    def from_env(cls, env_file: str | os.PathLike[str] | None = None) -> "ProxySettings":
        """Build settings from the process environment, loading ``.env`` first.

        Values already present in the environment win over the dotenv file.
        """

        load_dotenv(Path(env_file) if env_file else Path.cwd() / ".env", override=False)
        return cls(
            api_key=os.getenv("DEEPSEEK_API_KEY") or None,
            upstream_endpoint=os.getenv("DEEPSEEK_ENDPOINT") or DEEPSEEK_ENDPOINT,
            host=os.getenv("PROXY_HOST") or "0.0.0.0",
            port_http=_int_env("PORT_HTTP", 9001),
            port_http2=_int_env("PORT_HTTP2", 9000),
            tls_certfile=os.getenv("TLS_CERTFILE") or None,
            tls_keyfile=os.getenv("TLS_KEYFILE") or None,
            upstream_timeout=_float_env("UPSTREAM_TIMEOUT"),
        )

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_certfile and self.tls_keyfile)

    def require_api_key(self) -> str:
        """Return the upstream credential or raise ``ConfigError``."""

        if not self.api_key:
            raise ConfigError("DEEPSEEK_API_KEY is required")
        return self.api_key
