import os
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SERVICE_NAME = os.getenv("SERVICE_NAME", "srv-proxy")
HOST = os.environ.get("HOST", "")
PORT = os.environ.get("PORT", "")
LISTEN_ADDRESS = os.environ.get("LISTEN_ADDRESS", "0.0.0.0")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Metrics get their own listener so that no inbound path is shadowed
METRICS_PORT = os.getenv("METRICS_PORT", "")

DEFAULT_PORT = 3000

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}\.?$)([A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9])?)"
    r"(?:\.[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9])?)*\.?$"
)


class ProxyConfig(BaseModel):
    """
    Process-wide settings, resolved once at startup and never mutated.

    ``host`` is the origin whose SRV records locate the upstream. When it is
    unset the hosting environment has to bind one per request.
    """

    model_config = ConfigDict(frozen=True)

    host: Optional[str] = None
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    listen_address: str = "0.0.0.0"

    @field_validator("host")
    @classmethod
    def _bare_hostname(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not _HOSTNAME_RE.match(value):
            raise ValueError(
                f"HOST must be a bare hostname without scheme, port or path, got {value!r}"
            )
        return value


def load_config(environ: Optional[dict] = None) -> ProxyConfig:
    """
    Build the ProxyConfig from the environment.

    Raises pydantic.ValidationError when HOST or PORT are malformed, so a bad
    deployment fails before the proxy accepts traffic.
    """
    if environ is None:
        return ProxyConfig(
            host=HOST or None,
            port=PORT or DEFAULT_PORT,
            listen_address=LISTEN_ADDRESS,
        )
    return ProxyConfig(
        host=environ.get("HOST") or None,
        port=environ.get("PORT") or DEFAULT_PORT,
        listen_address=environ.get("LISTEN_ADDRESS", "0.0.0.0"),
    )
