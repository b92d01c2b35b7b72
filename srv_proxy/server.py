import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from prometheus_client import start_http_server
from pydantic import ValidationError
from starlette.middleware.gzip import GZipMiddleware

from srv_proxy.middleware import ETagMiddleware, log_requests
from srv_proxy.proxy import router
from srv_proxy.telemetry import setup_telemetry
from srv_proxy.vars import LOG_LEVEL, METRICS_PORT, ProxyConfig, load_config

logger = logging.getLogger("uvicorn.error")


def create_app(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the proxy application.

    One httpx.AsyncClient serves both the DoH lookups and the proxied calls
    for the lifetime of the app. ``transport`` replaces its network
    transport, e.g. with an ``httpx.MockTransport``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(
            transport=transport, follow_redirects=False
        ) as client:
            app.state.http_client = client
            if config.host:
                logger.info(f"Resolving upstreams via SRV records of {config.host}")
            else:
                logger.info("No HOST set, origin host must be bound per request")
            yield

    app = FastAPI(
        title="srv-proxy",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config

    # Last added runs first: logging -> compression -> etag -> proxy
    app.add_middleware(ETagMiddleware)
    app.add_middleware(GZipMiddleware)
    app.middleware("http")(log_requests)

    app.include_router(router)
    return app


def describe_config_errors(error: ValidationError) -> str:
    """One ``NAME: reason`` entry per invalid setting, named like its env var."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']).upper() or 'CONFIG'}: {err['msg']}"
        for err in error.errors()
    )


def build_app(config: Optional[ProxyConfig] = None) -> FastAPI:
    """
    Application with telemetry attached, for ``uvicorn --factory``.

    Reads the environment when no config is given.
    """
    app = create_app(config or load_config())
    setup_telemetry(app)
    return app


def main() -> None:
    try:
        config = load_config()
        metrics_port = int(METRICS_PORT) if METRICS_PORT else None
    except ValidationError as e:
        print(f"Error: invalid configuration: {describe_config_errors(e)}", file=sys.stderr)
        sys.exit(1)
    except ValueError:
        print(
            f"Error: invalid configuration: METRICS_PORT must be an integer, got {METRICS_PORT!r}",
            file=sys.stderr,
        )
        sys.exit(1)

    app = build_app(config)
    if metrics_port:
        start_http_server(metrics_port)
        logger.info(f"Serving metrics on port {metrics_port}")
    uvicorn.run(
        app,
        host=config.listen_address,
        port=config.port,
        log_level=LOG_LEVEL,
    )


if __name__ == "__main__":
    main()
