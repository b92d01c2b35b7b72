import logging
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple, Union

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.datastructures import URL

from srv_proxy.dns.models import SRVRecord
from srv_proxy.dns.srv_resolver import resolve_srv
from srv_proxy.utils.exception_logging import log_exception_with_details
from srv_proxy.utils.traced_requests import traced_request
from srv_proxy.vars import ProxyConfig

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

NOT_FOUND_BODY = "Service not found"

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def srv_query_name(scheme: str, origin_host: str) -> str:
    """Build the SRV name for an inbound scheme, e.g. ``_https._tcp.example.com``."""
    tag = "https" if scheme.startswith("https") else "http"
    return f"_{tag}._tcp.{origin_host}"


def rewrite_target_url(url: Union[str, URL], record: SRVRecord) -> str:
    """Point ``url`` at the SRV target, keeping scheme, path and query."""
    host = record.host.rstrip(".") or record.host
    return str(httpx.URL(str(url)).copy_with(host=host, port=int(record.port)))


def hop_by_hop_names(raw_headers: List[Tuple[bytes, bytes]]) -> Set[str]:
    """
    The fixed hop-by-hop headers plus every header named in ``Connection``
    (RFC 9110 7.6.1).
    """
    names = set(HOP_BY_HOP_HEADERS)
    for name, value in raw_headers:
        if name.decode("latin-1").lower() == "connection":
            for token in value.decode("latin-1").split(","):
                token = token.strip().lower()
                if token:
                    names.add(token)
    return names


def filter_headers(
    raw_headers: List[Tuple[bytes, bytes]], also_drop: Iterable[str] = ()
) -> List[Tuple[bytes, bytes]]:
    dropped = hop_by_hop_names(raw_headers) | set(also_drop)
    return [
        (name, value)
        for name, value in raw_headers
        if name.decode("latin-1").lower() not in dropped
    ]


def prepare_headers(request: Request) -> List[Tuple[bytes, bytes]]:
    """
    Headers for the outbound request: the inbound ones, repeated values
    included, minus Host (taken from the rewritten URL) and hop-by-hop headers.
    """
    return filter_headers(list(request.headers.raw), also_drop=("host",))


def response_headers(response: httpx.Response) -> List[Tuple[bytes, bytes]]:
    return filter_headers(list(response.headers.raw))


async def stream_response(response: httpx.Response) -> AsyncIterator[bytes]:
    """Relay the upstream body as received, without decoding it."""
    try:
        if response.is_stream_consumed:
            # Body was already read into memory
            yield response.content
            return
        async for chunk in response.aiter_raw():
            yield chunk
    finally:
        await response.aclose()


def origin_host_for(request: Request, config: ProxyConfig) -> Optional[str]:
    if config.host:
        return config.host
    return getattr(request.state, "origin_host", None)


def service_not_found() -> Response:
    return PlainTextResponse(NOT_FOUND_BODY, status_code=404)


async def forward_to_target(
    request: Request, config: ProxyConfig, client: httpx.AsyncClient
) -> Response:
    """
    Resolve the upstream for ``request`` via SRV and relay the request to it.

    Resolution failures of any kind turn into ``404 Service not found``.
    Failures of the proxied call itself are left to the framework.
    """
    origin_host = origin_host_for(request, config)
    if not origin_host:
        logger.warning("[Proxy] No origin host configured or bound to the request")
        return service_not_found()

    name = srv_query_name(request.url.scheme, origin_host)

    with traced_request(
        tracer,
        "proxy_request",
        f"[Proxy] {request.method} {request.url.path} via {name}",
        {"proxy.srv_name": name, "proxy.method": request.method},
    ) as span:
        lookup = await resolve_srv(name, client)
        if not lookup.found:
            span.set_attribute("proxy.error", type(lookup.error).__name__)
            log_exception_with_details(
                logger, f"[Proxy] Resolving {name} failed:", lookup.error, logging.WARNING
            )
            return service_not_found()

        try:
            target_url = rewrite_target_url(request.url, lookup.record)
        except httpx.InvalidURL as e:
            span.set_attribute("proxy.error", "invalid_target")
            log_exception_with_details(
                logger, f"[Proxy] SRV target for {name} is unusable:", e, logging.WARNING
            )
            return service_not_found()
        span.set_attribute("proxy.target_url", target_url)
        logger.debug(f"[Proxy] {request.method} {request.url} -> {target_url}")

        body = await request.body()
        outbound = client.build_request(
            request.method,
            target_url,
            headers=prepare_headers(request),
            content=body,
        )
        upstream = await client.send(outbound, stream=True)
        span.set_attribute("proxy.status_code", upstream.status_code)

        response = StreamingResponse(
            stream_response(upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = response_headers(upstream)
        return response


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies all requests to the SRV-resolved target."""
    return await forward_to_target(
        request, request.app.state.config, request.app.state.http_client
    )
