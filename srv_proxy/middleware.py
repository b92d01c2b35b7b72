"""
Cross-cutting middleware wrapped around the proxy route.

None of these look at what the proxy decided; they only log, tag or frame
the response that comes back.
"""

import hashlib
import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("uvicorn.error")

# Headers a 304 keeps from the full response (RFC 9110 15.4.5)
NOT_MODIFIED_HEADERS = (
    "cache-control",
    "content-location",
    "date",
    "etag",
    "expires",
    "vary",
)


async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log every request on the way in and its status and timing on the way out."""
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    logger.info(f"<-- {request.method} {path}")

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        elapsed = (time.perf_counter() - start_time) * 1000
        logger.error(
            f"xxx {request.method} {path} failed after {elapsed:.0f}ms: {exc}",
            exc_info=True,
        )
        raise

    elapsed = (time.perf_counter() - start_time) * 1000
    logger.info(f"--> {request.method} {path} {response.status_code} {elapsed:.0f}ms")
    return response


def weak_etag(body: bytes) -> str:
    return f'W/"{hashlib.sha1(body).hexdigest()}"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Weak comparison of an ETag against an If-None-Match header value."""
    if not if_none_match:
        return False
    if if_none_match.strip() == "*":
        return True
    wanted = etag[2:] if etag.startswith("W/") else etag
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == wanted:
            return True
    return False


class ETagMiddleware:
    """
    Tag successful responses with a weak ETag of their body and answer
    ``304 Not Modified`` when the client already holds that version.

    Responses that already carry an ETag keep it. Untagged responses are
    buffered to be hashed.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if_none_match = Headers(scope=scope).get("if-none-match")
        state = {"mode": None, "start": None, "chunks": []}

        async def send_not_modified(start: Message) -> None:
            headers = Headers(raw=start["headers"])
            kept = [
                (k.encode("latin-1"), v.encode("latin-1"))
                for k, v in headers.items()
                if k in NOT_MODIFIED_HEADERS
            ]
            await send({"type": "http.response.start", "status": 304, "headers": kept})
            await send({"type": "http.response.body", "body": b"", "more_body": False})

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = Headers(raw=message["headers"])
                status = message["status"]
                if not 200 <= status < 300:
                    state["mode"] = "passthrough"
                    await send(message)
                elif "etag" in headers:
                    if etag_matches(if_none_match, headers["etag"]):
                        state["mode"] = "not_modified"
                        await send_not_modified(message)
                    else:
                        state["mode"] = "passthrough"
                        await send(message)
                else:
                    state["mode"] = "buffer"
                    state["start"] = message
                return

            if message["type"] != "http.response.body":
                await send(message)
                return

            if state["mode"] == "passthrough":
                await send(message)
                return
            if state["mode"] == "not_modified":
                return

            state["chunks"].append(message.get("body", b""))
            if message.get("more_body", False):
                return

            body = b"".join(state["chunks"])
            start = state["start"]
            etag = weak_etag(body)
            headers = MutableHeaders(scope=start)
            headers["etag"] = etag
            if etag_matches(if_none_match, etag):
                await send_not_modified(start)
                return
            await send(start)
            await send({"type": "http.response.body", "body": body, "more_body": False})

        await self.app(scope, receive, send_wrapper)
