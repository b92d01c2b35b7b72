import httpx

DOH_HOST = "1.1.1.1"


def make_dns_json(answers=None, name="_https._tcp.example.com", status=0, **flags):
    """Build a dns-json body as returned by the resolver."""
    body = {
        "Status": status,
        "TC": flags.get("TC", False),
        "RD": flags.get("RD", True),
        "RA": flags.get("RA", True),
        "AD": flags.get("AD", False),
        "CD": flags.get("CD", False),
        "Question": [{"name": name, "type": 33}],
        "Answer": [
            {"name": name, "type": 33, "TTL": 300, "data": data}
            for data in (answers or [])
        ],
    }
    return body


class ChunkedBody(httpx.AsyncByteStream):
    """Unread response body delivered in small chunks, as from a socket."""

    def __init__(self, content: bytes, chunk_size: int = 1024):
        self.chunks = [
            content[i : i + chunk_size] for i in range(0, len(content), chunk_size)
        ]
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


def as_streamed(response: httpx.Response) -> httpx.Response:
    """Rebuild a pre-read httpx.Response so its body still has to be streamed."""
    return httpx.Response(
        response.status_code,
        headers=response.headers.multi_items(),
        stream=ChunkedBody(response.content),
    )


class RecordingTransport(httpx.MockTransport):
    """
    MockTransport that keeps every request it was asked to send.

    Upstream (non-DoH) responses are handed back with an unread body.
    """

    def __init__(self, doh_handler, upstream_handler=None):
        self.requests = []
        self.doh_requests = []
        self.upstream_requests = []

        def handler(request: httpx.Request):
            self.requests.append(request)
            if request.url.host == DOH_HOST:
                self.doh_requests.append(request)
                return doh_handler(request)
            self.upstream_requests.append(request)
            if upstream_handler is None:
                return as_streamed(httpx.Response(200, text="upstream"))
            return as_streamed(upstream_handler(request))

        super().__init__(handler)
