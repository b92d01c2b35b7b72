from unittest.mock import Mock

import httpx
import pytest
from fastapi.testclient import TestClient

import srv_proxy.server as server_module
from srv_proxy.server import create_app
from srv_proxy.vars import ProxyConfig


@pytest.fixture
def proxy_client():
    """Start the app around a transport and yield a TestClient for it."""
    clients = []

    def _create(transport, config=None, base_url="https://testserver", **kwargs):
        app = create_app(config or ProxyConfig(host="example.com"), transport)
        client = TestClient(app, base_url=base_url, **kwargs)
        client.__enter__()
        clients.append(client)
        return client

    yield _create

    for client in clients:
        client.__exit__(None, None, None)


def echo_upstream(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/plain", "x-upstream-method": request.method},
        content=b"hello from " + request.url.host.encode(),
    )


def test_resolved_request_is_mirrored_upstream(srv_answer_transport, proxy_client):
    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], echo_upstream)
    client = proxy_client(transport)

    response = client.put(
        "/some/path?q=1",
        content=b"payload",
        headers={"x-custom": "value", "accept-encoding": "identity"},
    )

    assert response.status_code == 200
    assert response.text == "hello from upstream.example.com"
    assert response.headers["x-upstream-method"] == "PUT"

    doh = transport.doh_requests[0]
    assert doh.url.params["name"] == "_https._tcp.example.com"
    assert doh.url.params["type"] == "SRV"

    sent = transport.upstream_requests[0]
    assert sent.url.host == "upstream.example.com"
    assert sent.url.port == 8443
    assert sent.url.path == "/some/path"
    assert sent.url.params["q"] == "1"
    assert sent.method == "PUT"
    assert sent.headers["x-custom"] == "value"
    assert sent.content == b"payload"


def test_upstream_status_and_headers_returned_verbatim(srv_answer_transport, proxy_client):
    def upstream(request):
        return httpx.Response(
            418,
            headers=[("x-a", "1"), ("set-cookie", "a=1"), ("set-cookie", "b=2")],
            content=b"teapot",
        )

    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], upstream)
    client = proxy_client(transport)

    response = client.get("/brew")

    assert response.status_code == 418
    assert response.content == b"teapot"
    assert response.headers["x-a"] == "1"
    assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]


def test_http_inbound_uses_http_srv_record(srv_answer_transport, proxy_client):
    transport = srv_answer_transport(["10 5 8080 plain.example.com"], echo_upstream)
    client = proxy_client(transport, base_url="http://testserver")

    response = client.get("/")

    assert response.status_code == 200
    assert transport.doh_requests[0].url.params["name"] == "_http._tcp.example.com"
    assert transport.upstream_requests[0].url.scheme == "http"
    assert transport.upstream_requests[0].url.port == 8080


def test_empty_answer_returns_service_not_found(srv_answer_transport, proxy_client):
    transport = srv_answer_transport([])
    client = proxy_client(transport)

    response = client.get("/anything")

    assert response.status_code == 404
    assert response.text == "Service not found"
    assert response.headers["content-type"].startswith("text/plain")
    assert transport.upstream_requests == []


def test_doh_timeout_returns_service_not_found(recording_transport, proxy_client):
    def doh(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    transport = recording_transport(doh)
    client = proxy_client(transport)

    response = client.post("/anything", content=b"x")

    assert response.status_code == 404
    assert response.text == "Service not found"
    assert len(transport.doh_requests) == 1
    assert transport.upstream_requests == []


def test_repeated_requests_resolve_identically(srv_answer_transport, proxy_client):
    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], echo_upstream)
    client = proxy_client(transport)

    for _ in range(3):
        assert client.get("/same").status_code == 200

    # Each request resolves on its own, nothing is cached in between
    assert len(transport.doh_requests) == 3
    targets = {(r.url.host, r.url.port) for r in transport.upstream_requests}
    assert targets == {("upstream.example.com", 8443)}


def test_upstream_failure_reaches_framework_error_path(srv_answer_transport, proxy_client):
    def upstream(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], upstream)
    client = proxy_client(transport, raise_server_exceptions=False)

    response = client.get("/broken")

    assert response.status_code == 500
    assert response.text != "Service not found"


def test_etag_added_and_honoured(srv_answer_transport, proxy_client):
    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], echo_upstream)
    client = proxy_client(transport)

    first = client.get("/etag")
    etag = first.headers["etag"]
    assert etag.startswith('W/"')

    second = client.get("/etag", headers={"if-none-match": etag})
    assert second.status_code == 304
    assert second.content == b""
    assert second.headers["etag"] == etag


def test_not_found_response_has_no_etag(srv_answer_transport, proxy_client):
    client = proxy_client(srv_answer_transport([]))

    response = client.get("/missing")

    assert response.status_code == 404
    assert "etag" not in response.headers


def test_large_bodies_are_compressed(srv_answer_transport, proxy_client):
    payload = b"a" * 4096

    def upstream(request):
        return httpx.Response(200, headers={"content-type": "text/plain"}, content=payload)

    transport = srv_answer_transport(["10 5 8443 upstream.example.com"], upstream)
    client = proxy_client(transport)

    response = client.get("/big", headers={"accept-encoding": "gzip"})

    assert response.status_code == 200
    assert response.headers["content-encoding"] == "gzip"
    assert response.content == payload



class TestMain:
    @pytest.fixture
    def run(self, monkeypatch):
        run = Mock()
        monkeypatch.setattr("srv_proxy.server.uvicorn.run", run)
        monkeypatch.setattr("srv_proxy.server.setup_telemetry", Mock())
        monkeypatch.setattr("srv_proxy.server.METRICS_PORT", "")
        return run

    def test_importing_server_does_not_read_config(self):
        assert not hasattr(server_module, "app")
        assert not hasattr(server_module, "config")

    def test_valid_environment_starts_uvicorn(self, monkeypatch, run):
        monkeypatch.setattr("srv_proxy.vars.HOST", "example.com")
        monkeypatch.setattr("srv_proxy.vars.PORT", "8080")

        server_module.main()

        run.assert_called_once()
        app = run.call_args.args[0]
        assert app.state.config.host == "example.com"
        assert run.call_args.kwargs["port"] == 8080
        assert run.call_args.kwargs["host"] == "0.0.0.0"

    @pytest.mark.parametrize(
        "name,value",
        [("PORT", "abc"), ("PORT", "70000"), ("HOST", "https://example.com")],
    )
    def test_invalid_environment_exits_with_message(
        self, monkeypatch, capsys, run, name, value
    ):
        monkeypatch.setattr(f"srv_proxy.vars.{name}", value)

        with pytest.raises(SystemExit) as exc_info:
            server_module.main()

        assert exc_info.value.code == 1
        run.assert_not_called()
        err = capsys.readouterr().err
        assert err.startswith("Error: invalid configuration:")
        assert f"{name}:" in err
        assert "Traceback" not in err

    def test_invalid_metrics_port_exits_with_message(self, monkeypatch, capsys, run):
        monkeypatch.setattr("srv_proxy.server.METRICS_PORT", "metrics")

        with pytest.raises(SystemExit):
            server_module.main()

        run.assert_not_called()
        assert "METRICS_PORT" in capsys.readouterr().err
