from typing import Optional, Sequence, Tuple

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from srv_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out the ASGI body spans emitted for every
    chunk of a relayed upstream body.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def parse_otlp_headers(raw: str) -> Optional[Tuple[Tuple[str, str], ...]]:
    """Turn ``key=value,key2=value2`` into the header pairs the OTLP exporter takes."""
    pairs = []
    for entry in raw.split(","):
        if "=" not in entry:
            continue
        key, val = entry.split("=", 1)
        key = key.strip()
        if key:
            pairs.append((key, val.strip()))
    return tuple(pairs) or None


def setup_tracing(app: FastAPI) -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=parse_otlp_headers(OTLP_HEADERS),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls="",
        server_request_hook=None,
        client_request_hook=None,
    )


def setup_metrics(app: FastAPI) -> Instrumentator:
    """
    Collect request metrics into the default Prometheus registry.

    The registry is not mounted on the app, every path belongs to the
    proxy; ``main`` serves it on METRICS_PORT instead.
    """
    instrumentator = Instrumentator()
    instrumentator.instrument(app)

    app_info = Info("srv_proxy_app", "Application Info")
    app_info.info({"app_name": SERVICE_NAME})
    return instrumentator


def setup_telemetry(app: FastAPI) -> None:
    setup_tracing(app)
    setup_metrics(app)
