import logging
from contextlib import asynccontextmanager
from typing import Mapping, Optional, Sequence, Tuple

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from frontdoor.router import RequestRouter
from frontdoor.static.route import StaticSite
from frontdoor.upstream import UpstreamTarget
from frontdoor.vars import (
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_PREFIX,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")

# ASGI events emitted once per streamed chunk; proxied bodies produce lots of them
NOISY_ASGI_EVENTS = ("http.response.body",)


class FilteringSpanExporter(SpanExporter):
    """Drops per-chunk ASGI spans before handing the batch to the real exporter."""

    def __init__(self, exporter: SpanExporter, dropped_events: Tuple[str, ...] = NOISY_ASGI_EVENTS):
        self.exporter = exporter
        self.dropped_events = dropped_events

    def _keep(self, span: ReadableSpan) -> bool:
        attributes = span.attributes or {}
        return attributes.get("asgi.event.type") not in self.dropped_events

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if self._keep(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(app: FastAPI, endpoint: str, headers: str = "") -> None:
    """Export spans over OTLP/gRPC and instrument the app's request handling."""
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    otlp_exporter = OTLPSpanExporter(
        endpoint=endpoint,
        headers=(headers.split(",") if headers else None),
    )
    provider.add_span_processor(BatchSpanProcessor(FilteringSpanExporter(otlp_exporter)))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    logger.info(f"Exporting traces to {endpoint}")


def configure_metrics(app: FastAPI, metrics_path: str) -> CollectorRegistry:
    """
    Instrument request metrics into a registry owned by this app.

    The scrape endpoint is only mounted when ``metrics_path`` is set; it must
    not start with the proxy prefix or it would never be reached.
    """
    registry = CollectorRegistry()
    instrumentator = Instrumentator(registry=registry)
    instrumentator.instrument(app)
    if metrics_path:
        instrumentator.expose(app, endpoint=metrics_path, include_in_schema=False)
        logger.info(f"Serving metrics on {metrics_path}")

    app_info = Info("fastapi_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME})
    return registry


def create_app(
    *,
    build_dir: str,
    entrypoints: Tuple[str, ...],
    upstream: UpstreamTarget,
    header_overrides: Mapping[str, str],
    proxy_prefix: str = PROXY_PREFIX,
    proxy_timeout: float = 30.0,
    push_timeout: float = 1.0,
    metrics_path: str = METRICS_PATH,
    otlp_endpoint: Optional[str] = OTLP_ENDPOINT,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the front door application.

    ``client`` is the connection pool used for the upstream; one is created
    with ``proxy_timeout`` when not given. It is closed on app shutdown.
    """
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(proxy_timeout),
            follow_redirects=False,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await client.aclose()

    # Docs routes are disabled: every path belongs to the site or the proxy
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

    site = StaticSite(build_dir, tuple(entrypoints), push_timeout)
    request_router = RequestRouter(
        site=site,
        upstream=upstream,
        client=client,
        header_overrides=header_overrides,
        proxy_prefix=proxy_prefix,
    )
    app.state.request_router = request_router
    app.state.metrics_registry = configure_metrics(app, metrics_path)

    if otlp_endpoint:
        configure_tracing(app, otlp_endpoint, OTLP_HEADERS)

    # Registered last so the metrics endpoint, if any, wins over the catch-all
    app.include_router(request_router.as_api_router())
    return app
