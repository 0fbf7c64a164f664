from __future__ import annotations

from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from loyalty_api.core.settings import Settings

_CONFIGURED = False


def _parse_headers(raw: str | None) -> Dict[str, str] | None:
    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers or None


def _build_exporter(settings: Settings) -> SpanExporter | None:
    if not settings.otel_exporter_endpoint:
        return None
    return OTLPSpanExporter(
        endpoint=settings.otel_exporter_endpoint,
        headers=_parse_headers(settings.otel_exporter_headers),
    )


def configure_tracing(
    app: FastAPI,
    *,
    settings: Settings,
    service_name: str,
    service_version: str,
) -> None:
    """Install a tracer provider once per process and instrument the app.

    Spans are only exported when an OTLP endpoint is configured; without one the
    provider still produces trace ids so log lines stay correlated.
    """

    global _CONFIGURED

    if not _CONFIGURED:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": service_version,
                "deployment.environment": settings.environment,
            }
        )
        tracer_provider = TracerProvider(resource=resource)
        exporter = _build_exporter(settings)
        if exporter is not None:
            tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(tracer_provider)
        _CONFIGURED = True

    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())


tracer = trace.get_tracer("loyalty_api")


__all__ = ["configure_tracing", "tracer"]
