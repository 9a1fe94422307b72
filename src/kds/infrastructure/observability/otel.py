from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, Sampler, TraceIdRatioBased
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

_OTEL_CONFIGURED = False
_TRACER_NAME = "kds"
_EXCLUDED_URLS = "health/live,health/ready,metrics"
logger = logging.getLogger(__name__)


def sample_ratio() -> float:
    raw_value = os.getenv("KDS_TRACE_SAMPLE_RATIO", "1.0")
    try:
        ratio = float(raw_value)
    except ValueError:
        logger.warning("otel_sample_ratio_invalid", extra={"reason": raw_value})
        return 1.0
    return min(max(ratio, 0.0), 1.0)


def _build_sampler() -> Sampler:
    # Child spans follow the caller's decision; only root spans are sampled here.
    return ParentBased(root=TraceIdRatioBased(sample_ratio()))


def _build_provider() -> TracerProvider:
    service_name = os.getenv("OTEL_SERVICE_NAME", "kds-backend")
    provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        sampler=_build_sampler(),
    )

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return provider
    try:
        exporter = OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
        provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception:
        logger.exception("otel_exporter_setup_failed", extra={"reason": endpoint})
    return provider


def get_tracer() -> trace.Tracer:
    """Tracer for spans opened outside request handling (feed, store writes)."""
    return trace.get_tracer(_TRACER_NAME)


def configure_otel(app: FastAPI) -> None:
    global _OTEL_CONFIGURED
    if _OTEL_CONFIGURED:
        return

    provider = _build_provider()
    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=provider,
        excluded_urls=_EXCLUDED_URLS,
    )
    _OTEL_CONFIGURED = True
