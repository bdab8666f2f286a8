import logging
import os

from opentelemetry import trace

logger = logging.getLogger(__name__)

_TRACER_NAME = "conductor_omnibridge"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer.

    Without a configured TracerProvider the API hands back no-op spans, so
    callers never check whether tracing is on.
    """
    return trace.get_tracer(name or _TRACER_NAME)


def _instrument_fastapi(app) -> None:
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app)


def _instrument_sqlalchemy(app) -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from app.db import get_engine

    SQLAlchemyInstrumentor().instrument(engine=get_engine())


def _instrument_celery(app) -> None:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()


def _instrument_httpx(app) -> None:
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


def _instrument_logging(app) -> None:
    from opentelemetry.instrumentation.logging import LoggingInstrumentor

    LoggingInstrumentor().instrument(set_logging_format=False)


_INSTRUMENTORS = {
    "FastAPI": _instrument_fastapi,
    "SQLAlchemy": _instrument_sqlalchemy,
    "Celery": _instrument_celery,
    "httpx": _instrument_httpx,
    "logging": _instrument_logging,
}


def setup_otel(app) -> bool:
    """Configure OpenTelemetry tracing when ``OTEL_ENABLED`` is set.

    Instrumentor packages live in the ``otel`` extra; a missing one is
    logged and skipped. Returns whether a tracer provider was installed.
    """
    enabled = os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}
    if not enabled:
        return False

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    service_name = os.getenv("OTEL_SERVICE_NAME", "conductor-omnibridge")
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    trace.set_tracer_provider(provider)
    exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces") if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))

    for label, instrument in _INSTRUMENTORS.items():
        try:
            instrument(app)
        except ImportError:
            logger.warning("OTel: %s instrumentation unavailable", label)
            continue
        logger.info("OTel: %s instrumented", label)

    logger.info("OpenTelemetry tracing enabled (service=%s)", service_name)
    return True
