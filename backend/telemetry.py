# telemetry.py — Optional OpenTelemetry tracing for the Kanban API
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint, or without the SDK installed, nothing is instrumented.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("kanban.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "kanban-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def setup_telemetry(app=None, endpoint: str = None):
    """Register a tracer provider and instrument FastAPI and SQLAlchemy.

    Returns the provider, or None when tracing stays disabled.
    """
    endpoint = endpoint if endpoint is not None else OTLP_ENDPOINT
    if not endpoint:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None

    try:
        resource = Resource.create({
            RES_SVC_NAME: SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": ENVIRONMENT,
        })
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
        trace.set_tracer_provider(provider)

        if app is not None:
            try:
                from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
                FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
                logger.info("FastAPI instrumented with OpenTelemetry")
            except ImportError:
                logger.warning("opentelemetry-instrumentation-fastapi not installed")

        try:
            from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
            SQLAlchemyInstrumentor().instrument(tracer_provider=provider)
            logger.info("SQLAlchemy instrumented with OpenTelemetry")
        except ImportError:
            logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")

        logger.info(f"OpenTelemetry initialised -> {endpoint}")
        return provider
    except Exception as e:
        logger.error(f"OpenTelemetry setup failed: {e}")
        return None


def get_tracer(name: str = "kanban"):
    """Tracer from the global provider, or None if the API package is absent"""
    try:
        from opentelemetry import trace
        return trace.get_tracer(name, SERVICE_VERSION)
    except ImportError:
        return None


@contextmanager
def span(name: str, **attributes):
    """Run a block inside a span when tracing is available"""
    tracer = get_tracer()
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as current:
        for key, value in attributes.items():
            current.set_attribute(key, value)
        yield current
