"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .config import settings

SERVICE_NAME = "reservation-service"

# Prometheus metrics
REGISTRY = CollectorRegistry()

WEBHOOK_EVENTS = Counter(
    'gateway_webhook_events_total',
    'Verified gateway webhook events by type and outcome',
    ['event_type', 'outcome'],
    registry=REGISTRY
)

WEBHOOK_REJECTED = Counter(
    'gateway_webhook_rejected_total',
    'Webhook deliveries rejected before parsing',
    registry=REGISTRY
)

RESERVATIONS_MATERIALIZED = Counter(
    'reservations_materialized_total',
    'Reservations created from successful payments',
    ['category'],
    registry=REGISTRY
)

DUPLICATE_DELIVERIES = Counter(
    'reservation_duplicate_deliveries_total',
    'Payment events that resolved to an existing reservation',
    registry=REGISTRY
)

MATERIALIZATION_FAILURES = Counter(
    'reservation_materialization_failures_total',
    'Charged payments that could not be turned into reservations',
    ['code'],
    registry=REGISTRY
)

CART_CHECKOUTS = Counter(
    'cart_checkouts_total',
    'Cart batches processed by outcome',
    ['outcome'],
    registry=REGISTRY
)

LEDGER_PAYMENTS = Counter(
    'ledger_payments_recorded_total',
    'Split-payment ledger entries recorded',
    ['method', 'status'],
    registry=REGISTRY
)

REFUNDS = Counter(
    'reservation_refunds_total',
    'Refund attempts by outcome',
    ['outcome'],
    registry=REGISTRY
)

NOTIFICATION_QUEUE_DEPTH = Gauge(
    'holder_notification_queue_depth',
    'Holder notifications waiting for delivery',
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    trace.set_tracer_provider(TracerProvider(resource=_resource()))

    # Export only when an OTLP collector is configured
    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        trace.get_tracer_provider().add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(app_name)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(app_name)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for reconciliation metrics."""

    @staticmethod
    def record_webhook(event_type: str, outcome: str):
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_webhook_rejected():
        WEBHOOK_REJECTED.inc()

    @staticmethod
    def record_materialized(category: str):
        RESERVATIONS_MATERIALIZED.labels(category=category).inc()

    @staticmethod
    def record_duplicate_delivery():
        DUPLICATE_DELIVERIES.inc()

    @staticmethod
    def record_materialization_failure(code: str):
        MATERIALIZATION_FAILURES.labels(code=code).inc()

    @staticmethod
    def record_cart_checkout(outcome: str):
        CART_CHECKOUTS.labels(outcome=outcome).inc()

    @staticmethod
    def record_ledger_payment(method: str, status: str):
        LEDGER_PAYMENTS.labels(method=method, status=status).inc()

    @staticmethod
    def record_refund(outcome: str):
        REFUNDS.labels(outcome=outcome).inc()

    @staticmethod
    def set_notification_queue_depth(depth: int):
        NOTIFICATION_QUEUE_DEPTH.set(depth)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, logger):
        self.logger = logger

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def with_context(self, **kwargs) -> "StructuredLogger":
        """Return a logger with extra bound context."""
        return StructuredLogger(self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(structlog.get_logger(name))
