"""Optional OpenTelemetry tracing for deliberations.

Spans are exported over OTLP only when OTEL_EXPORTER_OTLP_ENDPOINT is set and
the ``telemetry`` extra is installed. In every other case ``trace_span``
yields a null span and the helpers below do nothing, so callers never have to
check whether tracing is on.
"""

import logging
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "quorum")

_tracer: Any = None


class _NullSpan:
    """Stand-in yielded by trace_span while tracing is off."""

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def record_exception(self, exception: BaseException) -> None:
        pass


_NULL_SPAN = _NullSpan()


def is_telemetry_enabled() -> bool:
    return _tracer is not None


def _create_tracer(endpoint: str) -> Any:
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from . import __version__

    provider = TracerProvider(resource=Resource.create({
        "service.name": OTEL_SERVICE_NAME,
        "service.version": __version__,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return trace.get_tracer("quorum")


def setup_telemetry(endpoint: str | None = None) -> bool:
    """Configure span export for this process.

    Args:
        endpoint: OTLP collector address. Defaults to OTEL_EXPORTER_OTLP_ENDPOINT.

    Returns:
        Whether spans will be exported.
    """
    global _tracer

    endpoint = endpoint or OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        logger.debug("Tracing off: no OTLP endpoint configured")
        return False

    try:
        _tracer = _create_tracer(endpoint)
    except ImportError as e:
        logger.warning("Tracing requested but OpenTelemetry is not installed: %s", e)
        return False
    except Exception as e:
        logger.warning("Could not start tracing against %s: %s", endpoint, e)
        return False

    logger.info("Exporting deliberation traces to %s as %s", endpoint, OTEL_SERVICE_NAME)
    return True


def instrument_httpx() -> None:
    """Add client spans to every OpenRouter request made through httpx."""
    if _tracer is None:
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        logger.warning("opentelemetry-instrumentation-httpx missing; HTTP calls will not be traced")
        return

    try:
        HTTPXClientInstrumentor().instrument()
    except Exception as e:
        logger.warning("httpx instrumentation failed: %s", e)


@contextmanager
def trace_span(name: str, attributes: Mapping[str, Any] | None = None) -> Iterator[Any]:
    """Run the enclosed block inside a span named ``name``."""
    if _tracer is None:
        yield _NULL_SPAN
        return

    with _tracer.start_as_current_span(name, attributes=dict(attributes or {})) as span:
        yield span


def annotate_span(span: Any, attributes: Mapping[str, Any]) -> None:
    if _tracer is not None:
        span.set_attributes(dict(attributes))


def record_span_error(span: Any, error: BaseException) -> None:
    """Attach ``error`` to ``span`` and mark it failed."""
    if _tracer is None:
        return
    from opentelemetry.trace import Status, StatusCode

    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))
