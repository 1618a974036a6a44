"""OpenTelemetry wiring for the API process and spans around redemption lifecycle calls."""

from __future__ import annotations

import os
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator
from uuid import UUID

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.trace import Span, Status, StatusCode

from zvest_api.core.exceptions import LedgerError
from zvest_api.core.settings import settings

REDEMPTION_TRACER = "zvest_api.redemptions"
ATTRIBUTE_PREFIX = "zvest."

_CONFIGURED = False


def _parse_headers(raw: str | None) -> Dict[str, str] | None:
    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers or None


def _build_exporter() -> SpanExporter:
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        return OTLPSpanExporter(
            endpoint=endpoint,
            headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")),
        )
    return ConsoleSpanExporter()


def build_resource(*, service_name: str, service_version: str, environment: str) -> Resource:
    """Service identity plus the redemption settings a trace reader needs to interpret spans."""

    return Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
            f"{ATTRIBUTE_PREFIX}redemption.validity_seconds": settings.redemption_validity_seconds,
            f"{ATTRIBUTE_PREFIX}redemption.code_max_attempts": settings.redemption_code_max_attempts,
            f"{ATTRIBUTE_PREFIX}staff_locale": settings.default_staff_locale,
        }
    )


def _attribute_value(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


@contextmanager
def redemption_span(
    operation: str,
    *,
    tracer_provider: TracerProvider | None = None,
    **attributes: Any,
) -> Iterator[Span]:
    """Open ``redemption.<operation>`` with ``zvest.*`` attributes; ``None`` values are skipped.

    A :class:`LedgerError` leaving the block sets the outcome attribute to its error code.
    Only server-side failures (5xx kinds and anything unexpected) mark the span as failed.
    """

    tracer = trace.get_tracer(REDEMPTION_TRACER, tracer_provider=tracer_provider)
    with tracer.start_as_current_span(
        f"redemption.{operation}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"{ATTRIBUTE_PREFIX}{key}", _attribute_value(value))
        try:
            yield span
        except LedgerError as exc:
            mark_outcome(span, exc.error_code.value)
            if exc.status_code >= 500:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.message))
            raise
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


def mark_outcome(span: Span, outcome: str) -> None:
    span.set_attribute(f"{ATTRIBUTE_PREFIX}redemption.outcome", outcome)


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
) -> None:
    """Install the tracer provider once per process and instrument ``app``."""

    global _CONFIGURED

    if not _CONFIGURED:
        tracer_provider = TracerProvider(
            resource=build_resource(
                service_name=service_name,
                service_version=service_version,
                environment=environment,
            )
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(_build_exporter()))
        trace.set_tracer_provider(tracer_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)
        _CONFIGURED = True
    else:
        tracer_provider = trace.get_tracer_provider()

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)


__all__ = ["build_resource", "configure_tracing", "mark_outcome", "redemption_span"]
