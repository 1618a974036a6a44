from uuid import uuid4

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from zvest_api.core.exceptions import AlreadyUsed, StorageError
from zvest_api.core.settings import settings
from zvest_api.observability.tracing import build_resource, mark_outcome, redemption_span


@pytest.fixture
def span_exporter():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider, exporter
    provider.shutdown()


def test_resource_carries_redemption_settings():
    resource = build_resource(service_name="zvest-api", service_version="1.2.3", environment="test")

    assert resource.attributes["service.name"] == "zvest-api"
    assert resource.attributes["zvest.redemption.validity_seconds"] == settings.redemption_validity_seconds
    assert resource.attributes["zvest.staff_locale"] == settings.default_staff_locale


def test_successful_span_records_identifiers_and_outcome(span_exporter):
    provider, exporter = span_exporter
    shop_id = uuid4()

    with redemption_span("validate", tracer_provider=provider, shop_id=shop_id, coupon_id=None) as span:
        mark_outcome(span, "success")

    (finished,) = exporter.get_finished_spans()
    assert finished.name == "redemption.validate"
    assert finished.attributes["zvest.shop_id"] == str(shop_id)
    assert "zvest.coupon_id" not in finished.attributes
    assert finished.attributes["zvest.redemption.outcome"] == "success"


def test_business_rejection_is_an_outcome_not_a_span_error(span_exporter):
    provider, exporter = span_exporter

    with pytest.raises(AlreadyUsed):
        with redemption_span("validate", tracer_provider=provider):
            raise AlreadyUsed()

    (finished,) = exporter.get_finished_spans()
    assert finished.attributes["zvest.redemption.outcome"] == "already_used"
    assert finished.status.status_code is StatusCode.UNSET
    assert len(finished.events) == 0


def test_storage_failure_marks_span_as_failed(span_exporter):
    provider, exporter = span_exporter

    with pytest.raises(StorageError):
        with redemption_span("activate", tracer_provider=provider):
            raise StorageError()

    (finished,) = exporter.get_finished_spans()
    assert finished.attributes["zvest.redemption.outcome"] == "storage_error"
    assert finished.status.status_code is StatusCode.ERROR
    assert finished.events[0].name == "exception"
