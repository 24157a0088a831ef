"""Tests for tracing helpers."""

import pytest
from opentelemetry.trace import StatusCode

from toolbox_agent.observability.tracing import create_span, get_tracer, record_exception


class TestTracing:
    """Tests for span helpers."""

    def test_get_tracer_without_setup(self) -> None:
        """A usable tracer is returned even before setup."""
        assert get_tracer() is not None

    def test_create_span_drops_none_attributes(self) -> None:
        """None attribute values are not passed to the tracer."""
        with create_span("toolbox.test", attributes={"instance.name": "svc", "image": None}) as span:
            assert span is not None

    def test_record_exception_marks_error(self) -> None:
        """Recording an exception sets error status on recording spans."""
        with create_span("toolbox.test") as span:
            record_exception(span, ValueError("boom"))
            if span.is_recording():
                assert span.status.status_code == StatusCode.ERROR

    def test_span_propagates_exceptions(self) -> None:
        """create_span does not swallow errors."""
        with pytest.raises(RuntimeError):
            with create_span("toolbox.test"):
                raise RuntimeError("boom")
