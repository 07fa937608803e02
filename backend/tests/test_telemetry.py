"""
Tests for the tracer handle and span helpers.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from services.telemetry import TelemetryReporter
from services.tracing import TracingHandle


def spans_by_name(span_exporter):
    return {span.name: span for span in span_exporter.get_finished_spans()}


class TestTracingHandle:
    def test_resource_carries_service_identity(self, tracing, span_exporter):
        tracing.tracer.start_span("probe").end()

        [span] = span_exporter.get_finished_spans()
        assert span.resource.attributes["service.name"] == "poseshift-test"
        assert span.resource.attributes["deployment.environment"] == "test"

    def test_flush_returns_true(self, tracing):
        assert tracing.flush() is True

    def test_flush_failure_is_logged_not_raised(self):
        provider = MagicMock()
        provider.force_flush.side_effect = RuntimeError("exporter gone")
        handle = TracingHandle(provider)

        assert handle.flush(100) is False

    def test_flush_timeout_reported(self):
        provider = MagicMock()
        provider.force_flush.return_value = False
        handle = TracingHandle(provider, flush_timeout_millis=50)

        assert handle.flush() is False
        provider.force_flush.assert_called_once_with(50)

    def test_shutdown_is_idempotent(self):
        provider = MagicMock()
        handle = TracingHandle(provider)

        handle.shutdown()
        handle.shutdown()

        provider.shutdown.assert_called_once()
        assert handle.flush() is True

    def test_disabled_telemetry_creates_no_exporter(self, test_settings):
        handle = TracingHandle.init(test_settings)
        try:
            span = handle.tracer.start_span("not exported")
            span.end()
            assert handle.flush() is True
        finally:
            handle.shutdown()


class TestTelemetryReporterSpans:
    def test_pipeline_span_tags(self, telemetry, span_exporter):
        parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")
        telemetry.finish_pipeline_span(parent, True, 1234)

        span = spans_by_name(span_exporter)["llm.full_generation"]
        assert span.attributes["llm.provider"] == "google"
        assert span.attributes["llm.model"] == "gemini-pipeline"
        assert span.attributes["llm.request_type"] == "pose_transformation"
        assert span.attributes["llm.status"] == "success"
        assert span.attributes["llm.latency_ms"] == 1234

    def test_failed_pipeline_span(self, telemetry, span_exporter):
        parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")
        telemetry.finish_pipeline_span(parent, False, 10, "Pose analysis failed.")

        span = spans_by_name(span_exporter)["llm.full_generation"]
        assert span.attributes["llm.status"] == "error"
        assert span.attributes["error"] is True
        assert span.attributes["error.message"] == "Pose analysis failed."
        assert span.status.status_code == StatusCode.ERROR

    def test_step_span_is_child_of_parent(self, telemetry, span_exporter):
        parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")
        with telemetry.step_span(parent, "llm.pose_analysis", "gemini-2.5-flash", "text_generation"):
            pass
        telemetry.finish_pipeline_span(parent, True, 1)

        spans = spans_by_name(span_exporter)
        child = spans["llm.pose_analysis"]
        assert child.parent.span_id == spans["llm.full_generation"].context.span_id
        assert child.context.trace_id == spans["llm.full_generation"].context.trace_id
        assert child.attributes["llm.model"] == "gemini-2.5-flash"
        assert child.attributes["llm.operation"] == "text_generation"
        assert child.attributes["llm.status"] == "success"

    def test_step_span_finishes_and_reraises_on_error(self, telemetry, span_exporter):
        parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")
        error = ValueError("no image")

        with pytest.raises(ValueError) as exc_info:
            with telemetry.step_span(parent, "llm.image_generation", "img-model", "image_generation"):
                raise error

        assert exc_info.value is error
        child = spans_by_name(span_exporter)["llm.image_generation"]
        assert child.end_time is not None
        assert child.attributes["llm.status"] == "error"
        assert child.attributes["error.message"] == "no image"
        assert any(event.name == "exception" for event in child.events)

    def test_step_span_tags_cancellation(self, telemetry, span_exporter):
        parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")

        with pytest.raises(asyncio.CancelledError):
            with telemetry.step_span(parent, "llm.pose_analysis", "gemini-2.5-flash", "text_generation"):
                raise asyncio.CancelledError()

        child = spans_by_name(span_exporter)["llm.pose_analysis"]
        assert child.end_time is not None
        assert child.attributes["llm.status"] == "error"
        assert child.attributes["error.message"] == "CancelledError"
        assert child.status.status_code == StatusCode.ERROR

    def test_unstartable_spans_fall_back_to_non_recording(self, telemetry, tracing, span_exporter):
        with patch.object(tracing.tracer, "start_span", side_effect=RuntimeError("tracer broken")):
            parent = telemetry.start_pipeline_span("full_generation", "gemini-pipeline")
            with telemetry.step_span(parent, "llm.pose_analysis", "gemini-2.5-flash", "text_generation") as span:
                pass
            telemetry.finish_pipeline_span(parent, True, 1)

        assert parent is trace.INVALID_SPAN
        assert span is trace.INVALID_SPAN
        assert span_exporter.get_finished_spans() == ()

    def test_finish_pipeline_span_survives_broken_span(self, telemetry):
        span = MagicMock()
        span.set_attribute.side_effect = RuntimeError("span closed")
        span.end.side_effect = RuntimeError("already ended")

        telemetry.finish_pipeline_span(span, True, 5)

        span.end.assert_called_once()

    def test_record_generation_logs_summary(self, caplog):
        with caplog.at_level("INFO", logger="services.telemetry"):
            TelemetryReporter.record_generation(False, 42, "boom")

        assert "Generation error, latency: 42ms, error: boom" in caplog.text
