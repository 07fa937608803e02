"""
Generation telemetry: tracer spans plus the direct Datadog fallback.

Nothing in here raises into the pipeline. Span bookkeeping problems are
logged and ignored; HTTP delivery problems are handled in ``datadog_api``.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from services.datadog_api import DatadogApiClient, GenerationMetrics
from services.tracing import TracingHandle

logger = logging.getLogger(__name__)

LLM_PROVIDER = "google"
REQUEST_TYPE = "pose_transformation"


def _safe_end(span: Span) -> None:
    try:
        span.end()
    except Exception as e:
        logger.warning("Failed to finish span: %s", e)


def _tag_error(span: Span, error: BaseException) -> None:
    message = str(error) or type(error).__name__
    span.set_attribute("llm.status", "error")
    span.set_attribute("error", True)
    span.set_attribute("error.message", message)
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, message))


class TelemetryReporter:
    def __init__(self, tracing: TracingHandle, api: DatadogApiClient):
        self._tracing = tracing
        self._api = api

    def track(self, operation_name: str, model_name: str) -> GenerationMetrics:
        """Start a direct-report tracker; its clock starts now."""
        return GenerationMetrics(self._api, operation_name, model_name)

    def start_pipeline_span(self, operation_name: str, model_name: str) -> Span:
        """Parent span for one generation; a non-recording span if the tracer fails."""
        logger.debug("Creating span: llm.%s, model: %s", operation_name, model_name)
        try:
            return self._tracing.tracer.start_span(
                f"llm.{operation_name}",
                attributes={
                    "llm.provider": LLM_PROVIDER,
                    "llm.model": model_name,
                    "llm.request_type": REQUEST_TYPE,
                },
            )
        except Exception as e:
            logger.warning("Failed to start span llm.%s: %s", operation_name, e)
            return trace.INVALID_SPAN

    @contextmanager
    def step_span(
        self, parent: Span, name: str, model_name: str, operation: str
    ) -> Iterator[Span]:
        """
        Child span for one pipeline step.

        Tagged ``llm.status`` success or error (cancellation included) and
        always ended; exceptions from the step propagate unchanged. Tracer
        failures are logged and never reach the step.
        """
        try:
            span = self._tracing.tracer.start_span(
                name,
                context=trace.set_span_in_context(parent),
                attributes={"llm.model": model_name, "llm.operation": operation},
            )
        except Exception as e:
            logger.warning("Failed to start span %s: %s", name, e)
            span = trace.INVALID_SPAN
        try:
            yield span
        except BaseException as e:
            try:
                _tag_error(span, e)
            except Exception as tag_error:
                logger.warning("Failed to tag span %s: %s", name, tag_error)
            raise
        else:
            try:
                span.set_attribute("llm.status", "success")
            except Exception as tag_error:
                logger.warning("Failed to tag span %s: %s", name, tag_error)
        finally:
            _safe_end(span)

    def finish_pipeline_span(
        self,
        span: Span,
        success: bool,
        latency_ms: int,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            span.set_attribute("llm.latency_ms", latency_ms)
            if success:
                span.set_attribute("llm.status", "success")
            else:
                message = error_message or "Unknown error"
                span.set_attribute("llm.status", "error")
                span.set_attribute("error", True)
                span.set_attribute("error.message", message)
                span.set_status(Status(StatusCode.ERROR, message))
        except Exception as e:
            logger.warning("Failed to tag pipeline span: %s", e)
        finally:
            _safe_end(span)

    @staticmethod
    def record_generation(
        success: bool, latency_ms: int, error_message: Optional[str] = None
    ) -> None:
        status = "success" if success else "error"
        if error_message:
            logger.info(
                "Generation %s, latency: %dms, error: %s", status, latency_ms, error_message
            )
        else:
            logger.info("Generation %s, latency: %dms", status, latency_ms)
