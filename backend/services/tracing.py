"""
Process-scoped OpenTelemetry tracer.

The handle is created once per process (see ``main.lifespan``) and passed
explicitly to the code that emits spans. The global OpenTelemetry provider is
left alone so tests and multiple apps in one process do not share state.

Serverless hosts may freeze the process as soon as a response is written, so
request handlers must call ``flush()`` before returning.
"""

import logging
from typing import Optional

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Tracer

from config import Settings

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "poseshift.pipeline"


class TracingHandle:
    def __init__(self, provider: TracerProvider, flush_timeout_millis: int = 2000):
        self._provider = provider
        self._flush_timeout_millis = flush_timeout_millis
        self._shut_down = False
        self.tracer: Tracer = provider.get_tracer(INSTRUMENTATION_NAME)

    @classmethod
    def init(
        cls,
        settings: Settings,
        span_processor: Optional[SpanProcessor] = None,
    ) -> "TracingHandle":
        """
        Build the tracer provider for this process.

        ``span_processor`` overrides the OTLP exporter (tests pass a
        ``SimpleSpanProcessor`` over an in-memory exporter). With telemetry
        disabled and no override, spans are created but never exported.
        """
        resource = Resource.create(
            {
                "service.name": settings.DD_SERVICE,
                "service.version": settings.DD_VERSION,
                "deployment.environment": settings.DD_ENV,
            }
        )
        provider = TracerProvider(resource=resource)

        if span_processor is not None:
            provider.add_span_processor(span_processor)
        elif settings.TELEMETRY_ENABLED:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTLP_TRACES_ENDPOINT))
            )
            logger.info(
                "Tracer initialized: service=%s env=%s endpoint=%s",
                settings.DD_SERVICE,
                settings.DD_ENV,
                settings.OTLP_TRACES_ENDPOINT,
            )
        else:
            logger.info("Telemetry disabled; spans will not be exported")

        return cls(provider, flush_timeout_millis=settings.TRACE_FLUSH_TIMEOUT_MS)

    def flush(self, timeout_millis: Optional[int] = None) -> bool:
        """Block until pending spans are exported. Never raises."""
        if self._shut_down:
            return True
        timeout = timeout_millis if timeout_millis is not None else self._flush_timeout_millis
        try:
            flushed = self._provider.force_flush(timeout)
        except Exception as e:
            logger.warning("Trace flush failed: %s", e)
            return False
        if not flushed:
            logger.warning("Trace flush did not complete within %dms", timeout)
        return flushed

    def shutdown(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        try:
            self._provider.shutdown()
        except Exception as e:
            logger.warning("Tracer shutdown failed: %s", e)
        else:
            logger.info("Tracer shut down")
