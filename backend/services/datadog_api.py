"""
Direct HTTP reporting to Datadog (metrics v1 series, logs v2 intake).

Used alongside tracing because a serverless process can be frozen before the
tracer exports anything. Delivery is best-effort: failures are logged locally
and never raised.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Literal, Optional

import httpx

from config import Settings

logger = logging.getLogger(__name__)

MetricType = Literal["gauge", "count", "rate"]
LogLevel = Literal["info", "warn", "error"]

REQUEST_COUNT_METRIC = "poseshift.llm.request.count"
REQUEST_LATENCY_METRIC = "poseshift.llm.request.latency"
ERROR_COUNT_METRIC = "poseshift.llm.error.count"

METRICS_ACCEPTED = frozenset({202})
LOGS_ACCEPTED = frozenset({200, 202})


@dataclass(frozen=True)
class MetricSample:
    name: str
    value: float
    tags: tuple[str, ...] = ()
    type: MetricType = "gauge"
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def to_series_payload(self) -> dict[str, Any]:
        return {
            "series": [
                {
                    "metric": self.name,
                    "type": self.type,
                    "points": [[self.timestamp, self.value]],
                    "tags": list(self.tags),
                }
            ]
        }


class DatadogApiClient:
    """
    Minimal async client for the two intake endpoints.

    ``transport`` is passed straight to ``httpx.AsyncClient`` (tests use
    ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = settings.DD_API_KEY
        self._service = settings.DD_SERVICE
        self._env = settings.DD_ENV
        self._hostname = settings.DD_LOGS_HOSTNAME
        self._metrics_url = settings.DD_METRICS_URL
        self._logs_url = settings.DD_LOGS_URL
        self._timeout = settings.DD_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _base_tags(self) -> list[str]:
        return [f"service:{self._service}", f"env:{self._env}"]

    async def _post(self, url: str, payload: Any) -> Optional[httpx.Response]:
        headers = {"Content-Type": "application/json", "DD-API-KEY": self._api_key}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                return await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("[Datadog API] Request error: %s", e)
            return None

    async def send_metric(
        self,
        metric_name: str,
        value: float,
        tags: Optional[list[str]] = None,
        metric_type: MetricType = "gauge",
    ) -> bool:
        """Submit one point; returns True when Datadog accepted it."""
        if not self.enabled:
            logger.info("[Datadog API] No API key, skipping metric %s", metric_name)
            return False

        sample = MetricSample(
            name=metric_name,
            value=value,
            tags=tuple(self._base_tags() + list(tags or [])),
            type=metric_type,
        )
        response = await self._post(self._metrics_url, sample.to_series_payload())
        if response is None:
            return False
        if response.status_code in METRICS_ACCEPTED:
            logger.info("[Datadog API] Metric sent: %s = %s", metric_name, value)
            return True
        logger.error(
            "[Datadog API] Metric error: %s - %s", response.status_code, response.text
        )
        return False

    async def send_log(
        self,
        message: str,
        level: LogLevel = "info",
        extra: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Submit one structured log entry; returns True when accepted."""
        if not self.enabled:
            logger.info("[Datadog API] No API key, skipping log")
            return False

        # Core fields win over extras so "status" always carries the log level.
        entry: dict[str, Any] = {
            **(extra or {}),
            "ddsource": "python",
            "ddtags": ",".join(self._base_tags()),
            "hostname": self._hostname,
            "message": message,
            "service": self._service,
            "status": level,
        }
        response = await self._post(self._logs_url, [entry])
        if response is None:
            return False
        if response.status_code in LOGS_ACCEPTED:
            logger.info("[Datadog API] Log sent: %.50s...", message)
            return True
        logger.error(
            "[Datadog API] Log error: %s - %s", response.status_code, response.text
        )
        return False


async def _best_effort(label: str, report: Awaitable[bool]) -> bool:
    try:
        return await report
    except Exception as e:
        logger.error("[Datadog API] %s failed: %s", label, e)
        return False


class GenerationMetrics:
    """Latency/outcome tracker for one generation, reported via ``DatadogApiClient``."""

    def __init__(self, api: DatadogApiClient, operation_name: str, model_name: str):
        self._api = api
        self.operation_name = operation_name
        self.model_name = model_name
        self._start = time.monotonic()
        logger.info("[LLM Metrics] Starting: %s with %s", operation_name, model_name)

    @property
    def latency_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def _tags(self, *extra: str) -> list[str]:
        return [f"operation:{self.operation_name}", f"model:{self.model_name}", *extra]

    async def record_success(self) -> list[bool]:
        latency = self.latency_ms
        return await asyncio.gather(
            _best_effort(
                "request count",
                self._api.send_metric(
                    REQUEST_COUNT_METRIC, 1, self._tags("status:success"), "count"
                ),
            ),
            _best_effort(
                "latency",
                self._api.send_metric(REQUEST_LATENCY_METRIC, latency, self._tags(), "gauge"),
            ),
            _best_effort(
                "success log",
                self._api.send_log(
                    f"LLM generation completed: {self.operation_name}",
                    "info",
                    {
                        "operation": self.operation_name,
                        "model": self.model_name,
                        "latency_ms": latency,
                        "outcome": "success",
                    },
                ),
            ),
        )

    async def record_error(self, error_message: str) -> list[bool]:
        latency = self.latency_ms
        return await asyncio.gather(
            _best_effort(
                "request count",
                self._api.send_metric(
                    REQUEST_COUNT_METRIC, 1, self._tags("status:error"), "count"
                ),
            ),
            _best_effort(
                "error count",
                self._api.send_metric(ERROR_COUNT_METRIC, 1, self._tags(), "count"),
            ),
            _best_effort(
                "error log",
                self._api.send_log(
                    f"LLM generation failed: {self.operation_name} - {error_message}",
                    "error",
                    {
                        "operation": self.operation_name,
                        "model": self.model_name,
                        "latency_ms": latency,
                        "outcome": "error",
                        "error": error_message,
                    },
                ),
            ),
        )
