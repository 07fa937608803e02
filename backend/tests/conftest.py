"""
Test fixtures and configuration for pytest.
"""

import base64
import json
import os
import sys
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from schemas.generate import ImagePayload
from services.datadog_api import DatadogApiClient
from services.gemini_pose_client import GeminiPoseClient
from services.pose_pipeline import PosePipeline
from services.telemetry import TelemetryReporter
from services.tracing import TracingHandle

POSE_JSON = {
    "head": {"description": "Head tilted slightly left, gaze forward, soft smile."},
    "torso": {"description": "Upright torso with a slight twist to the right."},
    "leftArm": {"description": "Left arm raised overhead, elbow straight."},
    "rightArm": {"description": "Right hand resting on the hip."},
    "leftLeg": {"description": "Left leg straight, bearing most of the weight."},
    "rightLeg": {"description": "Right knee bent, foot placed against the left calf."},
    "overall": {"description": "Balanced standing pose, weight on the left leg."},
}

GENERATED_IMAGE_BYTES = b"\x89PNG\r\n\x1a\ngenerated-image"


def make_image_base64(width: int = 128, height: int = 128, fmt: str = "PNG") -> str:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(120, 160, 200)).save(buffer, format=fmt)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def text_response(text):
    return SimpleNamespace(text=text, candidates=None)


def image_response(*parts):
    return SimpleNamespace(
        text=None,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))],
    )


def inline_part(data):
    return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"))


def text_part(text):
    return SimpleNamespace(inline_data=None, text=text)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        GEMINI_API_KEY="test-gemini-key",
        DD_API_KEY="test-dd-key",
        DD_SITE="datadoghq.test",
        DD_SERVICE="poseshift-test",
        DD_ENV="test",
        TELEMETRY_ENABLED=False,
    )


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracing(test_settings, span_exporter):
    handle = TracingHandle.init(test_settings, span_processor=SimpleSpanProcessor(span_exporter))
    yield handle
    handle.shutdown()


class DatadogRecorder:
    """MockTransport handler that records intake requests."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.metrics_status = 202
        self.logs_status = 202
        self.raise_error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if request.url.path == "/api/v1/series":
            return httpx.Response(self.metrics_status, json={"errors": []})
        return httpx.Response(self.logs_status, json={})

    def payloads(self, path: str) -> list:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    @property
    def series(self) -> list[dict]:
        return [p["series"][0] for p in self.payloads("/api/v1/series")]

    @property
    def logs(self) -> list[dict]:
        return [p[0] for p in self.payloads("/api/v2/logs")]


@pytest.fixture
def datadog_recorder():
    return DatadogRecorder()


@pytest.fixture
def datadog_api(test_settings, datadog_recorder):
    return DatadogApiClient(test_settings, transport=httpx.MockTransport(datadog_recorder))


@pytest.fixture
def telemetry(tracing, datadog_api):
    return TelemetryReporter(tracing, datadog_api)


@pytest.fixture
def genai_client():
    """Gemini SDK stand-in: valid pose JSON, then an image on the first try."""
    client = MagicMock()

    def _generate_content(*, model, contents, config):
        if model == GeminiPoseClient.POSE_ANALYSIS_MODEL:
            return text_response(json.dumps(POSE_JSON))
        return image_response(text_part("here you go"), inline_part(GENERATED_IMAGE_BYTES))

    client.models.generate_content.side_effect = _generate_content
    return client


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def pose_client(genai_client, no_sleep):
    return GeminiPoseClient(genai_client, sleep=no_sleep)


@pytest.fixture
def pipeline(pose_client, telemetry):
    return PosePipeline(pose_client, telemetry)


@pytest.fixture
def user_image():
    return ImagePayload(data=make_image_base64(160, 200, "JPEG"), mimeType="image/jpeg")


@pytest.fixture
def pose_image():
    return ImagePayload(data=make_image_base64(128, 128), mimeType="image/png")


def calls_for_model(genai_client, model: str) -> int:
    return sum(
        1
        for call in genai_client.models.generate_content.call_args_list
        if call.kwargs.get("model") == model
    )
