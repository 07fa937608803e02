import atexit
import logging

from config import get_settings
from fastapi import Depends, HTTPException, Request, status

from services.datadog_api import DatadogApiClient
from services.gemini_pose_client import GeminiPoseClient
from services.pose_pipeline import PosePipeline
from services.telemetry import TelemetryReporter
from services.tracing import TracingHandle

logger = logging.getLogger(__name__)


def get_tracing(request: Request) -> TracingHandle:
    """Process-wide tracer handle created in the app lifespan."""
    tracing = getattr(request.app.state, "tracing", None)
    if tracing is None:
        # Lifespan did not run (e.g. app mounted elsewhere); build one lazily
        # and shut it down at interpreter exit instead.
        logger.warning("Tracer not initialized by lifespan; creating it lazily")
        tracing = TracingHandle.init(get_settings())
        atexit.register(tracing.shutdown)
        request.app.state.tracing = tracing
    return tracing


def get_datadog_api() -> DatadogApiClient:
    return DatadogApiClient(get_settings())


def get_telemetry(
    tracing: TracingHandle = Depends(get_tracing),
    api: DatadogApiClient = Depends(get_datadog_api),
) -> TelemetryReporter:
    return TelemetryReporter(tracing, api)


def get_pose_client() -> GeminiPoseClient:
    """Gemini client built from the function secret; 503 when it is missing."""
    api_key = get_settings().GEMINI_API_KEY
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI generation is not configured",
        )
    return GeminiPoseClient.from_api_key(api_key)


def get_pose_pipeline(
    client: GeminiPoseClient = Depends(get_pose_client),
    telemetry: TelemetryReporter = Depends(get_telemetry),
) -> PosePipeline:
    return PosePipeline(client, telemetry)
