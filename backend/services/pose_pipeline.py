"""
Pose transfer pipeline: pose analysis, then image generation.

Each call to ``generate_with_pose`` produces exactly one parent span and one
direct success-or-error report, and both agree with the returned outcome.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from schemas.generate import ImagePayload, PoseData
from services.gemini_pose_client import GeminiPoseClient
from services.telemetry import TelemetryReporter

logger = logging.getLogger(__name__)

PIPELINE_OPERATION = "full_generation"
PIPELINE_MODEL = "gemini-pipeline"


@dataclass(frozen=True)
class GenerationOutcome:
    success: bool
    generated_image: Optional[str] = None
    pose_description: Optional[str] = None
    pose_data: Optional[PoseData] = None
    error: Optional[str] = None

    @classmethod
    def ok(
        cls, generated_image: str, pose_description: str, pose_data: PoseData
    ) -> "GenerationOutcome":
        return cls(
            success=True,
            generated_image=generated_image,
            pose_description=pose_description,
            pose_data=pose_data,
        )

    @classmethod
    def failed(cls, error: str) -> "GenerationOutcome":
        return cls(success=False, error=error)


class PosePipeline:
    def __init__(self, client: GeminiPoseClient, telemetry: TelemetryReporter):
        self._client = client
        self._telemetry = telemetry

    async def _run_steps(
        self, parent, user_image: ImagePayload, pose_image: ImagePayload
    ) -> GenerationOutcome:
        logger.info("[generate_with_pose] Step 1: Analyzing pose...")
        with self._telemetry.step_span(
            parent,
            "llm.pose_analysis",
            self._client.POSE_ANALYSIS_MODEL,
            "text_generation",
        ):
            analysis = await self._client.analyze_pose(pose_image)
        logger.info("[generate_with_pose] Pose analysis complete")

        logger.info("[generate_with_pose] Step 2: Generating image...")
        with self._telemetry.step_span(
            parent,
            "llm.image_generation",
            self._client.IMAGE_GENERATION_MODEL,
            "image_generation",
        ):
            generated_image = await self._client.generate_image(
                user_image,
                pose_image,
                analysis.formatted_description,
                analysis.pose_data,
            )
        logger.info("[generate_with_pose] Image generation complete")

        return GenerationOutcome.ok(
            generated_image, analysis.formatted_description, analysis.pose_data
        )

    async def generate_with_pose(
        self, user_image: ImagePayload, pose_image: ImagePayload
    ) -> GenerationOutcome:
        """Run both steps; failures come back as ``success=False``, never raised."""
        start = time.monotonic()
        metrics = self._telemetry.track(PIPELINE_OPERATION, PIPELINE_MODEL)
        parent = self._telemetry.start_pipeline_span(PIPELINE_OPERATION, PIPELINE_MODEL)

        outcome: Optional[GenerationOutcome] = None
        try:
            outcome = await self._run_steps(parent, user_image, pose_image)
        except Exception as e:
            logger.error("[generate_with_pose] Error: %s", e, exc_info=True)
            outcome = GenerationOutcome.failed(str(e) or "Unknown error")
        finally:
            # Also reached on cancellation, where no outcome was produced.
            latency_ms = int((time.monotonic() - start) * 1000)
            success = outcome is not None and outcome.success
            error_message = None if success else (
                outcome.error if outcome is not None else "Generation interrupted"
            )
            self._telemetry.finish_pipeline_span(parent, success, latency_ms, error_message)
            self._telemetry.record_generation(success, latency_ms, error_message)
            if success:
                await metrics.record_success()
            else:
                await metrics.record_error(error_message)

        return outcome
