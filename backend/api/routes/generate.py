import asyncio
import logging

from api.dependencies import get_pose_pipeline, get_tracing
from fastapi import APIRouter, Depends, HTTPException, status
from schemas.generate import GenerateWithAIRequest, GenerateWithAIResponse
from services.error_sanitizer import sanitize_public_error_message
from services.image_validation import normalize_image_payload
from services.pose_pipeline import PosePipeline
from services.tracing import TracingHandle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generate"])


@router.post(
    "/generate-with-ai",
    response_model=GenerateWithAIResponse,
    response_model_by_alias=True,
)
async def generate_with_ai(
    payload: GenerateWithAIRequest,
    pipeline: PosePipeline = Depends(get_pose_pipeline),
    tracing: TracingHandle = Depends(get_tracing),
) -> GenerateWithAIResponse:
    """
    Transform the pose of the person in ``userImage`` to match ``poseImage``.

    Traces are flushed before the response is returned on every path: the
    hosting environment may freeze the process right after.
    """
    logger.info("[generate_with_ai] Request received")

    user_image = normalize_image_payload(payload.user_image, field_name="userImage")
    pose_image = normalize_image_payload(payload.pose_image, field_name="poseImage")

    try:
        logger.info("[generate_with_ai] Starting AI generation...")
        outcome = await pipeline.generate_with_pose(user_image, pose_image)
    finally:
        logger.info("[generate_with_ai] Flushing traces...")
        await asyncio.to_thread(tracing.flush)

    if not outcome.success:
        logger.error("[generate_with_ai] Generation failed: %s", outcome.error)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sanitize_public_error_message(outcome.error),
        )

    logger.info("[generate_with_ai] AI generation successful")
    return GenerateWithAIResponse(
        success=True,
        generated_image=outcome.generated_image,
        pose_description=outcome.pose_description,
    )
