"""
Google Gemini client for pose transfer.

Two remote calls, each retried independently:

1. ``analyze_pose``: structured JSON description of the pose in the reference
   image (seven body regions).
2. ``generate_image``: re-render the person from the user photo in that pose.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from schemas.generate import ImagePayload, PoseData
from services.retry import DEFAULT_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS, retry_operation

logger = logging.getLogger(__name__)


class PoseGenerationError(Exception):
    """Base class for errors raised while talking to Gemini."""


class EmptyResponseError(PoseGenerationError):
    """The analysis model returned no usable text."""


class MalformedResponseError(PoseGenerationError):
    """The analysis model returned text that is not a valid pose description."""


class NoImageReturnedError(PoseGenerationError):
    """The image model response carried no inline image."""


@dataclass(frozen=True)
class PoseAnalysis:
    formatted_description: str
    pose_data: PoseData


POSE_ANALYSIS_PROMPT = """Analyze the provided image and generate a highly detailed, systematic JSON object describing the person's pose.

**IMPORTANT:** You MUST ignore any text, watermarks, graphic overlays, or annotations on the image. Your analysis should focus exclusively on the human figure.

Fill out the JSON schema with precise, descriptive language to capture every nuance of the person's position, orientation, and joint angles. This structured data will be used as keypoints for pose replication."""

# (json key, schema hint) in the order the model sees them.
POSE_REGIONS: tuple[tuple[str, str], ...] = (
    ("head", "Head tilt, direction of gaze, and facial expression."),
    ("torso", "Torso twist, lean (forward/backward/sideways), and overall posture."),
    ("leftArm", "Position of the left shoulder, elbow, and wrist. Hand gesture."),
    ("rightArm", "Position of the right shoulder, elbow, and wrist. Hand gesture."),
    ("leftLeg", "Position of the left hip, knee, and ankle. Foot orientation."),
    ("rightLeg", "Position of the right hip, knee, and ankle. Foot orientation."),
    ("overall", "A summary of the overall pose, including balance and distribution of weight."),
)

IMAGE_GENERATION_PROMPT = """
**Objective:** You are a master image manipulation expert. Your primary and most critical task is to edit the person in the first image (Image A) to match the pose described in the structured keypoints and shown in the second image (Image B).

**Image Definitions:**
*   **Image A:** The source image containing the person to be modified. You must preserve their core identity, clothing, and the background from this image.
*   **Image B:** The visual pose reference. Its sole purpose is to provide a visual example of the pose.

**--- PROSE DESCRIPTION (FOR CONTEXT) ---**
{pose_description}
**-----------------------------------------**

**--- STRUCTURED POSE KEYPOINTS (GROUND TRUTH) ---**
This JSON object provides the precise, machine-readable instructions for the pose. This is the definitive source of truth.
```json
{pose_json}
```
**---------------------------------------------------**

**--- CRITICAL RULES ---**
1.  **POSE TRANSFER IS THE #1 PRIORITY:** The final image MUST show the person from Image A in the new pose. All other rules are secondary to this.
2.  **STRUCTURED KEYPOINTS ARE KING:** The JSON keypoints are the absolute ground truth for pose, head orientation and facial expression. Use the prose description and Image B only as visual aids.
3.  **PRESERVE PERSON A's LIKENESS:** Keep the facial features, hair, skin tone, body type, clothing and accessories from Image A, but change the facial expression and head orientation to match the keypoints.
4.  **HANDLE STYLE MISMATCH:** Image B might be an illustration while Image A is a photo. Interpret the abstract pose and apply it realistically to the person in Image A.
5.  **STRICTLY IGNORE POSE B's CONTENT:** Do not transfer anything from Image B other than the pose itself: no identity, clothing, artistic style, colors, or background.
6.  **PRESERVE BACKGROUND A:** The background from Image A is the only one you should use.
7.  **ENSURE NATURAL PROPORTIONS & SHOT COMPOSITION:** Realistic body proportions; framing (medium shot, full-body shot) must match Image B.

**--- INSTRUCTIONS ---**
1.  Analyze the structured keypoints, the prose description, and Image B to understand the target pose.
2.  Modify the person from Image A to match this target pose and expression.
3.  Reconstruct and outpaint any parts of the person or background from Image A needed for a coherent, natural-looking result.
4.  Output a single, high-quality, photorealistic image that looks like a new photograph of the person from Image A in the new pose.
"""


def format_pose_description(pose_data: PoseData) -> str:
    """Render the seven regions as the markdown summary shown to users."""
    return "\n".join(
        [
            f"- **Overall:** {pose_data.overall.description}",
            f"- **Head:** {pose_data.head.description}",
            f"- **Torso:** {pose_data.torso.description}",
            "- **Arms:**",
            f"  - Left: {pose_data.left_arm.description}",
            f"  - Right: {pose_data.right_arm.description}",
            "- **Legs:**",
            f"  - Left: {pose_data.left_leg.description}",
            f"  - Right: {pose_data.right_leg.description}",
        ]
    )


def build_image_prompt(pose_description: str, pose_data: PoseData) -> str:
    pose_json = json.dumps(pose_data.model_dump(by_alias=True), indent=2)
    return IMAGE_GENERATION_PROMPT.format(
        pose_description=pose_description, pose_json=pose_json
    )


def parse_pose_response(response_text: Optional[str]) -> PoseData:
    """Turn the analysis model's JSON text into ``PoseData``."""
    if not response_text or not response_text.strip():
        raise EmptyResponseError(
            "Pose analysis failed. The model did not return a description."
        )
    try:
        return PoseData.model_validate_json(response_text.strip())
    except ValidationError as e:
        raise MalformedResponseError(
            f"Pose analysis failed. The model returned an unreadable description: "
            f"{e.error_count()} validation error(s)"
        ) from e


class GeminiPoseClient:
    """
    Stateless wrapper around ``google.genai.Client`` for the two pipeline calls.

    The retry budget (3 attempts, 2s apart) is fixed for both calls.
    """

    POSE_ANALYSIS_MODEL = "gemini-2.5-flash"
    IMAGE_GENERATION_MODEL = "gemini-3-pro-image-preview"
    MAX_ATTEMPTS = DEFAULT_MAX_ATTEMPTS
    RETRY_DELAY_SECONDS = DEFAULT_DELAY_SECONDS

    def __init__(self, client: Any, *, sleep: Optional[Callable] = None):
        self._client = client
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_api_key(cls, api_key: str) -> "GeminiPoseClient":
        from google import genai

        return cls(genai.Client(api_key=api_key))

    @staticmethod
    async def _run_blocking(call: Callable[[], Any]) -> Any:
        """Run a blocking SDK call off the event loop."""
        return await asyncio.to_thread(call)

    @staticmethod
    def _image_part(types_module: Any, image: ImagePayload) -> Any:
        return types_module.Part.from_bytes(
            data=base64.b64decode(image.data), mime_type=image.mime_type
        )

    @staticmethod
    def _pose_response_schema(types_module: Any) -> Any:
        return types_module.Schema(
            type=types_module.Type.OBJECT,
            properties={
                key: types_module.Schema(
                    type=types_module.Type.OBJECT,
                    properties={
                        "description": types_module.Schema(
                            type=types_module.Type.STRING, description=hint
                        )
                    },
                    required=["description"],
                )
                for key, hint in POSE_REGIONS
            },
            required=[key for key, _ in POSE_REGIONS],
        )

    async def analyze_pose(self, pose_image: ImagePayload) -> PoseAnalysis:
        """Describe the pose in ``pose_image`` region by region."""
        from google.genai import types

        contents = [POSE_ANALYSIS_PROMPT, self._image_part(types, pose_image)]
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=self._pose_response_schema(types),
        )

        async def _attempt(attempt: int) -> PoseAnalysis:
            response = await self._run_blocking(
                lambda: self._client.models.generate_content(
                    model=self.POSE_ANALYSIS_MODEL,
                    contents=contents,
                    config=config,
                )
            )
            pose_data = parse_pose_response(getattr(response, "text", None))
            return PoseAnalysis(
                formatted_description=format_pose_description(pose_data),
                pose_data=pose_data,
            )

        return await retry_operation(
            _attempt,
            "generate_pose_description",
            self.MAX_ATTEMPTS,
            self.RETRY_DELAY_SECONDS,
            sleep=self._sleep,
        )

    async def generate_image(
        self,
        user_image: ImagePayload,
        pose_image: ImagePayload,
        pose_description: str,
        pose_data: PoseData,
    ) -> str:
        """Render the person from ``user_image`` in the analysed pose; returns base64."""
        from google.genai import types

        contents = [
            self._image_part(types, user_image),
            self._image_part(types, pose_image),
            build_image_prompt(pose_description, pose_data),
        ]
        config = types.GenerateContentConfig(response_modalities=["IMAGE"])

        async def _attempt(attempt: int) -> str:
            response = await self._run_blocking(
                lambda: self._client.models.generate_content(
                    model=self.IMAGE_GENERATION_MODEL,
                    contents=contents,
                    config=config,
                )
            )
            image_b64 = self._extract_image_base64(response)
            if image_b64 is None:
                raise NoImageReturnedError(
                    "Image generation failed. The model did not return an image."
                )
            return image_b64

        return await retry_operation(
            _attempt,
            "generate_pose_image",
            self.MAX_ATTEMPTS,
            self.RETRY_DELAY_SECONDS,
            sleep=self._sleep,
        )

    @staticmethod
    def _iter_response_parts(response: object) -> Iterable[object]:
        """Yield candidate parts across SDK response layouts."""
        candidates = getattr(response, "candidates", None)
        if not candidates:
            return
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            parts = getattr(content, "parts", None) if content is not None else None
            if not parts:
                continue
            for part in parts:
                yield part

    @classmethod
    def _extract_image_base64(cls, response: object) -> Optional[str]:
        """Return the first inline image in the response as base64 text."""
        for part in cls._iter_response_parts(response):
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data is not None else None
            if not data:
                continue
            if isinstance(data, str):
                return data
            return base64.b64encode(data).decode("ascii")
        return None
