from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImagePayload(BaseModel):
    """Inline image as sent by the web client: base64 data plus MIME type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data: str = Field(..., min_length=1, description="Base64-encoded image bytes")
    mime_type: str = Field(
        ...,
        alias="mimeType",
        min_length=1,
        max_length=100,
        examples=["image/jpeg", "image/png"],
    )

    @field_validator("data", mode="before")
    @classmethod
    def strip_data_url_prefix(cls, value: str) -> str:
        # Browsers often hand over "data:image/png;base64,...." from FileReader.
        if isinstance(value, str) and value.startswith("data:") and "," in value:
            return value.split(",", 1)[1]
        return value


class RegionDescription(BaseModel):
    description: str


class PoseData(BaseModel):
    """Per-body-region pose description returned by the analysis model."""

    model_config = ConfigDict(populate_by_name=True)

    head: RegionDescription
    torso: RegionDescription
    left_arm: RegionDescription = Field(..., alias="leftArm")
    right_arm: RegionDescription = Field(..., alias="rightArm")
    left_leg: RegionDescription = Field(..., alias="leftLeg")
    right_leg: RegionDescription = Field(..., alias="rightLeg")
    overall: RegionDescription


class GenerateWithAIRequest(BaseModel):
    """Request body for the pose transformation endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    user_image: ImagePayload = Field(..., alias="userImage")
    pose_image: ImagePayload = Field(..., alias="poseImage")


class GenerateWithAIResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    generated_image: Optional[str] = Field(None, alias="generatedImage")
    pose_description: Optional[str] = Field(None, alias="poseDescription")
