from .generate import (
    GenerateWithAIRequest,
    GenerateWithAIResponse,
    ImagePayload,
    PoseData,
    RegionDescription,
)

__all__ = [
    "GenerateWithAIRequest",
    "GenerateWithAIResponse",
    "ImagePayload",
    "PoseData",
    "RegionDescription",
]
