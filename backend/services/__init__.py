# Services are imported where needed; google-genai is only loaded when a
# client is actually built:
# from services.gemini_pose_client import GeminiPoseClient
# from services.pose_pipeline import PosePipeline
# from services.telemetry import TelemetryReporter

__all__ = []
