"""Core domain entities and exceptions."""

from .entities import (
    Detection, FrameDimensions, CaptureArtifact, DetectorInstance,
    AnalysisResult, QualityBand, BBox
)
from .exceptions import (
    ApplicationError, WebcamError, PermissionDenied, DeviceUnavailable,
    ModelError, ModelLoadError, CaptureError, ServiceError, AIServiceError
)

__all__ = [
    "Detection", "FrameDimensions", "CaptureArtifact", "DetectorInstance",
    "AnalysisResult", "QualityBand", "BBox",
    "ApplicationError", "WebcamError", "PermissionDenied",
    "DeviceUnavailable", "ModelError", "ModelLoadError", "CaptureError",
    "ServiceError", "AIServiceError"
]
