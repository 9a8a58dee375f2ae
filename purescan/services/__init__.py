"""Services package for the camera detection pipeline."""

from .frame_source import FrameSource, FrameSourceHandle
from .detector import DetectorProvider, load, detect
from .stabilizer import DetectionStabilizer, LabelTranslator
from .overlay_renderer import OverlaySurface, render, composite
from .capture_pipeline import CapturePipeline, artifact_from_file
from .session_controller import SessionController, SessionState, SessionEvent, DetectorStatus
from .analysis_service import AnalysisService, quality_band, parse_analysis_text

__all__ = [
    "FrameSource", "FrameSourceHandle", "DetectorProvider", "load", "detect",
    "DetectionStabilizer", "LabelTranslator", "OverlaySurface", "render", "composite",
    "CapturePipeline", "artifact_from_file", "SessionController", "SessionState",
    "SessionEvent", "DetectorStatus", "AnalysisService", "quality_band", "parse_analysis_text"
]
