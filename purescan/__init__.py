"""
PureScan: live camera food scanner with object-detection overlay.
"""

__version__ = "1.0.0"

from .config.settings import Config, load_config, save_config
from .core.entities import Detection, CaptureArtifact, AnalysisResult

__all__ = [
    "Config", "load_config", "save_config",
    "Detection", "CaptureArtifact", "AnalysisResult"
]
