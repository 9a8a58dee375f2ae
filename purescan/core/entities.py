"""Domain entities (data-only structures) used across services."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

BBox = Tuple[float, float, float, float]  # (x, y, width, height) in frame pixels

@dataclass(frozen=True, slots=True)
class Detection:
    bbox: BBox
    label: str  # raw detector vocabulary term
    score: float
    class_id: Optional[int] = None

@dataclass(frozen=True, slots=True)
class FrameDimensions:
    width: int
    height: int

    @classmethod
    def of(cls, frame: Any) -> "FrameDimensions":
        """Dimensions of a numpy image (H, W[, C])."""
        height, width = frame.shape[:2]
        return cls(width=int(width), height=int(height))

@dataclass(frozen=True, slots=True)
class CaptureArtifact:
    """One still image handed to the caller of a capture."""
    data: bytes
    filename: str
    mime_type: str
    width: int = 0
    height: int = 0

@dataclass(frozen=True, slots=True)
class DetectorInstance:
    """Loaded detection model bound to the compute backend it was loaded on."""
    backend: Any  # BaseBackend
    device: str   # cuda | mps | cpu
    class_names: Tuple[str, ...] = ()

class QualityBand(str, Enum):
    PREMIUM = "premium"
    AVERAGE = "average"
    HAZARDOUS = "hazardous"

@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Food quality assessment returned by the analysis service."""
    score: int  # 0..100
    text: str
    band: QualityBand
