"""Draws stabilized detections onto a transparent overlay aligned to the video."""
from __future__ import annotations

import re
from typing import Callable, Optional, Sequence

import cv2
import numpy as np

from ..core.entities import Detection, FrameDimensions

BOX_COLOR = (255, 240, 0, 255)        # BGRA, cyan
TAG_TEXT_COLOR = (10, 10, 10, 255)
PLACEHOLDER_COLOR = (255, 240, 0, 220)
FONT = cv2.FONT_HERSHEY_SIMPLEX

_NON_PRINTABLE = re.compile(r'[^\x20-\x7e]')


def sanitize_label(text: str) -> str:
    """Reduce a label to printable ASCII; Hershey fonts have no other glyphs."""
    cleaned = _NON_PRINTABLE.sub('', text or '').strip()
    return cleaned or '?'


def format_tag(label: str, score: float) -> str:
    return f"{sanitize_label(label)} {int(round(score * 100))}%"


class OverlaySurface:
    """Transparent BGRA drawing surface."""

    def __init__(self, width: int = 0, height: int = 0):
        self.image = np.zeros((max(0, height), max(0, width), 4), dtype=np.uint8)

    @property
    def dimensions(self) -> FrameDimensions:
        return FrameDimensions.of(self.image)

    @property
    def is_blank(self) -> bool:
        return not self.image.any()

    def resize(self, dimensions: FrameDimensions) -> None:
        if self.dimensions != dimensions:
            self.image = np.zeros((dimensions.height, dimensions.width, 4), dtype=np.uint8)

    def clear(self) -> None:
        self.image[:] = 0

    def snapshot(self) -> np.ndarray:
        return self.image.copy()


def render(surface: OverlaySurface,
           detections: Sequence[Detection],
           frame_dimensions: FrameDimensions,
           translate: Callable[[str], str] = lambda label: label,
           placeholder: str = "Searching for food...") -> None:
    """Redraw the overlay from scratch for one set of detections."""
    surface.resize(frame_dimensions)
    surface.clear()
    canvas = surface.image
    if canvas.size == 0:
        return

    scale = max(0.4, min(frame_dimensions.width, frame_dimensions.height) / 900.0)
    thickness = max(1, int(round(scale * 2)))

    if not detections:
        _draw_placeholder(canvas, placeholder, scale, thickness)
        return

    for detection in detections:
        _draw_detection(canvas, detection, translate(detection.label), scale, thickness)


def _draw_detection(canvas: np.ndarray, detection: Detection, label: str,
                    scale: float, thickness: int) -> None:
    height, width = canvas.shape[:2]
    x, y, w, h = detection.bbox
    x1 = int(max(0, min(width - 1, x)))
    y1 = int(max(0, min(height - 1, y)))
    x2 = int(max(0, min(width - 1, x + w)))
    y2 = int(max(0, min(height - 1, y + h)))

    cv2.rectangle(canvas, (x1, y1), (x2, y2), BOX_COLOR, thickness + 1)

    text = format_tag(label, detection.score)
    (text_w, text_h), baseline = cv2.getTextSize(text, FONT, scale * 0.6, thickness)
    tag_h = text_h + baseline + 6

    # Tag sits above the box, or just inside it when the box touches the top
    tag_top = y1 - tag_h if y1 - tag_h >= 0 else y1
    cv2.rectangle(canvas, (x1, tag_top), (min(width - 1, x1 + text_w + 8), tag_top + tag_h), BOX_COLOR, -1)
    cv2.putText(canvas, text, (x1 + 4, tag_top + text_h + 3), FONT, scale * 0.6,
                TAG_TEXT_COLOR, thickness, cv2.LINE_AA)


def _draw_placeholder(canvas: np.ndarray, text: str, scale: float, thickness: int) -> None:
    height, width = canvas.shape[:2]
    text = sanitize_label(text)
    (text_w, text_h), _ = cv2.getTextSize(text, FONT, scale * 0.8, thickness)
    origin = ((width - text_w) // 2, (height + text_h) // 2)
    cv2.putText(canvas, text, origin, FONT, scale * 0.8, PLACEHOLDER_COLOR, thickness, cv2.LINE_AA)


def composite(frame: np.ndarray, overlay: Optional[np.ndarray]) -> np.ndarray:
    """Alpha-blend a BGRA overlay over a BGR frame; returns a new image."""
    if overlay is None or overlay.size == 0:
        return frame.copy()

    height, width = frame.shape[:2]
    if overlay.shape[:2] != (height, width):
        overlay = cv2.resize(overlay, (width, height), interpolation=cv2.INTER_NEAREST)

    alpha = overlay[..., 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1.0 - alpha) + overlay[..., :3].astype(np.float32) * alpha
    return np.clip(blended + 0.5, 0, 255).astype(np.uint8)
