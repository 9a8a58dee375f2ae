"""Freezes the live frame (optionally with the overlay) into a still image."""
from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config.settings import Config
from ..core.entities import CaptureArtifact
from ..core.exceptions import CaptureError
from .frame_source import FrameSourceHandle
from .overlay_renderer import OverlaySurface, composite

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"


class CapturePipeline:
    """Produces ``CaptureArtifact``s from the camera or from an image file."""

    def __init__(self, config: Config):
        self.config = config

    def encode(self, image: np.ndarray) -> bytes:
        """JPEG-encode a BGR image at the configured transfer quality."""
        ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, int(self.config.capture_jpeg_quality)])
        if not ok:
            raise CaptureError("JPEG encoding failed")
        return buffer.tobytes()

    def capture(self,
                handle: Optional[FrameSourceHandle],
                overlay: Optional[Union[OverlaySurface, np.ndarray]] = None,
                burn_overlay: bool = False) -> CaptureArtifact:
        """Capture the current frame at native resolution.

        Raises:
            CaptureError: No live frame, or the image could not be built
        """
        if handle is None or handle.released:
            raise CaptureError("Camera is not active")

        frame = handle.current_frame()
        if frame is None or frame.size == 0:
            raise CaptureError("No camera frame available yet")

        if burn_overlay and overlay is not None:
            overlay_image = overlay.snapshot() if isinstance(overlay, OverlaySurface) else overlay
            try:
                frame = composite(frame, overlay_image)
            except (cv2.error, ValueError) as e:
                raise CaptureError(f"Failed to composite overlay: {e}") from e

        height, width = frame.shape[:2]
        artifact = CaptureArtifact(
            data=self.encode(frame),
            filename=self.config.capture_filename,
            mime_type=JPEG_MIME,
            width=width,
            height=height
        )
        logger.info(f"Captured {width}x{height} frame ({len(artifact.data)} bytes, overlay={'on' if burn_overlay else 'off'})")
        return artifact


def artifact_from_file(path: Union[str, Path]) -> CaptureArtifact:
    """Wrap a user-picked image file as an artifact, unchanged.

    Raises:
        CaptureError: The file is missing or is not an image
    """
    path = Path(path)
    mime_type, _ = mimetypes.guess_type(path.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise CaptureError(f"Not an image file: {path.name}")

    try:
        data = path.read_bytes()
        with Image.open(path) as image:
            image.verify()
            width, height = image.size
    except FileNotFoundError as e:
        raise CaptureError(f"File not found: {path}") from e
    except (UnidentifiedImageError, OSError) as e:
        raise CaptureError(f"Unreadable image {path.name}: {e}") from e

    logger.info(f"Selected image file {path.name} ({mime_type}, {width}x{height})")
    return CaptureArtifact(data=data, filename=path.name, mime_type=mime_type, width=width, height=height)
