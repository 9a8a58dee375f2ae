"""Backend implementations for detection models."""

from .base_backend import BaseBackend
from .yolo_backend import YoloBackend

__all__ = ["BaseBackend", "YoloBackend"]
