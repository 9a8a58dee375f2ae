"""Base backend interface for detection model implementations."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple
import numpy as np
from ..core.entities import Detection

class BaseBackend(ABC):
    """Abstract base class for detection model backends.

    A backend is loaded once on one compute device and then only used for
    inference; it is never reconfigured after ``load``.
    """

    def __init__(self, model_path_or_name: str):
        self.model_path_or_name = model_path_or_name
        self.device = None
        self.is_loaded = False

    @abstractmethod
    def load(self, device: str) -> None:
        """Load the model on ``device``. Raises ModelError on failure."""

    @abstractmethod
    def predict(self, image: np.ndarray, max_results: int, score_threshold: float) -> List[Detection]:
        """Run inference on a BGR image."""

    @property
    @abstractmethod
    def class_names(self) -> Tuple[str, ...]:
        """Fixed class vocabulary of the model."""

    def get_model_info(self) -> Dict[str, Any]:
        return {
            'model': self.model_path_or_name,
            'device': self.device,
            'loaded': self.is_loaded,
            'num_classes': len(self.class_names) if self.is_loaded else 0,
        }
