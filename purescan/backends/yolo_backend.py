"""YOLO backend implementation using Ultralytics."""
import logging
from typing import List, Tuple
import numpy as np
from .base_backend import BaseBackend
from ..core.entities import Detection
from ..core.exceptions import ModelError

logger = logging.getLogger(__name__)

class YoloBackend(BaseBackend):
    """COCO-pretrained YOLO detector."""

    WARMUP_SHAPE = (64, 64, 3)

    def __init__(self, model_path_or_name: str = "yolo11n.pt"):
        super().__init__(model_path_or_name)
        self.model = None

    def load(self, device: str) -> None:
        """Load the YOLO model and run one warm-up inference on ``device``.

        The warm-up makes an unusable accelerator fail here, at load time,
        rather than on the first live frame.
        """
        try:
            from ultralytics import YOLO
        except ImportError as e:
            raise ModelError("Ultralytics not installed. Install with: pip install ultralytics") from e

        try:
            model = YOLO(self.model_path_or_name)
            model.predict(np.zeros(self.WARMUP_SHAPE, dtype=np.uint8), device=device, verbose=False)
        except Exception as e:
            self.is_loaded = False
            raise ModelError(f"Failed to load YOLO model {self.model_path_or_name} on {device}: {e}") from e

        self.model = model
        self.device = device
        self.is_loaded = True
        logger.info(f"YOLO model loaded: {self.model_path_or_name} on {device}")

    def predict(self, image: np.ndarray, max_results: int, score_threshold: float) -> List[Detection]:
        """Run YOLO inference; boxes are returned as (x, y, width, height)."""
        if not self.is_loaded or self.model is None:
            raise ModelError("No model loaded")

        try:
            results = self.model.predict(
                image,
                conf=score_threshold,
                max_det=max_results,
                device=self.device,
                verbose=False
            )
        except Exception as e:
            raise ModelError(f"YOLO prediction failed: {e}") from e

        names = self.model.names
        detections: List[Detection] = []
        for result in results:
            if result.boxes is None:
                continue
            xyxy = result.boxes.xyxy.cpu().numpy()
            conf = result.boxes.conf.cpu().numpy()
            cls = result.boxes.cls.cpu().numpy()

            for i in range(len(xyxy)):
                x1, y1, x2, y2 = (float(v) for v in xyxy[i])
                class_id = int(cls[i])
                detections.append(Detection(
                    bbox=(x1, y1, x2 - x1, y2 - y1),
                    label=str(names.get(class_id, class_id)),
                    score=float(conf[i]),
                    class_id=class_id
                ))

        return detections[:max_results]

    @property
    def class_names(self) -> Tuple[str, ...]:
        if self.model is None:
            return ()
        names = self.model.names
        return tuple(names[i] for i in sorted(names))
