"""Object detector loading, inference and the process-wide detector cache."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from ..backends.base_backend import BaseBackend
from ..backends.yolo_backend import YoloBackend
from ..core.device_utils import resolve_backend
from ..core.entities import Detection, DetectorInstance
from ..core.exceptions import ModelError, ModelLoadError

logger = logging.getLogger(__name__)

BackendFactory = Callable[[str], BaseBackend]

DEFAULT_MAX_RESULTS = 20
DEFAULT_SCORE_THRESHOLD = 0.20


def load(preferred_backend: str = "auto",
         fallback_backend: str = "cpu",
         model: str = "yolo11n.pt",
         backend_factory: BackendFactory = YoloBackend) -> DetectorInstance:
    """Load the detection model, trying the preferred compute backend first.

    Accelerated backends are missing on many machines, so a failure there is
    only logged and the fallback backend is tried next.

    Raises:
        ModelLoadError: If neither backend can load the model
    """
    errors = []
    for tier, name in (("preferred", preferred_backend), ("fallback", fallback_backend)):
        if not name:
            continue
        try:
            device = resolve_backend(name)
            backend = backend_factory(model)
            backend.load(device)
        except ModelError as e:
            logger.warning(f"Detector load on {tier} backend '{name}' failed: {e}")
            errors.append(f"{name}: {e}")
            continue

        logger.info(f"Detector ready on {device} ({tier} backend): {backend.get_model_info()}")
        return DetectorInstance(backend=backend, device=device, class_names=tuple(backend.class_names))

    raise ModelLoadError("Detector could not be loaded (" + "; ".join(errors) + ")")


def detect(instance: DetectorInstance,
           frame: Optional[np.ndarray],
           max_results: int = DEFAULT_MAX_RESULTS,
           score_threshold: float = DEFAULT_SCORE_THRESHOLD) -> List[Detection]:
    """Run one inference; a missing or empty frame yields no detections."""
    if frame is None or frame.size == 0:
        return []
    return instance.backend.predict(frame, max_results=max_results, score_threshold=score_threshold)


class DetectorProvider:
    """Init-once, reuse-forever holder of the loaded detector.

    The first ``get`` starts the load in a worker thread; concurrent callers
    await the same load. A caller that stops waiting (session closed) does not
    cancel the load, so the model is still cached for the next session.
    """

    _instance: "DetectorProvider | None" = None

    def __init__(self, loader: Callable[..., DetectorInstance] = load):
        self._loader = loader
        self._detector: Optional[DetectorInstance] = None
        self._load_task: Optional[asyncio.Task] = None
        self.last_error: Optional[Exception] = None

    @classmethod
    def get_instance(cls) -> "DetectorProvider":
        """Return the process-wide provider."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def detector(self) -> Optional[DetectorInstance]:
        return self._detector

    @property
    def is_loading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    async def get(self, preferred_backend: str, fallback_backend: str, model: str) -> DetectorInstance:
        """Return the cached detector, loading it on first use.

        Raises:
            ModelLoadError: If loading fails; a later call retries the load
        """
        if self._detector is not None:
            return self._detector

        if self._load_task is None:
            logger.info(f"Loading detector {model} (preferred={preferred_backend}, fallback={fallback_backend})")
            self._load_task = asyncio.get_running_loop().create_task(
                asyncio.to_thread(self._loader, preferred_backend, fallback_backend, model),
                name="detector-load"
            )
            self._load_task.add_done_callback(self._on_load_done)

        return await asyncio.shield(self._load_task)

    def _on_load_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._load_task = None
            return
        error = task.exception()
        if error is not None:
            self.last_error = error
            self._load_task = None
            logger.error(f"Detector load failed: {error}")
        else:
            self._detector = task.result()
            self.last_error = None

    def reset(self) -> None:
        """Drop the cached detector (application exit and tests only)."""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self._detector = None
        self.last_error = None
