"""Sample-and-hold stabilization of noisy per-frame detections.

A detector run on consecutive frames of an unchanged scene still flickers:
objects drop in and out of recognition. The stabilizer samples the detector at
a fixed interval, keeps only allowlisted classes, and keeps showing the last
non-empty result for a grace window before letting the display go empty.

Each sample fully replaces the held set. The detector has no notion of object
identity across frames, so nothing is merged or matched between samples.
"""
from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, Tuple

from ..core.entities import Detection

logger = logging.getLogger(__name__)

Snapshot = Tuple[Detection, ...]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class LabelTranslator:
    """Maps raw detector labels to display labels for the food domain."""

    def __init__(self, label_map: Mapping[str, str], generic_label: str = "Food item"):
        self._label_map = {k.lower(): v for k, v in label_map.items()}
        self.generic_label = generic_label

    def __call__(self, raw_label: str) -> str:
        return self._label_map.get((raw_label or "").lower(), self.generic_label)


class DetectionStabilizer:
    """Owns the held detection set; other components only see snapshots."""

    def __init__(self,
                 allowlist: Iterable[str],
                 sample_interval_ms: float = 2000,
                 grace_window_ms: float = 3000,
                 clock: Callable[[], float] = monotonic_ms):
        self.allowlist = frozenset(label.lower() for label in allowlist)
        self.sample_interval_ms = sample_interval_ms
        self.grace_window_ms = grace_window_ms
        self._clock = clock

        self._held: Snapshot = ()
        self._last_non_empty_ms: Optional[float] = None
        self._last_sample_ms: Optional[float] = None
        self.sample_count = 0

    @property
    def held(self) -> Snapshot:
        return self._held

    def is_sample_due(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return self._last_sample_ms is None or now - self._last_sample_ms >= self.sample_interval_ms

    def filter(self, detections: Iterable[Detection]) -> List[Detection]:
        """Drop every detection whose class is not allowlisted."""
        return [d for d in detections if d.label.lower() in self.allowlist]

    def begin_sample(self, now: Optional[float] = None) -> float:
        """Record that a sample is being taken; returns its timestamp."""
        now = self._clock() if now is None else now
        self._last_sample_ms = now
        self.sample_count += 1
        return now

    def apply(self, raw: Iterable[Detection], now: Optional[float] = None) -> Snapshot:
        """Fold one detector result into the held set and return the snapshot."""
        now = self._clock() if now is None else now
        relevant = self.filter(raw)

        if relevant:
            self._held = tuple(relevant)
            self._last_non_empty_ms = now
        else:
            self._expire(now)
        return self._held

    def current(self, now: Optional[float] = None) -> Snapshot:
        """Held snapshot for a tick that does not sample.

        Expiry is still enforced so nothing outlives the grace window.
        """
        self._expire(self._clock() if now is None else now)
        return self._held

    async def tick(self,
                   sample: Callable[[], Awaitable[List[Detection]]],
                   now: Optional[float] = None) -> Snapshot:
        """Sample the detector if due, otherwise return the held snapshot."""
        now = self._clock() if now is None else now
        if not self.is_sample_due(now):
            return self.current(now)

        self.begin_sample(now)
        raw = await sample()
        return self.apply(raw, now)

    def reset(self) -> None:
        self._held = ()
        self._last_non_empty_ms = None
        self._last_sample_ms = None

    def _expire(self, now: float) -> None:
        if not self._held:
            return
        if self._last_non_empty_ms is None or now - self._last_non_empty_ms >= self.grace_window_ms:
            logger.debug("Grace window elapsed; clearing held detections")
            self._held = ()
