"""Frame-to-frame stability feedback for the capture loop."""

from __future__ import annotations

from collections import deque

import numpy as np

from .camera import CaptureFrame
from .models import StabilityMetrics

HOLD_STEADY = "📷 Hold steady - waiting for the camera"

_STABLE_BELOW = 15.0


def _recommend(avg_shake: float) -> str:
    if avg_shake > 30:
        return "📱 Hold device steady for better scanning"
    if avg_shake > 20:
        return "🎯 Try to minimize camera movement"
    if avg_shake < 10:
        return "✅ Camera stable - perfect for scanning"
    return "👍 Good stability - continue scanning"


class StabilityAssessor:
    """Mean absolute pixel difference between successive downsampled frames.

    Works on a small grayscale copy so it can run several times a second
    alongside the capture loop.
    """

    def __init__(self, history: int = 10, size: tuple[int, int] = (64, 48)) -> None:
        self._history: deque[float] = deque(maxlen=history)
        self._size = size
        self._previous: np.ndarray | None = None

    def reset(self) -> None:
        self._history.clear()
        self._previous = None

    def _downsample(self, pixels: np.ndarray) -> np.ndarray:
        arr = np.asarray(pixels, dtype=np.float32)
        if arr.ndim == 3:
            arr = arr.mean(axis=2)
        target_w, target_h = self._size
        step_y = max(1, arr.shape[0] // target_h)
        step_x = max(1, arr.shape[1] // target_w)
        return arr[::step_y, ::step_x][:target_h, :target_w]

    def assess(self, frame: CaptureFrame | None) -> StabilityMetrics:
        if frame is None or frame.pixels is None:
            return StabilityMetrics(recommendation=HOLD_STEADY, is_acceptable=False)

        small = self._downsample(frame.pixels)
        shake = 0.0
        if self._previous is not None and self._previous.shape == small.shape:
            shake = float(np.abs(small - self._previous).mean())
        self._previous = small

        self._history.append(shake)
        avg = sum(self._history) / len(self._history)
        return StabilityMetrics(
            recommendation=_recommend(avg),
            is_acceptable=avg < _STABLE_BELOW,
            shake_level=avg,
        )
