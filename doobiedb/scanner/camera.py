"""Capture device abstraction and the OpenCV-backed implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class DeviceError(RuntimeError):
    """The capture device is unavailable or was lost."""


@dataclass
class CaptureFrame:
    pixels: object  # numpy.ndarray, HxWx3 BGR
    captured_at: str  # ISO8601
    width: int
    height: int

    def to_jpeg(self, quality: int = 80) -> bytes:
        """Encode the frame as JPEG for an inference payload."""
        try:
            import cv2
        except ImportError:
            raise ImportError(
                "opencv-python is required: pip install opencv-python"
            ) from None

        ok, buf = cv2.imencode(
            ".jpg", self.pixels, [int(cv2.IMWRITE_JPEG_QUALITY), quality]
        )
        if not ok:
            raise RuntimeError("Failed to encode frame as JPEG")
        return bytes(buf.tobytes())


class CaptureDevice(ABC):
    """A device the session manager owns exclusively while a session runs."""

    @abstractmethod
    def acquire(self) -> None:
        """Open the stream. Raises DeviceError when unavailable or denied."""

    @abstractmethod
    def release(self) -> None:
        ...

    @abstractmethod
    def read_frame(self) -> CaptureFrame | None:
        """Return the current frame, or None if the stream yields nothing."""

    @abstractmethod
    def is_streaming(self) -> bool:
        """False when the stream has stalled or was paused/closed."""

    def capture_burst(self, count: int = 2) -> list[CaptureFrame]:
        frames: list[CaptureFrame] = []
        for _ in range(count):
            frame = self.read_frame()
            if frame is not None:
                frames.append(frame)
        return frames


class OpenCVCaptureDevice(CaptureDevice):
    """USB/built-in camera read through ``cv2.VideoCapture``."""

    def __init__(
        self, camera_index: int = 0, width: int = 1920, height: int = 1080
    ) -> None:
        self._camera_index = camera_index
        self._width = width
        self._height = height
        self._cap = None
        self._failed_reads = 0

    def acquire(self) -> None:
        try:
            import cv2
        except ImportError:
            raise ImportError(
                "opencv-python is required: pip install opencv-python"
            ) from None

        cap = cv2.VideoCapture(self._camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceError(
                f"Could not open camera {self._camera_index}. "
                f"Check the connection and permissions."
            )
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        self._cap = cap
        self._failed_reads = 0
        logger.info("Camera %d acquired", self._camera_index)

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera %d released", self._camera_index)

    def read_frame(self) -> CaptureFrame | None:
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            self._failed_reads += 1
            return None
        self._failed_reads = 0
        height, width = frame.shape[:2]
        return CaptureFrame(
            pixels=frame,
            captured_at=datetime.now(timezone.utc).isoformat(),
            width=int(width),
            height=int(height),
        )

    def is_streaming(self) -> bool:
        # Three empty reads in a row means the stream has stalled.
        return (
            self._cap is not None
            and self._cap.isOpened()
            and self._failed_reads < 3
        )

    @staticmethod
    def list_cameras(max_check: int = 10) -> list[int]:
        """List available camera indices by probing."""
        try:
            import cv2
        except ImportError:
            raise ImportError(
                "opencv-python is required: pip install opencv-python"
            ) from None

        available: list[int] = []
        for i in range(max_check):
            cap = cv2.VideoCapture(i)
            if cap.isOpened():
                available.append(i)
                cap.release()
        return available
