"""Camera capture via OpenCV, one JPEG frame per interval."""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import cv2

from ..errors import DeviceError
from ..models.media import DeviceConfig, DeviceInfo, MediaKind
from .base import AbstractCaptureDevice

logger = logging.getLogger(__name__)


class OpenCVCamera(AbstractCaptureDevice):
    kind = MediaKind.VIDEO

    def __init__(self, device_id: Optional[str], config: DeviceConfig):
        super().__init__(device_id, config)
        self.capture = None
        self._next_frame_at = 0.0

    @property
    def index(self) -> int:
        return int(self.device_id) if self.device_id is not None else 0

    def open(self) -> None:
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise DeviceError(f"Camera {self.index} could not be opened", device_id=self.device_id,
                              kind=self.kind.value, code="DEVICE_NOT_FOUND")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        self.capture = capture
        self._next_frame_at = time.monotonic()
        logger.info(f"Camera {self.index} opened at {self.config.width}x{self.config.height}")

    def read_chunk(self) -> Tuple[bytes, Dict[str, Any]]:
        if self.capture is None:
            raise DeviceError("Camera is not open", device_id=self.device_id, kind=self.kind.value)

        delay = self._next_frame_at - time.monotonic()
        if delay > 0:
            time.sleep(delay)
        self._next_frame_at = max(self._next_frame_at, time.monotonic()) + self.config.frame_interval_ms / 1000

        ok, frame = self.capture.read()
        if not ok or frame is None:
            raise DeviceError(f"Camera {self.index} returned no frame", device_id=self.device_id,
                              kind=self.kind.value, code="DEVICE_UNAVAILABLE")

        height, width = frame.shape[:2]
        if (width, height) != (self.config.width, self.config.height):
            frame = cv2.resize(frame, (self.config.width, self.config.height))

        ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.config.jpeg_quality])
        if not ok:
            raise DeviceError("JPEG encoding failed", device_id=self.device_id, kind=self.kind.value)
        return encoded.tobytes(), {
            "width": self.config.width,
            "height": self.config.height,
            "format": "jpeg",
        }

    def close(self) -> None:
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info(f"Camera {self.index} released")


def list_cameras(max_index: int = 4) -> List[DeviceInfo]:
    """Open each of the first few camera indexes to see which exist."""
    cameras = []
    for index in range(max_index):
        capture = cv2.VideoCapture(index)
        try:
            if capture.isOpened():
                cameras.append(DeviceInfo(device_id=str(index), label=f"Camera {index}", kind=MediaKind.VIDEO))
        finally:
            capture.release()
    return cameras
