#!/usr/bin/env python3
"""
Camera Frame Source
Owns cv2.VideoCapture. A background grabber keeps only the latest frame and
the monotonic time it arrived; consumers poll current() at their own rate
and use the timestamp to tell new frames from repeats.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import cv2
import numpy as np

import config as cfg

logger = logging.getLogger(__name__)


class FrameSourceError(RuntimeError):
    """The camera could not be opened or produced no frames."""


@dataclass(frozen=True)
class Frame:
    """One captured video frame."""
    pixels: np.ndarray
    width: int
    height: int
    timestamp: float  # Monotonic seconds, non-decreasing


def parse_source(source: Union[str, int]) -> Union[str, int]:
    """Webcam indices may arrive as strings from YAML or the CLI."""
    if isinstance(source, str) and source.isdigit():
        return int(source)
    return source


class CameraFrameSource:
    """Latest-frame camera reader backed by a grabber thread."""

    RECONNECT_DELAY_SEC: float = 2.0
    JOIN_TIMEOUT_SEC: float = 5.0

    def __init__(
        self,
        source: Union[str, int] = None,
        width: int = None,
        height: int = None,
        clock: Callable[[], float] = time.monotonic,
        capture_factory: Callable = cv2.VideoCapture
    ):
        self.source = parse_source(cfg.CAMERA_SOURCE if source is None else source)
        self.width = width or cfg.CAMERA_WIDTH
        self.height = height or cfg.CAMERA_HEIGHT
        self._clock = clock
        self._capture_factory = capture_factory
        self._cap = None
        self._latest: Optional[Frame] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _open(self):
        if isinstance(self.source, str) and self.source.startswith("rtsp://"):
            # TCP transport is more reliable than UDP for RTSP
            os.environ["OPENCV_FFMPEG_CAPTURE_OPTIONS"] = "rtsp_transport;tcp"
        cap = self._capture_factory(self.source)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if isinstance(self.source, int):
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        return cap

    def _publish(self, pixels: np.ndarray, stop_event: Optional[threading.Event] = None) -> None:
        h, w = pixels.shape[:2]
        frame = Frame(pixels=pixels, width=w, height=h, timestamp=self._clock())
        with self._lock:
            # release() clears the frame under this lock after setting stop
            if stop_event is not None and stop_event.is_set():
                return
            self._latest = frame

    def start(self) -> None:
        """
        Open the camera and start grabbing.

        Raises:
            FrameSourceError: if the camera cannot be opened or read
        """
        if self._thread is not None:
            logger.warning("Frame source already started")
            return

        self._cap = self._open()
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise FrameSourceError(f"Cannot connect to camera: {self.source}")

        ret, pixels = self._cap.read()
        if not ret or pixels is None:
            self._cap.release()
            self._cap = None
            raise FrameSourceError("Cannot read from camera")

        self._publish(pixels)
        logger.info(f"Camera ready ({pixels.shape[1]}x{pixels.shape[0]})")

        # From here on the grabber thread owns the capture and releases it on exit
        cap, self._cap = self._cap, None
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._grab_loop, args=(cap, self._stop_event), name="frame-grabber", daemon=True
        )
        self._thread.start()

    def _grab_loop(self, cap, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                ret, pixels = cap.read()
                if stop_event.is_set():
                    break
                if ret and pixels is not None:
                    self._publish(pixels, stop_event)
                    continue

                logger.warning("Lost camera connection. Reconnecting...")
                cap.release()
                cap = None
                if stop_event.wait(self.RECONNECT_DELAY_SEC):
                    break
                cap = self._open()
        finally:
            if cap is not None:
                cap.release()

    def current(self) -> Optional[Frame]:
        """Latest frame, or None before the first successful read."""
        with self._lock:
            return self._latest

    def release(self) -> None:
        """Stop grabbing and release the camera."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.JOIN_TIMEOUT_SEC)
            if self._thread.is_alive():
                logger.warning("Frame grabber still blocked in read; it releases the camera when the read returns")
            self._thread = None
        with self._lock:
            self._latest = None
        logger.info("Camera released")
