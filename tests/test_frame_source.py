"""
Tests for the camera frame source with a mocked cv2.VideoCapture.
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

_client_dir = str(Path(__file__).resolve().parent.parent / "client")
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from fakes import FakeClock
from frame_source import CameraFrameSource, FrameSourceError, parse_source

# ─── Fixtures ─────────────────────────────────────────────────


def _make_capture(opened=True, read_ok=True):
    cap = MagicMock()
    cap.isOpened.return_value = opened
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    cap.read.return_value = (read_ok, frame if read_ok else None)
    return cap


def test_parse_source():
    assert parse_source("0") == 0
    assert parse_source(2) == 2
    assert parse_source("rtsp://cam/stream") == "rtsp://cam/stream"


def test_camera_that_cannot_open_raises():
    cap = _make_capture(opened=False)
    source = CameraFrameSource("0", capture_factory=lambda src: cap)

    with pytest.raises(FrameSourceError):
        source.start()
    cap.release.assert_called_once()
    assert source.current() is None


def test_camera_that_cannot_read_raises():
    cap = _make_capture(read_ok=False)
    source = CameraFrameSource("0", capture_factory=lambda src: cap)

    with pytest.raises(FrameSourceError):
        source.start()


def test_frames_carry_size_and_timestamp():
    cap = _make_capture()
    clock = FakeClock(start=42.0)
    source = CameraFrameSource("0", width=640, height=480, clock=clock, capture_factory=lambda src: cap)

    source.start()
    try:
        frame = source.current()
        assert frame is not None
        assert (frame.width, frame.height) == (640, 480)
        assert frame.timestamp == 42.0
    finally:
        source.release()

    cap.release.assert_called()
    assert source.current() is None


def test_webcam_index_requests_resolution():
    cap = _make_capture()
    opened_with = []

    def factory(src):
        opened_with.append(src)
        return cap

    source = CameraFrameSource("1", width=800, height=600, capture_factory=factory)
    source.start()
    source.release()

    assert opened_with == [1]
    assert cap.set.call_count >= 3


def test_capture_outlives_a_blocked_read():
    """release() must not free the capture while the grabber is still reading."""
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    unblock = threading.Event()
    reading = threading.Event()
    reads = []

    def read():
        reads.append(1)
        if len(reads) > 1:
            reading.set()
            unblock.wait(timeout=5)
        return True, frame

    cap = _make_capture()
    cap.read.side_effect = read
    source = CameraFrameSource("0", capture_factory=lambda src: cap)
    source.JOIN_TIMEOUT_SEC = 0.05

    source.start()
    grabber = source._thread
    assert reading.wait(timeout=2)
    source.release()

    assert grabber.is_alive()
    cap.release.assert_not_called()
    assert source.current() is None

    unblock.set()
    grabber.join(timeout=2)

    assert not grabber.is_alive()
    cap.release.assert_called_once()
    assert source.current() is None, "a frame read after release must not be published"
