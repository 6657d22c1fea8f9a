"""
Tests for the MediaPipe detector adapters. Result conversion and
timestamp handling are tested with stand-in result objects, so no model
file is needed.
"""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

_client_dir = str(Path(__file__).resolve().parent.parent / "client")
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from landmark_detector import (
    DetectionResult,
    DetectorInitError,
    _VideoModeDetector,
    convert_detector_result,
    convert_landmarker_result,
    create_detector,
    ensure_model,
)
from roi_regions import Landmark


def test_landmarker_result_conversion():
    result = SimpleNamespace(face_landmarks=[
        [SimpleNamespace(x=0.1, y=0.2, z=0.0), SimpleNamespace(x=0.3, y=0.4, z=0.0)],
        [SimpleNamespace(x=0.5, y=0.6, z=0.0)],
    ])
    converted = convert_landmarker_result(result)

    assert converted.faces[0] == [Landmark(0.1, 0.2), Landmark(0.3, 0.4)]
    assert converted.face_count == 2
    assert converted.boxes == []


def test_empty_landmarker_result():
    assert convert_landmarker_result(SimpleNamespace(face_landmarks=[])).face_count == 0


def test_detector_result_conversion():
    box = SimpleNamespace(origin_x=100, origin_y=50, width=200, height=220)
    result = SimpleNamespace(detections=[SimpleNamespace(bounding_box=box)])

    converted = convert_detector_result(result)

    assert converted.boxes == [(100.0, 50.0, 300.0, 270.0)]
    assert converted.face_count == 1


def test_face_count_of_empty_result():
    assert DetectionResult().face_count == 0


def test_video_timestamps_strictly_increase():
    detector = _VideoModeDetector()
    stamps = [detector._next_timestamp(t) for t in (1000.4, 1000.9, 999.0, 1005.0)]
    assert stamps == [1000, 1001, 1002, 1005]


def test_close_releases_task():
    detector = _VideoModeDetector()
    task = MagicMock()
    detector._task = task
    detector.close()
    detector.close()

    task.close.assert_called_once()


def test_unknown_detector_type():
    with pytest.raises(DetectorInitError):
        create_detector("haar")


def test_channel_order_is_passed_to_detector():
    with patch("landmark_detector.FaceLandmarkDetector") as landmarks, \
            patch("landmark_detector.FaceBoxDetector") as boxes:
        create_detector("landmarks", None, "rgb")
        create_detector("bbox", "blaze.tflite", "rgb")

    landmarks.assert_called_once_with(model_path=None, channel_order="rgb")
    boxes.assert_called_once_with(model_path="blaze.tflite", channel_order="rgb")


def test_existing_model_is_not_downloaded(tmp_path):
    model = tmp_path / "face_landmarker.task"
    model.write_bytes(b"model")

    with patch("landmark_detector.urllib.request.urlretrieve") as fetch:
        path = ensure_model("https://example.com/models/face_landmarker.task", str(tmp_path))

    assert path == str(model)
    fetch.assert_not_called()


def test_failed_download_raises_init_error(tmp_path):
    with patch("landmark_detector.urllib.request.urlretrieve", side_effect=OSError("offline")):
        with pytest.raises(DetectorInitError):
            ensure_model("https://example.com/models/face_landmarker.task", str(tmp_path))
