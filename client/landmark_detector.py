#!/usr/bin/env python3
"""
Face Detection Adapters
Wraps the MediaPipe Tasks detectors behind one detect(frame, timestamp_ms) call.

Two detector types:
- landmarks: FaceLandmarker (face mesh), full ROI polygons
- bbox:      FaceDetector (BlazeFace short range), boxes only

Both run in VIDEO mode, so timestamps passed to MediaPipe must be strictly
increasing; the adapters enforce that.
"""

import logging
import os
import urllib.request
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

import config as cfg
from roi_regions import Landmark

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]  # x1, y1, x2, y2 in pixels


class DetectorInitError(RuntimeError):
    """The face detector could not be created (missing model, bad runtime)."""


@dataclass
class DetectionResult:
    """Faces found in one frame, in detector order."""
    faces: List[List[Landmark]] = field(default_factory=list)
    boxes: List[BBox] = field(default_factory=list)

    @property
    def face_count(self) -> int:
        return max(len(self.faces), len(self.boxes))


# =============================================================================
# MODEL FILES
# =============================================================================

def ensure_model(url: str, model_dir: str = None) -> str:
    """
    Return the local path of a model file, downloading it on first use.

    Raises:
        DetectorInitError: if the download fails
    """
    if model_dir is None:
        model_dir = cfg.MODEL_DIR
    model_path = os.path.join(model_dir, os.path.basename(url))

    if not os.path.exists(model_path):
        os.makedirs(model_dir, exist_ok=True)
        logger.info(f"Downloading model to {model_path}...")
        try:
            urllib.request.urlretrieve(url, model_path)
        except OSError as e:
            raise DetectorInitError(f"Model download failed: {e}") from e
        logger.info("Model downloaded.")

    return model_path


# =============================================================================
# RESULT CONVERSION
# =============================================================================

def convert_landmarker_result(result) -> DetectionResult:
    """Convert a FaceLandmarkerResult into a DetectionResult."""
    faces = []
    for face in (getattr(result, 'face_landmarks', None) or []):
        faces.append([Landmark(x=float(lm.x), y=float(lm.y)) for lm in face])
    return DetectionResult(faces=faces)


def convert_detector_result(result) -> DetectionResult:
    """Convert a FaceDetectorResult into a DetectionResult."""
    boxes = []
    for detection in (getattr(result, 'detections', None) or []):
        box = detection.bounding_box
        if box is None:
            continue
        x1 = float(box.origin_x)
        y1 = float(box.origin_y)
        boxes.append((x1, y1, x1 + float(box.width), y1 + float(box.height)))
    return DetectionResult(boxes=boxes)


# =============================================================================
# DETECTORS
# =============================================================================

class _VideoModeDetector:
    """Shared plumbing for MediaPipe VIDEO-mode detectors."""

    kind = "base"

    def __init__(self):
        self._task = None
        self._last_timestamp_ms = -1

    def _next_timestamp(self, timestamp_ms: float) -> int:
        ts = int(timestamp_ms)
        if ts <= self._last_timestamp_ms:
            ts = self._last_timestamp_ms + 1
        self._last_timestamp_ms = ts
        return ts

    @staticmethod
    def _to_mp_image(frame: np.ndarray, channel_order: str):
        import mediapipe as mp

        if channel_order == "bgr":
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        else:
            rgb = np.ascontiguousarray(frame[:, :, :3])
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

    def close(self) -> None:
        """Release the underlying MediaPipe task."""
        if self._task is not None:
            try:
                self._task.close()
            finally:
                self._task = None
                logger.info(f"{self.kind} detector closed")


class FaceLandmarkDetector(_VideoModeDetector):
    """Face mesh landmarks via MediaPipe FaceLandmarker."""

    kind = "landmarks"

    def __init__(self, model_path: str = None, max_num_faces: int = None,
                 min_confidence: float = None, channel_order: str = None):
        super().__init__()
        self.channel_order = channel_order or cfg.FRAME_CHANNEL_ORDER
        try:
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision

            if model_path is None:
                model_path = ensure_model(cfg.FACE_LANDMARKER_MODEL_URL)
            confidence = cfg.MIN_DETECTION_CONFIDENCE if min_confidence is None else min_confidence
            options = vision.FaceLandmarkerOptions(
                base_options=mp_python.BaseOptions(model_asset_path=model_path),
                running_mode=vision.RunningMode.VIDEO,
                num_faces=max_num_faces or cfg.MAX_NUM_FACES,
                min_face_detection_confidence=confidence,
                min_face_presence_confidence=confidence,
                min_tracking_confidence=confidence,
            )
            self._task = vision.FaceLandmarker.create_from_options(options)
        except DetectorInitError:
            raise
        except Exception as e:
            raise DetectorInitError(f"FaceLandmarker init failed: {e}") from e
        logger.info(f"FaceLandmarker initialized (model: {model_path})")

    def detect(self, frame: np.ndarray, timestamp_ms: float) -> DetectionResult:
        mp_image = self._to_mp_image(frame, self.channel_order)
        result = self._task.detect_for_video(mp_image, self._next_timestamp(timestamp_ms))
        return convert_landmarker_result(result)


class FaceBoxDetector(_VideoModeDetector):
    """Face bounding boxes via MediaPipe FaceDetector (BlazeFace)."""

    kind = "bbox"

    def __init__(self, model_path: str = None, min_confidence: float = None,
                 channel_order: str = None):
        super().__init__()
        self.channel_order = channel_order or cfg.FRAME_CHANNEL_ORDER
        try:
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision

            if model_path is None:
                model_path = ensure_model(cfg.FACE_DETECTOR_MODEL_URL)
            options = vision.FaceDetectorOptions(
                base_options=mp_python.BaseOptions(model_asset_path=model_path),
                running_mode=vision.RunningMode.VIDEO,
                min_detection_confidence=(
                    cfg.MIN_DETECTION_CONFIDENCE if min_confidence is None else min_confidence
                ),
            )
            self._task = vision.FaceDetector.create_from_options(options)
        except DetectorInitError:
            raise
        except Exception as e:
            raise DetectorInitError(f"FaceDetector init failed: {e}") from e
        logger.info(f"FaceDetector initialized (model: {model_path})")

    def detect(self, frame: np.ndarray, timestamp_ms: float) -> DetectionResult:
        mp_image = self._to_mp_image(frame, self.channel_order)
        result = self._task.detect_for_video(mp_image, self._next_timestamp(timestamp_ms))
        return convert_detector_result(result)


def create_detector(kind: str = None, model_path: Optional[str] = None, channel_order: str = None):
    """
    Create the detector selected by the detector-type flag.

    channel_order must match the frames later passed to detect().

    Raises:
        DetectorInitError: on unknown kind or init failure
    """
    kind = kind or cfg.DETECTOR_TYPE
    if kind == "landmarks":
        return FaceLandmarkDetector(model_path=model_path, channel_order=channel_order)
    if kind == "bbox":
        return FaceBoxDetector(model_path=model_path, channel_order=channel_order)
    raise DetectorInitError(f"Unknown detector type: {kind}")
