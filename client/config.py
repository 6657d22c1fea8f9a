#!/usr/bin/env python3
"""
Configuration file for the SkinScan edge client.
All tunable defaults in one place. scanner.yaml overrides per deployment.
"""

import logging

# =============================================================================
# CAMERA SETTINGS
# =============================================================================

CAMERA_SOURCE: str = "0"  # Webcam index or RTSP/HTTP URL
CAMERA_WIDTH: int = 1280
CAMERA_HEIGHT: int = 720
FRAME_CHANNEL_ORDER: str = "bgr"  # OpenCV delivers BGR

# =============================================================================
# DETECTION LOOP
# =============================================================================

# Scheduler ticks at display refresh rate; the camera usually delivers fewer
# frames, so most ticks are skipped by the timestamp dedup guard
TICK_HZ: float = 60.0

DETECTOR_TYPE: str = "landmarks"  # "landmarks" (face mesh) or "bbox" (box only)

FACE_LANDMARKER_MODEL_URL: str = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)
FACE_DETECTOR_MODEL_URL: str = (
    "https://storage.googleapis.com/mediapipe-models/face_detector/"
    "blaze_face_short_range/float16/1/blaze_face_short_range.tflite"
)
MODEL_DIR: str = "models"
MAX_NUM_FACES: int = 2  # Extra faces are counted, only the first is scored
MIN_DETECTION_CONFIDENCE: float = 0.5

TIMING_WINDOW: int = 100  # Rolling window for per-step timing averages

# =============================================================================
# ROI SAMPLING
# =============================================================================

MAX_SAMPLES: int = 2800  # Grid points visited per sampling call
MIN_SAMPLES: int = 80    # Below this a region is "unknown" and scores 0

# =============================================================================
# PHOTOMETRIC SCORING
# =============================================================================

LIGHTING_THRESHOLD: float = 35.0  # Redness/shine only computed above this

# Lighting: 0.75 * mean luminance + 0.25 * contrast
LIGHTING_MEAN_WEIGHT: float = 0.75
LIGHTING_CONTRAST_WEIGHT: float = 0.25
LIGHTING_CONTRAST_FULL_STD: float = 64.0  # Luminance std that maps to 100

# Redness: affine remap of mean(r - (g+b)/2)
REDNESS_OFFSET: float = 20.0
REDNESS_SPAN: float = 120.0

# Shine: bright, low-chroma pixels are treated as specular highlights
SHINE_MIN_VALUE: int = 210
SHINE_MAX_SATURATION: float = 0.35
SHINE_GAIN: float = 250.0

# =============================================================================
# AUTO-TRIGGER
# =============================================================================

AUTO_TRIGGER_ENABLED: bool = True
COOLDOWN_MS: int = 2500  # Minimum gap between two auto-triggered calls

# =============================================================================
# CLASSIFICATION API
# =============================================================================

API_BASE_URL: str = "http://localhost:8000"
API_KEY: str = ""  # Sent as X-API-Key when set
API_TIMEOUT: float = 15.0
JPEG_QUALITY: int = 85
API_MAX_IMAGE_WIDTH: int = 640  # Frames are downscaled before upload
ERROR_BODY_PREVIEW: int = 200  # Characters of a non-JSON body kept for diagnostics

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: int = logging.INFO  # Set to logging.DEBUG for per-frame detail
