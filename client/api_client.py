"""
API Client for the Skin Classification Service

Sends a single JPEG frame to the remote classifier and parses its verdict.
The client never raises on service problems: every failure comes back as a
ClassificationResponse with success=False and a readable message.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import cv2
import numpy as np
import requests

import config as cfg

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResponse:
    """Response from the classification API"""
    success: bool
    message: str
    acne_class: Optional[int] = None
    acne_prob: Optional[float] = None  # 0-1
    dryness: Optional[float] = None
    ml_redness: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'message': self.message,
            'acne_class': self.acne_class,
            'acne_prob': self.acne_prob,
            'dryness': self.dryness,
            'ml_redness': self.ml_redness,
        }


def _optional_float(value: Any) -> Optional[float]:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> Optional[int]:
    try:
        return None if value is None else int(value)
    except (TypeError, ValueError):
        return None


class ClassificationAPI:
    """
    Client for the skin classification API.

    Usage:
        api = ClassificationAPI(base_url="http://localhost:8000")

        response = api.classify(frame)
        if response.success:
            print(f"Acne class {response.acne_class} (p={response.acne_prob:.2f})")
        else:
            print(f"Classification failed: {response.message}")
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        timeout: float = None,
        jpeg_quality: int = None,
        max_image_width: int = None,
        channel_order: str = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or cfg.API_BASE_URL).rstrip("/")
        self.api_key = cfg.API_KEY if api_key is None else api_key
        self.timeout = timeout or cfg.API_TIMEOUT
        self.jpeg_quality = jpeg_quality or cfg.JPEG_QUALITY
        self.max_image_width = max_image_width or cfg.API_MAX_IMAGE_WIDTH
        self.channel_order = channel_order or cfg.FRAME_CHANNEL_ORDER
        self.session = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests"""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def frame_to_base64(self, frame: np.ndarray) -> str:
        """
        Encode a frame as base64 JPEG (no data-URL prefix).

        RGB frames are converted to BGR for OpenCV. Frames wider than
        max_image_width are downscaled first.
        """
        if self.channel_order == "rgb":
            frame = cv2.cvtColor(np.ascontiguousarray(frame[:, :, :3]), cv2.COLOR_RGB2BGR)
        h, w = frame.shape[:2]
        if w > self.max_image_width:
            scale = self.max_image_width / w
            frame = cv2.resize(frame, (self.max_image_width, int(h * scale)))
        ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return base64.b64encode(buffer).decode('utf-8')

    def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            response = self.session.get(
                f"{self.base_url}/api/health",
                headers=self._get_headers(),
                timeout=self.timeout
            )
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.warning(f"[API] Health check failed: {e}")
            return False

    def _parse_response(self, response: requests.Response) -> ClassificationResponse:
        try:
            data = response.json()
        except ValueError:
            preview = response.text[:cfg.ERROR_BODY_PREVIEW]
            return ClassificationResponse(
                success=False,
                message=f"Non-JSON response (HTTP {response.status_code}): {preview}"
            )

        if not isinstance(data, dict):
            return ClassificationResponse(
                success=False,
                message=f"Unexpected response (HTTP {response.status_code}): {str(data)[:cfg.ERROR_BODY_PREVIEW]}"
            )

        if not (200 <= response.status_code < 300) or not data.get("ok", False):
            error = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
            return ClassificationResponse(success=False, message=str(error), raw=data)

        return ClassificationResponse(
            success=True,
            message="ok",
            acne_class=_optional_int(data.get("acne_class")),
            acne_prob=_optional_float(data.get("acne_prob")),
            dryness=_optional_float(data.get("dryness")),
            ml_redness=_optional_float(data.get("ml_redness")),
            raw=data
        )

    def classify(self, frame: np.ndarray) -> ClassificationResponse:
        """
        Send a frame to the classifier.

        Args:
            frame: Camera frame in channel_order (full frame; the server locates the face)

        Returns:
            ClassificationResponse with success status and model outputs
        """
        try:
            payload = {"image_b64": self.frame_to_base64(frame)}
        except (cv2.error, ValueError) as e:
            return ClassificationResponse(success=False, message=f"Could not encode frame: {e}")

        try:
            response = self.session.post(
                f"{self.base_url}/api/analyze",
                json=payload,
                headers=self._get_headers(),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            return ClassificationResponse(success=False, message="Request timed out")
        except requests.exceptions.ConnectionError:
            return ClassificationResponse(success=False, message="Could not connect to server")
        except requests.exceptions.RequestException as e:
            return ClassificationResponse(success=False, message=str(e))

        return self._parse_response(response)
