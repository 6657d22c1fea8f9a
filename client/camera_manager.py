#!/usr/bin/env python3
"""
Camera Manager Module
Loads and validates scanner configuration from scanner.yaml.
Provides typed access to camera, scan and API settings.

Any key missing from the YAML falls back to the defaults in config.py.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

import config as cfg

logger = logging.getLogger(__name__)

DETECTOR_TYPES = ("landmarks", "bbox")
CHANNEL_ORDERS = ("bgr", "rgb")

# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ScanSettings:
    """Settings for the scoring loop and auto-trigger."""
    detector: str = cfg.DETECTOR_TYPE
    auto_trigger: bool = cfg.AUTO_TRIGGER_ENABLED
    cooldown_ms: int = cfg.COOLDOWN_MS
    lighting_threshold: float = cfg.LIGHTING_THRESHOLD
    max_samples: int = cfg.MAX_SAMPLES
    min_samples: int = cfg.MIN_SAMPLES
    tick_hz: float = cfg.TICK_HZ
    model_path: Optional[str] = None


@dataclass
class CameraConfig:
    """Camera source settings."""
    source: str = cfg.CAMERA_SOURCE
    width: int = cfg.CAMERA_WIDTH
    height: int = cfg.CAMERA_HEIGHT
    channel_order: str = cfg.FRAME_CHANNEL_ORDER


@dataclass
class ApiConfig:
    """Classification API configuration."""
    base_url: str = cfg.API_BASE_URL
    key: str = cfg.API_KEY
    timeout: float = cfg.API_TIMEOUT


@dataclass
class SystemConfig:
    """Complete scanner configuration."""
    api: ApiConfig
    camera: CameraConfig
    scan: ScanSettings


def default_config() -> SystemConfig:
    """Configuration built purely from config.py defaults."""
    return SystemConfig(api=ApiConfig(), camera=CameraConfig(), scan=ScanSettings())


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

def find_config_file() -> str:
    """Find the scanner.yaml config file."""
    env_path = os.environ.get("SKINSCAN_CONFIG")
    if env_path:
        if os.path.exists(env_path):
            return env_path
        raise FileNotFoundError(f"SKINSCAN_CONFIG points to a missing file: {env_path}")

    search_paths = [
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "scanner.yaml"),
        os.path.expanduser("~/scanner.yaml"),
        "/etc/skinscan/scanner.yaml",
    ]

    for path in search_paths:
        if os.path.exists(path):
            return path

    raise FileNotFoundError(
        f"scanner.yaml not found. Searched: {search_paths}"
    )


def parse_config(raw: Dict[str, Any]) -> SystemConfig:
    """Build a SystemConfig from parsed YAML."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("scanner.yaml must contain a mapping at the top level")

    api_data = raw.get('api') or {}
    api = ApiConfig(
        base_url=api_data.get('base_url', cfg.API_BASE_URL),
        key=api_data.get('key', cfg.API_KEY),
        timeout=api_data.get('timeout', cfg.API_TIMEOUT)
    )

    cam_data = raw.get('camera') or {}
    camera = CameraConfig(
        source=str(cam_data.get('source', cfg.CAMERA_SOURCE)),
        width=cam_data.get('width', cfg.CAMERA_WIDTH),
        height=cam_data.get('height', cfg.CAMERA_HEIGHT),
        channel_order=cam_data.get('channel_order', cfg.FRAME_CHANNEL_ORDER)
    )

    scan_data = raw.get('scan') or {}
    scan = ScanSettings(
        detector=scan_data.get('detector', cfg.DETECTOR_TYPE),
        auto_trigger=scan_data.get('auto_trigger', cfg.AUTO_TRIGGER_ENABLED),
        cooldown_ms=scan_data.get('cooldown_ms', cfg.COOLDOWN_MS),
        lighting_threshold=scan_data.get('lighting_threshold', cfg.LIGHTING_THRESHOLD),
        max_samples=scan_data.get('max_samples', cfg.MAX_SAMPLES),
        min_samples=scan_data.get('min_samples', cfg.MIN_SAMPLES),
        tick_hz=scan_data.get('tick_hz', cfg.TICK_HZ),
        model_path=scan_data.get('model_path')
    )

    return SystemConfig(api=api, camera=camera, scan=scan)


def load_config(config_path: Optional[str] = None) -> SystemConfig:
    """
    Load configuration from scanner.yaml.

    Args:
        config_path: Optional path to config file. If None, searches default locations.

    Returns:
        SystemConfig object with all settings
    """
    if config_path is None:
        config_path = find_config_file()

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f)

    config = parse_config(raw)

    logger.info(f"API: {config.api.base_url}")
    logger.info(f"Camera: {config.camera.source} ({config.camera.width}x{config.camera.height})")
    logger.info(f"Detector: {config.scan.detector}, auto-trigger: {'on' if config.scan.auto_trigger else 'off'}")

    return config


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config(config: SystemConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if config.scan.auto_trigger and not config.api.base_url:
        errors.append("API base_url is required when auto_trigger is on")
    if config.api.timeout <= 0:
        errors.append("API timeout must be positive")

    if not config.camera.source:
        errors.append("Camera source is required")
    if config.camera.width <= 0 or config.camera.height <= 0:
        errors.append("Camera width and height must be positive")
    if config.camera.channel_order not in CHANNEL_ORDERS:
        errors.append(f"Invalid channel_order '{config.camera.channel_order}'")

    scan = config.scan
    if scan.detector not in DETECTOR_TYPES:
        errors.append(f"Invalid detector '{scan.detector}' (expected one of {', '.join(DETECTOR_TYPES)})")
    if scan.cooldown_ms < 0:
        errors.append("cooldown_ms must not be negative")
    if not 0 <= scan.lighting_threshold <= 100:
        errors.append("lighting_threshold must be within 0-100")
    if scan.max_samples <= 0:
        errors.append("max_samples must be positive")
    if scan.min_samples < 0:
        errors.append("min_samples must not be negative")
    if scan.tick_hz <= 0:
        errors.append("tick_hz must be positive")
    if scan.model_path and not os.path.exists(scan.model_path):
        errors.append(f"model_path does not exist: {scan.model_path}")

    return errors
