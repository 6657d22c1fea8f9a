#!/usr/bin/env python3
"""
Main Entry Point - SkinScan Edge Client

Opens the camera, scores facial regions in real time and submits good frames
to the remote skin classifier.

Usage:
    python main.py                         # Use scanner.yaml (or config.py defaults)
    python main.py --config scanner.yaml   # Explicit config file
    python main.py --detector bbox         # Bounding-box-only detector
    python main.py --no-auto-trigger       # Score only, analyze on SIGUSR1
    python main.py --validate              # Validate config only

While running, send SIGUSR1 to request an immediate analysis:
    kill -USR1 <pid>
This also works with --no-auto-trigger; it only needs api.base_url to be set.
"""

import argparse
import logging
import signal
import sys
import time

import config as cfg
from api_client import ClassificationAPI
from camera_manager import SystemConfig, default_config, load_config, validate_config
from detection_loop import DetectionLoop, LoopSnapshot
from frame_source import CameraFrameSource
from landmark_detector import create_detector

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=cfg.LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger("main")

REPORT_INTERVAL_SEC: float = 1.0


class ScoreReporter:
    """Logs published outputs, at most once per interval plus on changes of status."""

    def __init__(self, interval: float = REPORT_INTERVAL_SEC):
        self.interval = interval
        self._last_report = 0.0
        self._last_status = None

    def __call__(self, snapshot: LoopSnapshot) -> None:
        status = (snapshot.classification_status, snapshot.state)
        now = time.monotonic()
        if status == self._last_status and now - self._last_report < self.interval:
            return
        self._last_report = now
        self._last_status = status

        scores = snapshot.scores
        line = (f"faces={snapshot.face_count} lighting={scores.lighting:5.1f} "
                f"redness={scores.redness:5.1f} shine={scores.shine:5.1f} "
                f"ml={snapshot.classification_status.value}")
        if snapshot.last_result is not None and snapshot.last_result.success:
            result = snapshot.last_result
            line += f" acne_class={result.acne_class} acne_prob={result.acne_prob}"
        if snapshot.last_error:
            line += f" error='{snapshot.last_error}'"
        logger.info(line)


def build_loop(config: SystemConfig) -> DetectionLoop:
    """Wire camera, detector and classifier into a DetectionLoop."""
    scan = config.scan
    channel_order = config.camera.channel_order

    # Built even with auto-trigger off so manual analysis (SIGUSR1) still works
    classify = None
    if config.api.base_url:
        api = ClassificationAPI(
            base_url=config.api.base_url,
            api_key=config.api.key,
            timeout=config.api.timeout,
            channel_order=channel_order
        )
        if scan.auto_trigger:
            if api.health_check():
                logger.info("✓ API connection successful")
            else:
                logger.warning("✗ API not reachable - requests will fail until it is up")
        classify = api.classify
    else:
        logger.warning("No API base_url configured - classification disabled")

    return DetectionLoop(
        frame_source=CameraFrameSource(
            source=config.camera.source,
            width=config.camera.width,
            height=config.camera.height
        ),
        detector_factory=lambda: create_detector(scan.detector, scan.model_path, channel_order),
        classify=classify,
        settings=scan,
        channel_order=channel_order,
        on_publish=ScoreReporter()
    )


def main():
    parser = argparse.ArgumentParser(
        description="SkinScan Edge Client - real-time ROI scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                         # Run with scanner.yaml
  python main.py --camera 1              # Use webcam index 1
  python main.py --detector bbox         # Bounding-box-only detector
  python main.py --no-auto-trigger       # Score only; SIGUSR1 still analyzes
  python main.py --validate              # Validate configuration
        """
    )
    parser.add_argument("--config", type=str, help="Path to scanner.yaml")
    parser.add_argument("--camera", type=str, help="Camera index or stream URL")
    parser.add_argument("--detector", choices=["landmarks", "bbox"], help="Detector type")
    parser.add_argument("--no-auto-trigger", action="store_true", help="Disable ML auto-trigger (SIGUSR1 still analyzes)")
    parser.add_argument("--api-url", type=str, help="Classification API base URL")
    parser.add_argument("--validate", action="store_true", help="Validate config and exit")
    parser.add_argument("--debug", action="store_true", help="Log per-frame scores")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        if args.config:
            logger.error(f"Configuration file not found: {e}")
            sys.exit(1)
        logger.info("No scanner.yaml found, using config.py defaults")
        config = default_config()
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    if args.camera:
        config.camera.source = args.camera
    if args.detector:
        config.scan.detector = args.detector
    if args.no_auto_trigger:
        config.scan.auto_trigger = False
    if args.api_url:
        config.api.base_url = args.api_url

    # Validate configuration
    errors = validate_config(config)
    if errors:
        logger.error("Configuration errors:")
        for err in errors:
            logger.error(f"  - {err}")
        sys.exit(1)

    if args.validate:
        print("✅ Configuration is valid")
        sys.exit(0)

    loop = build_loop(config)

    def stop_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        loop.stop()

    signal.signal(signal.SIGINT, stop_handler)
    signal.signal(signal.SIGTERM, stop_handler)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: loop.request_analysis())

    try:
        if not loop.start():
            logger.error(loop.status_message)
            sys.exit(1)
        logger.info("Scanning. Press Ctrl+C to stop")
        loop.run()
    finally:
        loop.close()


if __name__ == "__main__":
    main()
