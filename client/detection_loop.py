#!/usr/bin/env python3
"""
Detection Loop - Real-time ROI Scoring

Drives frames through the face detector and the photometric scorer.

Flow per tick:
1. Drain the inbox (classification results, manual analyze requests)
2. Skip if the frame source has no new frame (same timestamp as last step)
3. Detect faces, build ROI polygons for the first face
4. Sample + score, publish the ScoreSet with its FrameContext
5. Let the auto-trigger decide whether to submit the frame

States: IDLE -> LOADING -> RUNNING -> STOPPED. A failed detector load or
camera start returns to IDLE.

All shared state (scores, trigger state) is touched only on the thread that
calls run()/step(). Other threads talk to the loop through the inbox queue.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

import config as cfg
from auto_trigger import AutoTriggerController, ClassificationMessage, ClassificationStatus
from api_client import ClassificationResponse
from camera_manager import ScanSettings
from frame_source import FrameSourceError
from landmark_detector import DetectionResult, DetectorInitError
from photometric import ScoreSet, compute_scores
from roi_regions import Polygon, extract_regions, regions_from_bbox

logger = logging.getLogger(__name__)


class LoopState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class FrameContext:
    """Identity of the frame a ScoreSet was computed from."""
    width: int
    height: int
    timestamp: float


@dataclass
class SessionState:
    """Mutable per-session state, owned by the loop thread."""
    session_id: int = 0
    last_timestamp: Optional[float] = None
    frame_context: Optional[FrameContext] = None
    scores: ScoreSet = field(default_factory=ScoreSet.zero)
    face_count: int = 0
    frames_processed: int = 0
    frames_skipped: int = 0


@dataclass(frozen=True)
class LoopSnapshot:
    """Everything the loop publishes."""
    state: LoopState
    frame_context: Optional[FrameContext]
    scores: ScoreSet
    face_count: int
    classification_status: ClassificationStatus
    last_error: Optional[str]
    last_result: Optional[ClassificationResponse]
    status_message: str


_ANALYZE_NOW = object()


# =============================================================================
# SCHEDULER
# =============================================================================

class FrameScheduler:
    """
    Cancellable repeating task with a single armed flag.

    run() calls step at a fixed rate on the calling thread until cancel().
    cancel() may come from any thread; a step already executing finishes,
    no further step starts.
    """

    def __init__(self, step: Callable[[], None], hz: float = None):
        self._step = step
        self.interval = 1.0 / (hz or cfg.TICK_HZ)
        self._armed = False
        self._wake = threading.Event()

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        self._wake.clear()
        self._armed = True

    def cancel(self) -> None:
        self._armed = False
        self._wake.set()

    def run(self) -> None:
        next_tick = time.monotonic()
        while self._armed:
            self._step()
            if not self._armed:
                break
            next_tick += self.interval
            delay = next_tick - time.monotonic()
            if delay <= 0:
                # Behind schedule: do not burst to catch up
                next_tick = time.monotonic()
                continue
            self._wake.wait(delay)


# =============================================================================
# DETECTION LOOP
# =============================================================================

class DetectionLoop:
    """
    Frame-synchronized scoring controller.

    Usage:
        loop = DetectionLoop(
            frame_source=CameraFrameSource(0),
            detector_factory=lambda: create_detector("landmarks"),
            classify=ClassificationAPI().classify,
        )
        if loop.start():
            loop.run()   # blocks until loop.stop()
        loop.close()
    """

    def __init__(
        self,
        frame_source,
        detector_factory: Callable[[], object],
        classify: Optional[Callable[[np.ndarray], ClassificationResponse]] = None,
        settings: ScanSettings = None,
        channel_order: str = None,
        clock: Callable[[], float] = time.monotonic,
        on_publish: Optional[Callable[[LoopSnapshot], None]] = None,
        trigger_executor=None
    ):
        self.frame_source = frame_source
        self.settings = settings or ScanSettings()
        self.channel_order = channel_order or cfg.FRAME_CHANNEL_ORDER
        self._detector_factory = detector_factory
        self._detector = None
        self._clock = clock
        self._on_publish = on_publish

        self.state = LoopState.IDLE
        self.status_message = "Stopped"
        self.session = SessionState()

        self._inbox: "queue.Queue" = queue.Queue()
        self._scheduler = FrameScheduler(self.step, hz=self.settings.tick_hz)
        self._in_run = False

        self.trigger: Optional[AutoTriggerController] = None
        if classify is not None:
            self.trigger = AutoTriggerController(
                classify=classify,
                post=self._inbox.put,
                cooldown_ms=self.settings.cooldown_ms,
                lighting_threshold=self.settings.lighting_threshold,
                enabled=self.settings.auto_trigger,
                executor=trigger_executor
            )

        self.timing_stats: Dict[str, List[float]] = {'detection': [], 'scoring': [], 'total': []}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def load_detector(self) -> bool:
        """Create the detector once. Failure leaves the loop IDLE, no retry."""
        if self._detector is not None:
            return True

        self.state = LoopState.LOADING
        self.status_message = "Loading face detector..."
        logger.info(self.status_message)
        try:
            self._detector = self._detector_factory()
        except DetectorInitError as e:
            self.state = LoopState.IDLE
            self.status_message = f"Detector load failed: {e}"
            logger.error(self.status_message)
            return False

        self.status_message = "Detector loaded"
        logger.info(self.status_message)
        return True

    def start(self) -> bool:
        """
        Load the detector if needed, open the camera and arm the scheduler.

        Returns:
            True if the loop is RUNNING
        """
        if self.state is LoopState.RUNNING:
            logger.warning("Detection loop already running")
            return True

        if not self.load_detector():
            return False

        try:
            self.frame_source.start()
        except FrameSourceError as e:
            self.state = LoopState.IDLE
            self.status_message = f"Camera failed: {e}"
            logger.error(self.status_message)
            return False

        self.session = SessionState(session_id=self.session.session_id + 1)
        self._discard_inbox()
        for key in self.timing_stats:
            self.timing_stats[key].clear()

        self.state = LoopState.RUNNING
        self.status_message = "Running"
        self._scheduler.arm()
        logger.info(f"Detection loop started (session {self.session.session_id})")
        return True

    def run(self) -> None:
        """Run steps on the calling thread until stop(). Tears down on exit."""
        if self.state is not LoopState.RUNNING:
            logger.warning("Detection loop is not running; call start() first")
            return

        self._in_run = True
        try:
            self._scheduler.run()
        finally:
            self._in_run = False
            self._teardown()

    def stop(self) -> None:
        """
        Stop the session. Safe to call from any thread or a signal handler:
        while run() is active the teardown happens on the loop thread.
        """
        self._scheduler.cancel()
        if not self._in_run:
            self._teardown()

    def request_analysis(self) -> None:
        """Ask for a manual classification of the current frame (any thread)."""
        self._inbox.put(_ANALYZE_NOW)

    def close(self) -> None:
        """Stop and release the detector and the classification worker."""
        self.stop()
        if self.trigger is not None:
            self.trigger.shutdown()
        if self._detector is not None:
            self._detector.close()
            self._detector = None

    def _teardown(self) -> None:
        if self.state is not LoopState.RUNNING:
            return

        self.state = LoopState.STOPPED
        self.frame_source.release()
        self._log_summary()

        # Responses still in flight carry the old session id and are dropped
        self.session = SessionState(session_id=self.session.session_id)
        self._discard_inbox()
        if self.trigger is not None:
            self.trigger.reset()

        self.status_message = "Stopped."
        logger.info("Detection loop stopped")
        self._publish()

    # -------------------------------------------------------------------------
    # Step
    # -------------------------------------------------------------------------

    def step(self) -> None:
        """One frame-ready callback."""
        self._drain_inbox()
        if self.state is not LoopState.RUNNING:
            return

        frame = self.frame_source.current()
        if frame is None:
            return
        if frame.timestamp == self.session.last_timestamp:
            self.session.frames_skipped += 1
            return
        self.session.last_timestamp = frame.timestamp

        now_ms = self._clock() * 1000.0
        loop_start = time.perf_counter()

        t0 = time.perf_counter()
        result = self._detector.detect(frame.pixels, now_ms)
        detection_time = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        regions = self.regions_for(result, frame.width, frame.height)
        if regions:
            scores = compute_scores(
                frame.pixels,
                regions,
                max_samples=self.settings.max_samples,
                min_samples=self.settings.min_samples,
                lighting_threshold=self.settings.lighting_threshold,
                channel_order=self.channel_order
            )
        else:
            scores = ScoreSet.zero()
        scoring_time = (time.perf_counter() - t0) * 1000

        session = self.session
        session.frame_context = FrameContext(width=frame.width, height=frame.height, timestamp=frame.timestamp)
        session.scores = scores
        session.face_count = result.face_count
        session.frames_processed += 1
        self._publish()

        if result.face_count > 1:
            logger.debug(f"{result.face_count} faces detected, scoring the first")
        logger.debug(f"Scores: {scores.to_dict()} faces={result.face_count} "
                     f"detect={detection_time:.1f}ms score={scoring_time:.1f}ms")

        if self.trigger is not None:
            self.trigger.evaluate(scores, result.face_count, frame.pixels, now_ms, session.session_id)

        self._record_timing(detection_time, scoring_time, (time.perf_counter() - loop_start) * 1000)

    @staticmethod
    def regions_for(result: DetectionResult, width: int, height: int) -> Dict[str, Polygon]:
        """ROI polygons of the first face (single-face policy)."""
        if result.faces:
            return extract_regions(result.faces[0], width, height)
        if result.boxes:
            return regions_from_bbox(result.boxes[0], width, height)
        return {}

    # -------------------------------------------------------------------------
    # Inbox
    # -------------------------------------------------------------------------

    def _drain_inbox(self) -> None:
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return

            if self.state is not LoopState.RUNNING:
                logger.debug("Discarding inbox message: loop not running")
                continue

            if item is _ANALYZE_NOW:
                if self.trigger is None:
                    logger.warning("Analyze requested but no classifier is configured")
                    continue
                frame = self.frame_source.current()
                self.trigger.analyze_now(
                    None if frame is None else frame.pixels,
                    self._clock() * 1000.0,
                    self.session.session_id
                )
                self._publish()
            elif isinstance(item, ClassificationMessage):
                if item.session_id != self.session.session_id:
                    logger.debug(f"Discarding stale classification from session {item.session_id}")
                    continue
                self.trigger.apply(item)
                self._publish()

    def _discard_inbox(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------

    def snapshot(self) -> LoopSnapshot:
        """Current published outputs."""
        trigger = self.trigger
        return LoopSnapshot(
            state=self.state,
            frame_context=self.session.frame_context,
            scores=self.session.scores,
            face_count=self.session.face_count,
            classification_status=trigger.status if trigger else ClassificationStatus.IDLE,
            last_error=trigger.last_error if trigger else None,
            last_result=trigger.last_result if trigger else None,
            status_message=self.status_message
        )

    def _publish(self) -> None:
        if self._on_publish is not None:
            self._on_publish(self.snapshot())

    def _record_timing(self, detection: float, scoring: float, total: float) -> None:
        self.timing_stats['detection'].append(detection)
        self.timing_stats['scoring'].append(scoring)
        self.timing_stats['total'].append(total)
        for key in self.timing_stats:
            if len(self.timing_stats[key]) > cfg.TIMING_WINDOW:
                self.timing_stats[key] = self.timing_stats[key][-cfg.TIMING_WINDOW:]

    def _log_summary(self) -> None:
        session = self.session
        logger.info("=" * 60)
        logger.info(f"SESSION {session.session_id} SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Frames processed: {session.frames_processed}")
        logger.info(f"Repeat ticks skipped: {session.frames_skipped}")
        if self.trigger is not None:
            logger.info(f"Classification requests (since launch): {self.trigger.fire_count}")
        for key, values in self.timing_stats.items():
            if values:
                logger.info(f"  {key.capitalize():10}: {sum(values) / len(values):.1f} ms avg")
