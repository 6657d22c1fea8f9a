"""
Tests for the detection loop: lifecycle, frame de-duplication, scoring
publication, auto-trigger wiring and stale result handling.
"""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest

_client_dir = str(Path(__file__).resolve().parent.parent / "client")
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from api_client import ClassificationResponse
from auto_trigger import ClassificationStatus
from camera_manager import ScanSettings
from detection_loop import DetectionLoop, FrameContext, FrameScheduler, LoopState
from fakes import (
    DeferredExecutor,
    FakeClock,
    FakeDetector,
    FakeFrameSource,
    InlineExecutor,
    make_face_landmarks,
    solid_frame,
)
from landmark_detector import DetectionResult, DetectorInitError
from photometric import ScoreSet

GRAY_LIGHTING = 37.647
GRAY_REDNESS = 16.667

# ─── Fixtures ─────────────────────────────────────────────────


def _ok_classify(frame):
    return ClassificationResponse(success=True, message="ok", acne_class=2, acne_prob=0.4)


def _make_loop(source=None, detector=None, classify=_ok_classify, executor=None, **settings):
    source = source or FakeFrameSource()
    detector = detector or FakeDetector()
    clock = FakeClock()
    loop = DetectionLoop(
        frame_source=source,
        detector_factory=lambda: detector,
        classify=classify,
        settings=ScanSettings(**settings),
        channel_order="bgr",
        clock=clock,
        trigger_executor=executor or DeferredExecutor(),
    )
    return loop, source, detector, clock


class _AdvancingSource(FakeFrameSource):
    """Serves a new frame on every poll."""

    def current(self):
        frame = super().current()
        self.next_frame()
        return frame


# ─── Lifecycle ────────────────────────────────────────────────

def test_detector_failure_leaves_loop_idle():
    def broken_factory():
        raise DetectorInitError("model file missing")

    source = FakeFrameSource()
    loop = DetectionLoop(frame_source=source, detector_factory=broken_factory)

    assert not loop.start()
    assert loop.state is LoopState.IDLE
    assert "Detector load failed" in loop.status_message
    assert source.started == 0, "camera must not open without a detector"


def test_camera_failure_leaves_loop_idle():
    loop, source, _, _ = _make_loop(source=FakeFrameSource(fail_start=True))

    assert not loop.start()
    assert loop.state is LoopState.IDLE
    assert "Camera failed" in loop.status_message


def test_start_runs_and_opens_new_session():
    loop, source, _, _ = _make_loop()
    assert loop.start()
    assert loop.state is LoopState.RUNNING
    assert loop.session.session_id == 1
    assert source.started == 1


def test_stop_releases_camera_and_resets_outputs():
    loop, source, detector, _ = _make_loop()
    loop.start()
    loop.step()
    assert loop.snapshot().scores.lighting > 0

    loop.stop()
    snapshot = loop.snapshot()
    assert snapshot.state is LoopState.STOPPED
    assert snapshot.scores == ScoreSet.zero()
    assert snapshot.face_count == 0
    assert snapshot.status_message == "Stopped."
    assert source.released == 1
    assert not detector.closed, "detector stays loaded between sessions"

    calls = len(detector.calls)
    loop.step()
    assert len(detector.calls) == calls, "stopped loop must not process frames"


def test_close_releases_detector_and_worker():
    executor = DeferredExecutor()
    loop, _, detector, _ = _make_loop(executor=executor)
    loop.start()
    loop.close()

    assert detector.closed
    assert executor.shut_down


# ─── Frame processing ─────────────────────────────────────────

def test_repeated_frame_is_processed_once():
    loop, source, detector, _ = _make_loop(auto_trigger=False)
    loop.start()

    for _ in range(3):
        loop.step()
    assert len(detector.calls) == 1
    assert loop.session.frames_skipped == 2

    source.next_frame()
    loop.step()
    assert len(detector.calls) == 2


def test_detector_receives_clock_milliseconds():
    loop, _, detector, clock = _make_loop(auto_trigger=False)
    loop.start()
    loop.step()
    assert detector.calls == [pytest.approx(clock.now * 1000.0)]


def test_scores_are_published_with_their_frame():
    published = []
    loop, source, _, _ = _make_loop(auto_trigger=False)
    loop._on_publish = published.append
    loop.start()
    loop.step()

    snapshot = published[-1]
    assert snapshot.frame_context == FrameContext(width=640, height=480, timestamp=source.timestamp)
    assert snapshot.scores.lighting == pytest.approx(GRAY_LIGHTING, abs=0.01)
    assert snapshot.scores.redness == pytest.approx(GRAY_REDNESS, abs=0.01)
    assert snapshot.face_count == 1


def test_only_first_face_is_scored():
    frame = solid_frame((128, 128, 128))
    frame[:150, :200] = (255, 255, 255)
    second_face = make_face_landmarks({
        'left_cheek': (0.15, 0.15, 0.05),
        'right_cheek': (0.08, 0.15, 0.05),
        'nose_bridge': (0.12, 0.10, 0.03),
    })
    detector = FakeDetector(DetectionResult(faces=[make_face_landmarks(), second_face]))
    loop, _, _, _ = _make_loop(source=FakeFrameSource(frame), detector=detector, auto_trigger=False)
    loop.start()
    loop.step()

    snapshot = loop.snapshot()
    assert snapshot.face_count == 2
    assert snapshot.scores.lighting == pytest.approx(GRAY_LIGHTING, abs=0.01)


def test_no_face_scores_zero():
    loop, _, _, _ = _make_loop(detector=FakeDetector(DetectionResult()))
    loop.start()
    loop.step()

    snapshot = loop.snapshot()
    assert snapshot.scores == ScoreSet.zero()
    assert snapshot.face_count == 0
    assert loop.trigger.fire_count == 0


def test_bounding_box_detector_is_scored():
    detector = FakeDetector(DetectionResult(boxes=[(160.0, 120.0, 480.0, 420.0)]))
    loop, _, _, _ = _make_loop(detector=detector, auto_trigger=False)
    loop.start()
    loop.step()

    snapshot = loop.snapshot()
    assert snapshot.face_count == 1
    assert snapshot.scores.lighting == pytest.approx(GRAY_LIGHTING, abs=0.01)


def test_same_frames_give_same_scores():
    def run_once():
        loop, source, _, _ = _make_loop(auto_trigger=False)
        loop.start()
        scores = []
        for value in (60, 128, 200):
            source.next_frame(solid_frame((value, value - 20, value + 20)))
            loop.step()
            scores.append(loop.snapshot().scores)
        return scores

    assert run_once() == run_once()


# ─── Auto-trigger wiring ──────────────────────────────────────

def test_result_is_applied_on_the_next_step():
    loop, _, _, _ = _make_loop(executor=InlineExecutor())
    loop.start()

    loop.step()
    assert loop.trigger.fire_count == 1
    assert loop.snapshot().classification_status is ClassificationStatus.RUNNING

    loop.step()
    snapshot = loop.snapshot()
    assert snapshot.classification_status is ClassificationStatus.DONE
    assert snapshot.last_result.acne_class == 2


def test_cooldown_uses_loop_clock():
    loop, source, _, clock = _make_loop(executor=InlineExecutor(), cooldown_ms=2500)
    loop.start()
    loop.step()

    clock.advance(1.0)
    source.next_frame()
    loop.step()
    assert loop.trigger.fire_count == 1

    clock.advance(1.5)
    source.next_frame()
    loop.step()
    assert loop.trigger.fire_count == 2


def test_manual_analysis_request():
    loop, _, _, _ = _make_loop(executor=InlineExecutor(), auto_trigger=False)
    loop.start()
    loop.request_analysis()
    loop.step()

    assert loop.trigger.fire_count == 1
    assert loop.snapshot().classification_status is ClassificationStatus.DONE


def test_manual_request_without_classifier_is_ignored():
    loop, _, _, _ = _make_loop(classify=None)
    loop.start()
    loop.request_analysis()
    loop.step()

    assert loop.trigger is None
    assert loop.snapshot().classification_status is ClassificationStatus.IDLE


def test_result_arriving_after_stop_is_discarded():
    executor = DeferredExecutor()
    loop, _, _, _ = _make_loop(executor=executor)
    loop.start()
    loop.step()
    assert loop.trigger.fire_count == 1

    loop.stop()
    executor.run_all()
    loop.step()

    assert loop.snapshot().classification_status is ClassificationStatus.IDLE
    assert loop.snapshot().last_result is None


def test_result_from_previous_session_is_discarded():
    executor = DeferredExecutor()
    loop, source, detector, _ = _make_loop(executor=executor)
    loop.start()
    loop.step()

    loop.stop()
    assert loop.start()
    assert loop.session.session_id == 2

    detector.result = DetectionResult()
    executor.run_all()
    loop.step()

    snapshot = loop.snapshot()
    assert snapshot.classification_status is ClassificationStatus.IDLE
    assert snapshot.last_result is None


# ─── Scheduler ────────────────────────────────────────────────

def test_scheduler_stops_after_cancel_inside_step():
    calls = []

    def step():
        calls.append(1)
        if len(calls) == 3:
            scheduler.cancel()

    scheduler = FrameScheduler(step, hz=1000)
    scheduler.arm()
    scheduler.run()
    assert len(calls) == 3
    assert not scheduler.armed


def test_scheduler_without_arm_does_nothing():
    calls = []
    FrameScheduler(lambda: calls.append(1), hz=1000).run()
    assert calls == []


def test_scheduler_cancel_from_other_thread():
    calls = []
    scheduler = FrameScheduler(lambda: calls.append(1), hz=50)
    scheduler.arm()
    worker = threading.Thread(target=scheduler.run)
    worker.start()
    time.sleep(0.1)
    scheduler.cancel()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert len(calls) >= 1


def test_run_tears_down_after_stop_from_callback():
    published = []

    def on_publish(snapshot):
        published.append(snapshot)
        if snapshot.state is LoopState.RUNNING and len(published) == 3:
            loop.stop()

    source = _AdvancingSource()
    loop = DetectionLoop(
        frame_source=source,
        detector_factory=FakeDetector,
        settings=ScanSettings(tick_hz=1000.0, auto_trigger=False),
        on_publish=on_publish,
    )
    assert loop.start()
    loop.run()

    assert loop.state is LoopState.STOPPED
    assert source.released == 1
    running = [s for s in published if s.state is LoopState.RUNNING]
    assert len(running) == 3
    assert published[-1].state is LoopState.STOPPED
