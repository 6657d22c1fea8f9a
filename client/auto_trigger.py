#!/usr/bin/env python3
"""
Auto-Trigger Controller
Decides when a frame is submitted to the remote classifier.

Auto fire conditions (all required):
1. Lighting score >= adequacy threshold
2. At least one face detected
3. At least cooldown_ms since the previous fire (the first eligible step fires)
4. No earlier request still outstanding

A manual "analyze now" skips the cooldown but still needs a current frame and
is refused while a request is outstanding, so frames never queue up behind a
slow or hanging service.

Requests run on a worker thread. Completion never touches controller state
directly: the result is posted as a ClassificationMessage and applied later
by the detection loop on its own thread via apply().
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

import config as cfg
from api_client import ClassificationResponse
from photometric import ScoreSet

logger = logging.getLogger(__name__)


class ClassificationStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TriggerState:
    """Cooldown bookkeeping, mutated only by AutoTriggerController."""
    cooldown_ms: float
    last_fire_ms: Optional[float] = None

    def elapsed_ok(self, now_ms: float) -> bool:
        return self.last_fire_ms is None or now_ms - self.last_fire_ms >= self.cooldown_ms


@dataclass(frozen=True)
class ClassificationMessage:
    """Result of one classification request, tagged with the issuing session."""
    session_id: int
    response: ClassificationResponse
    manual: bool = False


class AutoTriggerController:
    """Rate-limited, fire-and-forget classification trigger."""

    def __init__(
        self,
        classify: Callable[[np.ndarray], ClassificationResponse],
        post: Callable[[ClassificationMessage], None],
        cooldown_ms: float = None,
        lighting_threshold: float = None,
        enabled: bool = None,
        executor: Executor = None
    ):
        self._classify = classify
        self._post = post
        self.state = TriggerState(cooldown_ms=cfg.COOLDOWN_MS if cooldown_ms is None else cooldown_ms)
        self.lighting_threshold = cfg.LIGHTING_THRESHOLD if lighting_threshold is None else lighting_threshold
        self.enabled = cfg.AUTO_TRIGGER_ENABLED if enabled is None else enabled
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="classify")

        self.status = ClassificationStatus.IDLE
        self.last_error: Optional[str] = None
        self.last_result: Optional[ClassificationResponse] = None
        self.fire_count = 0
        self._inflight: Optional[Future] = None

    # -------------------------------------------------------------------------
    # Decisions (loop thread)
    # -------------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        """A submitted request has not finished yet."""
        return self._inflight is not None and not self._inflight.done()

    def should_fire(self, scores: ScoreSet, face_count: int, now_ms: float) -> bool:
        """Whether an auto-trigger is allowed right now."""
        return (
            self.enabled
            and scores.lighting >= self.lighting_threshold
            and face_count >= 1
            and not self.busy
            and self.state.elapsed_ok(now_ms)
        )

    def evaluate(
        self,
        scores: ScoreSet,
        face_count: int,
        frame: Optional[np.ndarray],
        now_ms: float,
        session_id: int = 0
    ) -> bool:
        """
        Fire a classification request if the gate is open.

        Returns:
            True if a request was issued
        """
        if frame is None or not self.should_fire(scores, face_count, now_ms):
            return False
        self._fire(frame, now_ms, session_id, manual=False)
        return True

    def analyze_now(self, frame: Optional[np.ndarray], now_ms: float, session_id: int = 0) -> bool:
        """
        Manual request: bypasses the cooldown, needs a current frame and no
        outstanding request.

        Returns:
            True if a request was issued
        """
        if frame is None:
            logger.warning("Analyze requested but no frame is available yet")
            return False
        if self.busy:
            logger.warning("Analyze requested while a classification is still running")
            return False
        self._fire(frame, now_ms, session_id, manual=True)
        return True

    def _fire(self, frame: np.ndarray, now_ms: float, session_id: int, manual: bool) -> None:
        self.state.last_fire_ms = now_ms
        self.status = ClassificationStatus.RUNNING
        self.fire_count += 1
        logger.info(f"{'Manual' if manual else 'Auto'} classification request #{self.fire_count} "
                    f"at t={now_ms:.0f}ms")
        self._inflight = self._executor.submit(self._run, frame, session_id, manual)

    # -------------------------------------------------------------------------
    # Worker thread
    # -------------------------------------------------------------------------

    def _run(self, frame: np.ndarray, session_id: int, manual: bool) -> None:
        try:
            response = self._classify(frame)
        except Exception as e:
            logger.exception("Classification request crashed")
            response = ClassificationResponse(success=False, message=f"Classification error: {e}")
        self._post(ClassificationMessage(session_id=session_id, response=response, manual=manual))

    # -------------------------------------------------------------------------
    # Results (loop thread)
    # -------------------------------------------------------------------------

    def apply(self, message: ClassificationMessage) -> None:
        """Record a classification result. Call only from the loop thread."""
        response = message.response
        self.last_result = response
        if response.success:
            self.status = ClassificationStatus.DONE
            self.last_error = None
            logger.info(f"Classification done: acne_class={response.acne_class} "
                        f"acne_prob={response.acne_prob}")
        else:
            self.status = ClassificationStatus.FAILED
            self.last_error = response.message
            logger.error(f"Classification failed: {response.message}")

    def reset(self) -> None:
        """
        Forget cooldown and results, e.g. when a session stops.

        An outstanding request keeps blocking new ones until it finishes;
        its result is dropped by the loop as stale.
        """
        self.state.last_fire_ms = None
        self.status = ClassificationStatus.IDLE
        self.last_error = None
        self.last_result = None

    def shutdown(self) -> None:
        """Stop accepting work; queued requests are dropped."""
        self._executor.shutdown(wait=False, cancel_futures=True)
