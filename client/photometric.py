#!/usr/bin/env python3
"""
Photometric Scoring Module
Turns ROI pixel samples into per-frame skin capture signals.

Metrics (all 0-100):
1. Lighting - BT.709 luminance level plus a small contrast bonus
2. Redness  - mean red excess over the green/blue average
3. Shine    - share of bright, low-saturation (specular) pixels

Under-sampled regions score 0 ("unknown"), never a real low value.
Redness and shine are only trusted when lighting clears the adequacy threshold.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

import config as cfg
from frame_sampler import sample_polygons
from roi_regions import CHEEK_REGIONS, Polygon

LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)


@dataclass(frozen=True)
class ScoreSet:
    """Scores published for one frame."""
    lighting: float
    redness: float
    shine: float

    @classmethod
    def zero(cls) -> "ScoreSet":
        return cls(lighting=0.0, redness=0.0, shine=0.0)

    def to_dict(self) -> Dict:
        return {
            'lighting': round(self.lighting, 1),
            'redness': round(self.redness, 1),
            'shine': round(self.shine, 1),
        }


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return float(min(high, max(low, value)))


def _as_rgb(samples: np.ndarray) -> np.ndarray:
    return np.asarray(samples, dtype=np.float64).reshape(-1, 3)


# =============================================================================
# METRICS
# =============================================================================

def score_lighting(samples: np.ndarray, min_samples: int = None) -> float:
    """
    Score lighting adequacy from relative luminance.

    Mean luminance carries 75% of the score, its population standard
    deviation 25% (full marks at std 64).

    Returns:
        Score in [0, 100], 0 if under-sampled
    """
    if min_samples is None:
        min_samples = cfg.MIN_SAMPLES
    rgb = _as_rgb(samples)
    if len(rgb) < min_samples:
        return 0.0

    luma = rgb @ LUMA_WEIGHTS
    mean_score = clamp(luma.mean() / 255.0 * 100.0)
    contrast_score = clamp(luma.std() / cfg.LIGHTING_CONTRAST_FULL_STD * 100.0)
    return clamp(cfg.LIGHTING_MEAN_WEIGHT * mean_score + cfg.LIGHTING_CONTRAST_WEIGHT * contrast_score)


def score_redness(samples: np.ndarray, min_samples: int = None) -> float:
    """
    Score redness from the per-pixel proxy r - (g + b) / 2.

    The mean proxy (roughly -255..255) is remapped so -20 -> 0 and 100 -> 100.

    Returns:
        Score in [0, 100], 0 if under-sampled
    """
    if min_samples is None:
        min_samples = cfg.MIN_SAMPLES
    rgb = _as_rgb(samples)
    if len(rgb) < min_samples:
        return 0.0

    proxy = rgb[:, 0] - (rgb[:, 1] + rgb[:, 2]) / 2.0
    return clamp((proxy.mean() + cfg.REDNESS_OFFSET) / cfg.REDNESS_SPAN * 100.0)


def score_shine(samples: np.ndarray, min_samples: int = None) -> float:
    """
    Score shine as the amplified fraction of specular-looking pixels.

    A pixel is shiny when max(r, g, b) > 210 and (max - min) / max < 0.35.

    Returns:
        Score in [0, 100], 0 if under-sampled
    """
    if min_samples is None:
        min_samples = cfg.MIN_SAMPLES
    rgb = _as_rgb(samples)
    total = len(rgb)
    if total < min_samples:
        return 0.0

    value = rgb.max(axis=1)
    spread = value - rgb.min(axis=1)
    saturation = np.divide(spread, value, out=np.zeros_like(value), where=value > 0)
    shiny = np.count_nonzero((value > cfg.SHINE_MIN_VALUE) & (saturation < cfg.SHINE_MAX_SATURATION))
    return clamp(shiny / total * cfg.SHINE_GAIN)


# =============================================================================
# FRAME SCORING
# =============================================================================

def compute_scores(
    frame: np.ndarray,
    regions: Dict[str, Polygon],
    max_samples: int = None,
    min_samples: int = None,
    lighting_threshold: float = None,
    channel_order: Optional[str] = None
) -> ScoreSet:
    """
    Score one frame from its ROI polygons.

    Lighting and shine sample the union of all regions, redness samples the
    cheeks only. Below the lighting threshold redness and shine are forced
    to 0 because color proxies are unreliable in low light.

    Args:
        frame: Image the regions were extracted for
        regions: Region name -> polygon, as built by roi_regions
        max_samples: Sampling budget per region set
        min_samples: Minimum samples for a metric to be scored
        lighting_threshold: Lighting score needed to score redness/shine
        channel_order: "bgr" or "rgb"

    Returns:
        ScoreSet for the frame
    """
    if lighting_threshold is None:
        lighting_threshold = cfg.LIGHTING_THRESHOLD

    face_samples = sample_polygons(frame, regions.values(), max_samples, channel_order)
    lighting = score_lighting(face_samples, min_samples)
    if lighting < lighting_threshold:
        return ScoreSet(lighting=lighting, redness=0.0, shine=0.0)

    cheek_samples = sample_polygons(
        frame, [regions.get(name, []) for name in CHEEK_REGIONS], max_samples, channel_order
    )
    return ScoreSet(
        lighting=lighting,
        redness=score_redness(cheek_samples, min_samples),
        shine=score_shine(face_samples, min_samples),
    )
