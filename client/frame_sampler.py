#!/usr/bin/env python3
"""
Frame Sampler Module
Draws a bounded set of RGB samples from the pixels inside ROI polygons.

Cost scales with the sample budget, not with polygon area: the bounding box
of all polygons is walked on a stride grid sized so the number of visited
points stays near max_samples, whatever the zoom level of the face.

Point-in-polygon uses ray casting with a half-open crossing rule: an edge
counts when exactly one endpoint lies strictly above the point and the point
is strictly left of the crossing. Points on the minimum-x/minimum-y boundary
of an axis-aligned rectangle are inside, points on the maximum-x/maximum-y
boundary are outside. Vertices follow the same rule, so the result is always
deterministic.
"""

import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

import config as cfg
from roi_regions import Polygon

EMPTY_SAMPLES = np.empty((0, 3), dtype=np.uint8)


# =============================================================================
# POINT IN POLYGON
# =============================================================================

def point_in_polygon(x: float, y: float, polygon: Sequence[Tuple[float, float]]) -> bool:
    """Ray-casting containment test for a single point."""
    n = len(polygon)
    if n < 3:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = xi + (y - yi) * (xj - xi) / (yj - yi)
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def points_in_polygon(xs: np.ndarray, ys: np.ndarray, polygon: Sequence[Tuple[float, float]]) -> np.ndarray:
    """
    Vectorized version of point_in_polygon over arrays of coordinates.

    Returns:
        Boolean mask with the shape of xs
    """
    inside = np.zeros(xs.shape, dtype=bool)
    n = len(polygon)
    if n < 3:
        return inside

    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if yi != yj:
            crosses = (yi > ys) != (yj > ys)
            x_cross = xi + (ys - yi) * (xj - xi) / (yj - yi)
            inside ^= crosses & (xs < x_cross)
        j = i
    return inside


# =============================================================================
# SAMPLING
# =============================================================================

def bounding_box(
    polygons: Iterable[Polygon],
    width: int,
    height: int
) -> Optional[Tuple[int, int, int, int]]:
    """
    Integer bounding box of all polygon vertices, clamped to the frame.

    Returns:
        (x_min, y_min, x_max, y_max) or None if there are no vertices
    """
    xs = [p[0] for poly in polygons for p in poly]
    ys = [p[1] for poly in polygons for p in poly]
    if not xs:
        return None

    x_min = max(0, int(math.floor(min(xs))))
    y_min = max(0, int(math.floor(min(ys))))
    x_max = min(width - 1, int(math.ceil(max(xs))))
    y_max = min(height - 1, int(math.ceil(max(ys))))
    return (x_min, y_min, x_max, y_max)


def sample_stride(box_area: float, max_samples: int) -> int:
    """Grid stride that keeps the visited point count near max_samples."""
    if max_samples <= 0:
        return 1
    return max(1, int(math.floor(math.sqrt(box_area / max_samples))))


def sample_polygons(
    frame: np.ndarray,
    polygons: Iterable[Polygon],
    max_samples: int = None,
    channel_order: str = None
) -> np.ndarray:
    """
    Sample pixels inside the union of polygons.

    Args:
        frame: H x W x 3 (BGR or RGB) or H x W x 4 (alpha ignored) image
        polygons: Pixel-space polygons; entries with fewer than 3 vertices are ignored
        max_samples: Approximate number of grid points to visit
        channel_order: "bgr" or "rgb" layout of the first three channels

    Returns:
        (N, 3) array of RGB samples, empty when the region is unusable
    """
    if max_samples is None:
        max_samples = cfg.MAX_SAMPLES
    if channel_order is None:
        channel_order = cfg.FRAME_CHANNEL_ORDER

    if frame is None or frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(f"Expected H x W x 3 or H x W x 4 frame, got {getattr(frame, 'shape', None)}")
    if channel_order not in ("bgr", "rgb"):
        raise ValueError(f"Unknown channel order: {channel_order}")

    valid: List[Polygon] = [poly for poly in polygons if len(poly) >= 3]
    if not valid:
        return EMPTY_SAMPLES

    height, width = frame.shape[:2]
    box = bounding_box(valid, width, height)
    if box is None:
        return EMPTY_SAMPLES

    x_min, y_min, x_max, y_max = box
    box_w = x_max - x_min
    box_h = y_max - y_min
    if box_w <= 2 or box_h <= 2:
        return EMPTY_SAMPLES

    stride = sample_stride(box_w * box_h, max_samples)
    grid_x, grid_y = np.meshgrid(
        np.arange(x_min, x_max + 1, stride, dtype=np.int64),
        np.arange(y_min, y_max + 1, stride, dtype=np.int64)
    )
    grid_x = grid_x.ravel()
    grid_y = grid_y.ravel()

    fx = grid_x.astype(np.float64)
    fy = grid_y.astype(np.float64)
    mask = np.zeros(grid_x.shape, dtype=bool)
    for poly in valid:
        mask |= points_in_polygon(fx, fy, poly)

    if not mask.any():
        return EMPTY_SAMPLES

    pixels = frame[grid_y[mask], grid_x[mask], :3]
    if channel_order == "bgr":
        pixels = pixels[:, ::-1]
    return np.ascontiguousarray(pixels)
