#!/usr/bin/env python3
"""
ROI Region Module
Builds pixel-space polygons over facial sub-areas from detector output.

Regions (named from the subject's point of view):
1. left_cheek  - ring around face mesh point 280
2. right_cheek - ring around face mesh point 50
3. nose_bridge - from between the brows down to above the nose tip

Indices refer to the MediaPipe face mesh topology (468 points, 478 with irises).
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

Point = Tuple[float, float]
Polygon = List[Point]


@dataclass(frozen=True)
class Landmark:
    """Normalized face landmark, x and y in [0, 1] of frame width/height."""
    x: float
    y: float


# =============================================================================
# FACE MESH REGION INDICES
# =============================================================================

LEFT_CHEEK: Tuple[int, ...] = (346, 347, 330, 266, 425, 411, 352, 345)
RIGHT_CHEEK: Tuple[int, ...] = (117, 118, 101, 36, 205, 187, 123, 116)
NOSE_BRIDGE: Tuple[int, ...] = (168, 417, 351, 419, 248, 281, 5, 51, 3, 196, 122, 193)

REGION_INDICES: Dict[str, Tuple[int, ...]] = {
    'left_cheek': LEFT_CHEEK,
    'right_cheek': RIGHT_CHEEK,
    'nose_bridge': NOSE_BRIDGE,
}

CHEEK_REGIONS: Tuple[str, ...] = ('left_cheek', 'right_cheek')

# Fractions of the face box (x1, y1, x2, y2) used when only a bounding box
# is available. The box is in image coordinates, so the subject's left cheek
# sits on the image right.
BBOX_REGION_FRACTIONS: Dict[str, Tuple[float, float, float, float]] = {
    'left_cheek': (0.60, 0.50, 0.85, 0.75),
    'right_cheek': (0.15, 0.50, 0.40, 0.75),
    'nose_bridge': (0.42, 0.30, 0.58, 0.60),
}


# =============================================================================
# EXTRACTION
# =============================================================================

def landmarks_to_polygon(
    landmarks: Sequence[Landmark],
    indices: Sequence[int],
    width: int,
    height: int
) -> Polygon:
    """
    Select landmarks by index and convert them to pixel space.

    Returns:
        Ordered polygon, or an empty list if any index is missing
    """
    count = len(landmarks)
    if any(i < 0 or i >= count for i in indices):
        return []
    return [(landmarks[i].x * width, landmarks[i].y * height) for i in indices]


def extract_regions(
    landmarks: Sequence[Landmark],
    width: int,
    height: int
) -> Dict[str, Polygon]:
    """
    Build every named ROI polygon for one face.

    Detection can legitimately return fewer points than the topology defines,
    so regions with missing indices come back empty instead of raising.

    Args:
        landmarks: Normalized landmarks of a single face
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        Dict of region name -> polygon (possibly empty)
    """
    return {
        name: landmarks_to_polygon(landmarks, indices, width, height)
        for name, indices in REGION_INDICES.items()
    }


def regions_from_bbox(
    bbox: Tuple[float, float, float, float],
    width: int,
    height: int
) -> Dict[str, Polygon]:
    """
    Approximate the named regions as rectangles inside a face bounding box.

    Args:
        bbox: (x1, y1, x2, y2) in pixels
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        Dict of region name -> 4-point polygon clipped to the frame
        (empty if the box has no area)
    """
    x1, y1, x2, y2 = bbox
    face_w = x2 - x1
    face_h = y2 - y1
    if face_w <= 0 or face_h <= 0:
        return {name: [] for name in BBOX_REGION_FRACTIONS}

    regions = {}
    for name, (fx1, fy1, fx2, fy2) in BBOX_REGION_FRACTIONS.items():
        rx1 = min(max(x1 + fx1 * face_w, 0.0), float(width))
        ry1 = min(max(y1 + fy1 * face_h, 0.0), float(height))
        rx2 = min(max(x1 + fx2 * face_w, 0.0), float(width))
        ry2 = min(max(y1 + fy2 * face_h, 0.0), float(height))
        if rx2 <= rx1 or ry2 <= ry1:
            regions[name] = []
        else:
            regions[name] = [(rx1, ry1), (rx2, ry1), (rx2, ry2), (rx1, ry2)]
    return regions
