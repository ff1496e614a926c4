"""
Shared fixtures for the test suite.

Landmark payloads are built the way the browser sends them: a list of 478
entries indexed by MediaPipe landmark number, with null for points that
were not detected.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.landmarks import LANDMARKS

NUM_LANDMARKS = 478

# A level, relaxed face: no rotation, eyes open, mouth closed, no smile
NEUTRAL_FACE = {
    "nose_tip": (0.5, 0.5),
    "chin": (0.5, 0.65),
    "right_eye_outer": (0.4, 0.4),
    "right_eye_inner": (0.45, 0.4),
    "right_eye_top": (0.425, 0.39),
    "right_eye_bottom": (0.425, 0.41),
    "right_iris": (0.425, 0.4),
    "left_eye_outer": (0.6, 0.4),
    "left_eye_inner": (0.55, 0.4),
    "left_eye_top": (0.575, 0.39),
    "left_eye_bottom": (0.575, 0.41),
    "left_iris": (0.575, 0.4),
    "mouth_top": (0.5, 0.58),
    "mouth_bottom": (0.5, 0.585),
    "mouth_right": (0.45, 0.58),
    "mouth_left": (0.55, 0.58),
    "right_cheek": (0.43, 0.52),
    "left_cheek": (0.57, 0.52),
}


def build_landmarks(points, base=None):
    """
    Build a browser-style landmark list.

    Args:
        points: Mapping of landmark name to (x, y) or (x, y, z).
        base: Optional mapping applied first (e.g. NEUTRAL_FACE).

    Returns:
        List of 478 entries, {"x", "y", "z"} dicts or None.
    """
    merged = dict(base or {})
    merged.update(points)

    landmarks = [None] * NUM_LANDMARKS
    for name, coords in merged.items():
        if coords is None:
            continue
        x, y = coords[0], coords[1]
        z = coords[2] if len(coords) > 2 else 0.0
        landmarks[LANDMARKS[name]] = {"x": x, "y": y, "z": z}
    return landmarks


@pytest.fixture
def neutral_face():
    """Landmark list for a relaxed, level face."""
    return build_landmarks({}, base=NEUTRAL_FACE)


@pytest.fixture
def face_builder():
    """Factory: override NEUTRAL_FACE points and return a landmark list."""
    def _build(**points):
        return build_landmarks(points, base=NEUTRAL_FACE)
    return _build
