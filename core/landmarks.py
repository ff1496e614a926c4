"""
Landmark Frame Module

This module holds one frame's worth of facial landmarks as sent by the
browser-side detector (MediaPipe Face Mesh, 478 points). The server never
runs detection itself; it only parses the point list the client computed.

Any landmark may be missing. Missing or unusable points are stored as NaN
rows so that downstream geometry can substitute a neutral value for the
affected measurement instead of rejecting the whole frame.

Usage:
    from core.landmarks import LandmarkFrame, LANDMARKS

    frame = LandmarkFrame.from_payload(message["landmarks"])
    nose = frame.point(LANDMARKS["nose_tip"])
    if nose is not None:
        x, y, z = nose
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


# Key landmark indices in the MediaPipe Face Mesh numbering
# (468 base points + 10 iris points). "left"/"right" are the subject's sides.
LANDMARKS: Dict[str, int] = {
    "nose_tip": 1,
    "chin": 152,
    "right_eye_outer": 33,
    "right_eye_inner": 133,
    "right_eye_top": 159,
    "right_eye_bottom": 145,
    "right_iris": 468,
    "left_eye_outer": 263,
    "left_eye_inner": 362,
    "left_eye_top": 386,
    "left_eye_bottom": 374,
    "left_iris": 473,
    "mouth_top": 13,
    "mouth_bottom": 14,
    "mouth_right": 61,
    "mouth_left": 291,
    "right_cheek": 205,
    "left_cheek": 425,
}

# Upper bound on accepted points per frame (478 expected)
MAX_LANDMARKS = 1000

Point3D = Tuple[float, float, float]


class LandmarkFormatError(ValueError):
    """Raised when a landmark payload cannot be interpreted as a frame."""
    pass


def _coerce(value: Any) -> Optional[float]:
    """Convert a coordinate to a finite float, or None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _parse_entry(entry: Any) -> Optional[Point3D]:
    """
    Parse a single landmark entry.

    Accepts {"x": .., "y": .., "z": ..} mappings and [x, y] / [x, y, z]
    sequences. Returns None when x or y is unusable; a missing z becomes 0.
    """
    if isinstance(entry, Mapping):
        x, y, z = entry.get("x"), entry.get("y"), entry.get("z", 0.0)
    elif isinstance(entry, (list, tuple, np.ndarray)) and len(entry) >= 2:
        x, y = entry[0], entry[1]
        z = entry[2] if len(entry) > 2 else 0.0
    else:
        return None

    fx, fy = _coerce(x), _coerce(y)
    if fx is None or fy is None:
        return None

    fz = _coerce(z)
    return (fx, fy, fz if fz is not None else 0.0)


@dataclass(frozen=True, eq=False)
class LandmarkFrame:
    """
    A single frame of labeled 3D landmark positions.

    Attributes:
        points: Array of shape (N, 3) with (x, y, z) per landmark index.
                x, y are normalized to [0, 1] relative to the video frame.
                Rows of NaN mark landmarks that were not detected.
    """

    points: np.ndarray

    @classmethod
    def empty(cls) -> "LandmarkFrame":
        """Create a frame with no landmarks."""
        return cls(points=np.full((0, 3), np.nan, dtype=np.float64))

    @classmethod
    def from_payload(cls, payload: Any) -> "LandmarkFrame":
        """
        Build a frame from a decoded JSON payload.

        Args:
            payload: One of
                - list/tuple where position i holds landmark i
                  (entries may be null),
                - mapping of index (int or numeric string) to entry,
                - numpy array of shape (N, 2) or (N, 3).

        Returns:
            LandmarkFrame with unusable entries marked missing.

        Raises:
            LandmarkFormatError: If the payload has an unsupported type,
                an invalid index, or too many entries.
        """
        if isinstance(payload, np.ndarray):
            if payload.ndim != 2 or payload.shape[1] not in (2, 3):
                raise LandmarkFormatError(
                    f"Landmark array must have shape (N, 2) or (N, 3), got {payload.shape}"
                )
            entries = {i: row for i, row in enumerate(payload.tolist())}
        elif isinstance(payload, Mapping):
            entries = {}
            for key, entry in payload.items():
                try:
                    index = int(key)
                except (TypeError, ValueError):
                    raise LandmarkFormatError(f"Invalid landmark index: {key!r}")
                if index < 0:
                    raise LandmarkFormatError(f"Negative landmark index: {index}")
                entries[index] = entry
        elif isinstance(payload, (list, tuple)):
            entries = dict(enumerate(payload))
        else:
            raise LandmarkFormatError(
                f"Unsupported landmark payload type: {type(payload).__name__}"
            )

        size = max(entries) + 1 if entries else 0
        if size > MAX_LANDMARKS:
            raise LandmarkFormatError(
                f"Too many landmarks: {size} (max {MAX_LANDMARKS})"
            )

        points = np.full((size, 3), np.nan, dtype=np.float64)
        for index, entry in entries.items():
            parsed = _parse_entry(entry)
            if parsed is not None:
                points[index] = parsed

        return cls(points=points)

    def __len__(self) -> int:
        return int(self.points.shape[0])

    def has(self, index: int) -> bool:
        """Check whether landmark `index` was detected."""
        return 0 <= index < len(self) and bool(np.isfinite(self.points[index]).all())

    def point(self, index: int) -> Optional[Point3D]:
        """Return landmark `index` as (x, y, z) floats, or None if missing."""
        if not self.has(index):
            return None
        x, y, z = self.points[index]
        return (float(x), float(y), float(z))

    def named(self, name: str) -> Optional[Point3D]:
        """Return a landmark by its name in LANDMARKS."""
        return self.point(LANDMARKS[name])

    def count_valid(self) -> int:
        """Number of detected landmarks in the frame."""
        if len(self) == 0:
            return 0
        return int(np.isfinite(self.points).all(axis=1).sum())
