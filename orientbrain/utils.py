from __future__ import annotations

import math
from typing import Sequence

import numpy as np

PITCH_LIMIT = 89.0


def normalize_angle(angle: float) -> float:
    """Wrap an angle in degrees into (-180, 180]."""
    angle = float(angle)
    if -180.0 < angle <= 180.0:
        return angle
    angle = angle % 360.0
    if angle > 180.0:
        angle -= 360.0
    return angle


def angle_diff(a: float, b: float) -> float:
    """Unsigned shortest distance between two headings, in [0, 180]."""
    d = abs(float(a) - float(b)) % 360.0
    if d > 180.0:
        d = 360.0 - d
    return d


def clamp(val: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, val))


def clamp_pitch(pitch: float) -> float:
    return clamp(float(pitch), -PITCH_LIMIT, PITCH_LIMIT)


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def heading(x: float, y: float) -> float:
    """Yaw in degrees of a planar vector."""
    return math.degrees(math.atan2(y, x))


def magnitude(vec: Sequence[float]) -> float:
    return float(np.linalg.norm(np.asarray(vec, dtype=np.float64)))


def yaw_deltas(yaws: Sequence[float]) -> np.ndarray:
    # yaws are newest-first; delta i is newer minus older
    out = np.zeros(max(0, len(yaws) - 1), dtype=np.float64)
    for i in range(1, len(yaws)):
        out[i - 1] = normalize_angle(yaws[i - 1] - yaws[i])
    return out
