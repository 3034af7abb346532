"""Enclosed-mass lookup and tidal field of a fixed NFW host halo."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

TABLE_SIZE = 100_000
"""Number of entries of the M(<r)/r table, at 10 pc spacing."""
_RHOS = 0.000160686e19
_RS = 0.080


def _mass_over_radius(r: np.ndarray) -> np.ndarray:
    r = np.asarray(r, dtype=np.float64)
    safe = np.where(r > 0.000001, r, 1.0)
    value = (
        4 * math.pi * _RHOS * _RS**3
        * (-(safe / (safe + _RS)) - np.log(_RS / (safe + _RS)))
    ) / safe
    return np.where(r > 0.000001, value, 0.0)


def _index_radius(index) -> np.ndarray:
    return np.asarray(index).astype(np.float32).astype(np.float64) / 1e5


def enclosed_mass_over_radius(index: int) -> float:
    """M(<r)/r of the host halo at table index ``index`` (10 pc steps)."""
    return float(_mass_over_radius(_index_radius(index)))


def mass_over_radius_table(center: Sequence[float]) -> np.ndarray:
    """Table of M(<r)/r relative to its value at the distance of ``center``."""
    rh = math.sqrt(sum(float(c) ** 2 for c in center[:3]))
    j = int(rh * 1e5)
    values = _mass_over_radius(_index_radius(np.arange(TABLE_SIZE)))
    return values - enclosed_mass_over_radius(j)


def tidal_acceleration(axis: int, pos: Sequence[float], gc: float) -> float:
    """Acceleration component ``axis`` from the host halo at position ``pos``."""
    rhos = float(np.float32(_RHOS))
    rs = float(np.float32(_RS))
    x, y, z = (float(v) for v in pos[:3])
    if not (abs(x) > 0.000001 and abs(y) > 0.000001 and abs(z) > 0.000001):
        return 0.0
    if axis not in (0, 1, 2):
        return 0.0
    component = (x, y, z)[axis]
    s = x * x + y * y + z * z
    radius = math.sqrt(s)
    edge = (rs + radius) ** 2
    bracket = 2 * s + rs * radius + edge * math.log(rs) - edge * math.log(rs + radius)
    return (-4 * gc * math.pi * rhos * rs**3 * component * bracket) / (s**1.5 * edge)