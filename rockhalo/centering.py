"""Locating a halo centre from densities, potentials and bound particles."""

from __future__ import annotations

import numpy as np

from rockhalo.potential import ParticleTable, compute_potential
from rockhalo.settings import Settings

DEFAULT_CORE_COUNT = 300
DEFAULT_REFINE_RADIUS = 5e-3
DEFAULT_REFINE_LIMIT = 200


def log_radial_bins(rmin: float, rmax: float, nticks: int) -> np.ndarray:
    """Bin edges spaced evenly in log radius from ``rmin`` to ``rmax``."""
    if nticks < 2:
        raise ValueError("at least two bin edges are required")
    if not rmin > 0:
        raise ValueError("rmin must be positive")
    if not rmax > rmin:
        raise ValueError("rmax must exceed rmin")
    ratio = (rmax / rmin) ** (1.0 / (nticks - 1))
    return rmin * ratio ** np.arange(nticks, dtype=np.float64)


def mean_phase_space(table: ParticleTable, count: int) -> np.ndarray:
    """Mean position and velocity of the first ``count`` rows of ``table``."""
    if count < 1:
        raise ValueError("count must be at least one")
    n = min(int(count), len(table))
    if n == 0:
        raise ValueError("table holds no particles")
    return table.pos[:n].mean(axis=0)


def potential_minimum_center(
    table: ParticleTable, settings: Settings, count: int = DEFAULT_CORE_COUNT
) -> np.ndarray:
    """Phase-space centre of the ``count`` particles with the deepest potential.

    Computes the potential of every particle in ``table`` and leaves the
    table sorted from the deepest potential outwards.
    """
    if len(table) == 0:
        raise ValueError("table holds no particles")
    table.sort_by_distance()
    compute_potential(table, settings)
    table.sort_by_potential()
    return mean_phase_space(table, count)


def refine_center(
    table: ParticleTable,
    radius: float = DEFAULT_REFINE_RADIUS,
    limit: int = DEFAULT_REFINE_LIMIT,
) -> np.ndarray:
    """Mean phase-space position of the innermost bound particles within ``radius``.

    Uses the distances already stored in ``table.r2``; at most ``limit``
    particles, taken in order of increasing distance, enter the mean.
    """
    if limit < 1:
        raise ValueError("limit must be at least one")
    order = np.argsort(table.r2, kind="stable")
    chosen = (table.r2[order] < radius * radius) & (table.ke[order] < table.pe[order])
    picked = order[chosen][: int(limit)]
    if len(picked) == 0:
        raise ValueError("no bound particles inside the refinement radius")
    return table.pos[picked].mean(axis=0)


def remove_unbound(table: ParticleTable) -> ParticleTable:
    """New table holding only particles whose kinetic energy does not exceed their potential."""
    unbound = (table.ke - table.pe) > 0
    return table.select(~unbound)