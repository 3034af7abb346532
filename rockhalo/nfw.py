"""NFW concentration and scale-radius estimates."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from rockhalo.settings import Settings

MAX_SCALE_BINS = 50
MIN_PART_PER_BIN = 15
MIN_SCALE_PART = 100
_MAX_NEWTON_STEPS = 1000


def c_to_f(c: float) -> float:
    """Map an NFW concentration to the ratio used by the Klypin estimate."""
    cp1 = 1.0 + c
    return c * cp1 / (math.log1p(c) * cp1 - c)


def f_to_c(f: float) -> float:
    """Invert :func:`c_to_f` by Newton iteration."""
    c = f
    tc = c_to_f(c)
    steps = 0
    while abs((f - tc) / f) > 1e-7:
        steps += 1
        if steps > _MAX_NEWTON_STEPS:
            raise ValueError(f"concentration for f={f} did not converge")
        slope = (c_to_f(c + 0.1) - tc) / 0.1
        new_c = c + (f - tc) / slope
        c = c / 2 if new_c < 0 else new_c
        tc = c_to_f(c)
    return c


def estimate_scale_radius(mvir, rvir, vmax, rvmax, scale, settings: Settings) -> float:
    """Klypin estimate of the scale radius from vmax and the virial mass."""
    fallback = rvmax / settings.rmax_to_rs
    if not mvir or not rvir or not vmax:
        return fallback
    vm2 = vmax / settings.vmax_const
    vm2 = vm2 * vm2 * scale
    f = (rvir / 1.0e3) * vm2 / (mvir * settings.rs_constant)
    if f < 4.625:
        return fallback
    c = f_to_c(f)
    if c <= 0:
        return fallback
    return rvir / c


def _nfw_menc(r, rs):
    r = np.asarray(r, dtype=np.float64)
    return np.log((rs + r) / rs) - r / (rs + r)


def chi2_scale(rs: float, bin_r: Sequence[float], weights: Sequence[float]) -> float:
    """Chi-squared of equal-mass bins against an NFW profile of scale ``rs``."""
    bin_r = np.asarray(bin_r, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    num_bins = len(weights)
    if num_bins == 0:
        raise ValueError("at least one bin is required")
    if len(bin_r) < num_bins + 1:
        raise ValueError("bin_r needs one more edge than there are weights")
    bin_mass = float(_nfw_menc(bin_r[num_bins], rs)) / num_bins
    menc = _nfw_menc(bin_r[1 : num_bins + 1], rs)
    shell = np.diff(np.concatenate(([0.0], menc)))
    dx = weights * (shell - bin_mass) / bin_mass
    return float(np.sum(dx * dx))


def calc_scale_from_bins(rs: float, bin_r: Sequence[float], weights: Sequence[float]) -> float:
    """Fit the NFW scale radius to equal-mass radial bins."""
    bin_r = np.asarray(bin_r, dtype=np.float64)
    num_bins = len(weights)
    lo = float(bin_r[0])
    hi = float(bin_r[num_bins])
    if not (rs > lo) or not (rs < hi):
        rs = float(bin_r[(num_bins + 1) // 2])
    initial_rs = rs
    chi2 = chi2_scale(rs, bin_r, weights)
    drs = rs / 10.0
    iterations = 0
    last_chi2 = 1e30
    if not rs > 0:
        return initial_rs
    while abs(chi2 - last_chi2) > 0.005 * chi2 and iterations < MIN_PART_PER_BIN:
        last_chi2 = chi2
        if rs + drs > hi:
            drs = 0.1 * (hi - rs)
        if rs - drs < lo:
            drs = 0.1 * (rs - lo)
        chi2_right = chi2_scale(rs + drs, bin_r, weights)
        chi2_left = chi2_scale(rs - drs, bin_r, weights)
        dx = 0.5 * (chi2_right - chi2_left) / drs
        dx2 = (chi2_right + chi2_left - 2.0 * chi2) / (drs * drs)
        move = -dx / dx2 if dx2 != 0 else 0.0
        if not move:
            return rs
        if rs + move > 4 * rs:
            move = 3.0 * rs
        if rs + move < 0.25 * rs:
            move = -0.75 * rs
        new_rs = rs + move
        if new_rs > hi:
            new_rs = rs + 0.8 * (hi - rs)
        elif new_rs < lo:
            new_rs = rs + 0.8 * (lo - rs)
        new_chi2 = chi2_scale(new_rs, bin_r, weights)
        if chi2_right < new_chi2:
            new_chi2, new_rs = chi2_right, rs + drs
        if chi2_left < new_chi2:
            new_chi2, new_rs = chi2_left, rs - drs
        if last_chi2 < new_chi2:
            drs *= 0.5
            continue
        drs = abs(rs - new_rs) / 10.0
        rs = new_rs
        chi2 = new_chi2
        iterations += 1
    return rs


def calc_scale_radius(mvir, rvir, vmax, rvmax, scale, table, total_p, bound, settings: Settings):
    """Scale radius fitted to the particles, with the Klypin estimate.

    ``table`` must be sorted by distance.  Returns ``(rs, klypin_rs)``.
    """
    klypin_rs = estimate_scale_radius(mvir, rvir, vmax, rvmax, scale, settings)
    count = max(int(total_p) - 1, 0)
    usable = np.ones(count, dtype=bool)
    if bound:
        usable = ~(table.pe[:count] < table.ke[:count])
    eligible = np.nonzero(usable)[0]
    analyze_p = len(eligible)
    if analyze_p < MIN_SCALE_PART:
        return klypin_rs, klypin_rs
    ppbin = math.ceil(analyze_p / MAX_SCALE_BINS)
    if ppbin < MIN_PART_PER_BIN:
        ppbin = analyze_p // (analyze_p // MIN_PART_PER_BIN)
    ends = eligible[ppbin - 1 :: ppbin]
    radii = np.sqrt(table.r2)
    bin_r = np.concatenate(([0.0], 1e3 * 0.5 * (radii[ends] + radii[ends + 1])))
    weights = np.where(bin_r[:-1] * 1e-3 < 3 * settings.force_res, 0.1, 1.0)
    return calc_scale_from_bins(klypin_rs, bin_r, weights), klypin_rs