import math

import numpy as np
import pytest

from rockhalo.nfw import (
    c_to_f,
    calc_scale_from_bins,
    calc_scale_radius,
    chi2_scale,
    estimate_scale_radius,
    f_to_c,
)
from rockhalo.potential import ParticleTable
from rockhalo.settings import Settings


def _menc(r, rs):
    return math.log((rs + r) / rs) - r / (rs + r)


def _radius_for_fraction(frac, rs, rmax):
    target = frac * _menc(rmax, rs)
    lo, hi = 0.0, rmax
    for _ in range(100):
        mid = 0.5 * (lo + hi)
        if _menc(mid, rs) < target:
            lo = mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


@pytest.mark.parametrize("c", [3.0, 10.0, 30.0])
def test_f_to_c_inverts_c_to_f(c):
    assert f_to_c(c_to_f(c)) == pytest.approx(c, rel=1e-5)


def test_c_to_f_never_below_threshold():
    values = [c_to_f(c) for c in np.linspace(0.5, 50, 500)]
    assert min(values) >= 4.625 * 0.999


def test_estimate_falls_back_without_mass():
    s = Settings()
    assert estimate_scale_radius(0, 100.0, 50.0, 30.0, 1.0, s) == pytest.approx(30.0 / s.rmax_to_rs)


def test_estimate_recovers_concentration():
    s = Settings()
    mvir, rvir, c = 1e12, 200.0, 10.0
    f = c_to_f(c)
    vm2 = f * mvir * s.rs_constant / (rvir / 1e3)
    vmax = math.sqrt(vm2) * s.vmax_const
    assert estimate_scale_radius(mvir, rvir, vmax, 40.0, 1.0, s) == pytest.approx(rvir / c, rel=1e-4)


def test_chi2_nonnegative_and_zero_without_weights():
    edges = [0.0, 1.0, 2.0, 5.0]
    assert chi2_scale(2.0, edges, [1.0, 1.0, 1.0]) >= 0
    assert chi2_scale(2.0, edges, [0.0, 0.0, 0.0]) == 0.0


def test_chi2_rejects_empty_bins():
    with pytest.raises(ValueError):
        chi2_scale(2.0, [0.0], [])


def test_calc_scale_from_bins_recovers_true_radius():
    rs_true, rmax, n = 20.0, 200.0, 20
    edges = [0.0] + [_radius_for_fraction((k + 1) / n, rs_true, rmax) for k in range(n)]
    weights = np.ones(n)
    assert chi2_scale(rs_true, edges, weights) == pytest.approx(0.0, abs=1e-12)
    fitted = calc_scale_from_bins(12.0, edges, weights)
    assert fitted == pytest.approx(rs_true, rel=0.1)


def _nfw_table(count, rs, rmax):
    radii = np.array([_radius_for_fraction((k + 0.5) / count, rs, rmax) for k in range(count)])
    pos = np.zeros((count, 6))
    pos[:, 0] = radii
    table = ParticleTable.from_arrays(pos, np.ones(count, dtype=int))
    table.update_r2([0, 0, 0])
    return table


def test_calc_scale_radius_small_sample_uses_estimate():
    s = Settings()
    table = _nfw_table(50, 0.02, 0.2)
    rs, klypin = calc_scale_radius(0, 0, 0, 40.0, 1.0, table, len(table), 0, s)
    assert rs == klypin == pytest.approx(40.0 / s.rmax_to_rs)


def test_calc_scale_radius_fits_sampled_profile():
    s = Settings(force_res=1e-7)
    table = _nfw_table(1000, 0.02, 0.2)
    rs, klypin = calc_scale_radius(0, 0, 0, 40.0, 1.0, table, len(table), 0, s)
    assert klypin == pytest.approx(40.0 / s.rmax_to_rs)
    assert rs == pytest.approx(20.0, rel=0.1)


def test_calc_scale_radius_bound_skips_unbound():
    s = Settings()
    table = _nfw_table(300, 0.02, 0.2)
    table.ke[:] = 1.0
    table.pe[:250] = 0.5
    rs, klypin = calc_scale_radius(0, 0, 0, 40.0, 1.0, table, len(table), 1, s)
    assert rs == klypin