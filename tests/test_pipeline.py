import math

import numpy as np
import pytest

from rockhalo.halo_props import Halo
from rockhalo.potential import ParticleTable
from rockhalo.settings import Settings
from rockhalo.pipeline import (
    SNAPSHOT_INTERVAL,
    anisotropy_beta,
    analyse_snapshot,
    format_halo_summary,
    phase_angle,
)

OFFSET = np.array([0.01, 0.02, 0.03])
BULK = np.array([10.0, -5.0, 2.0])


def _cloud(rng, n, spread, vel_spread, ptype, id_start):
    pos = np.empty((n, 6))
    pos[:, :3] = OFFSET + rng.normal(0.0, spread, size=(n, 3))
    pos[:, 3:] = BULK + rng.normal(0.0, vel_spread, size=(n, 3))
    return ParticleTable.from_arrays(pos, ptype, np.arange(id_start, id_start + n))


@pytest.fixture
def settings():
    return Settings().with_masses({1: 1e6, 2: 1e6, 4: 1e5})


@pytest.fixture
def tables():
    rng = np.random.default_rng(7)
    dm1 = _cloud(rng, 300, 3e-4, 3.0, 1, 0)
    dm2 = _cloud(rng, 100, 3e-4, 3.0, 2, 1000)
    stars = _cloud(rng, 100, 2e-4, 2.0, 4, 2000)
    return dm1, dm2, stars


def test_anisotropy_isotropic_is_zero():
    assert anisotropy_beta(3.0, 3.0, 3.0) == pytest.approx(0.0)


def test_anisotropy_radial_orbits_is_one():
    assert anisotropy_beta(5.0, 0.0, 0.0) == pytest.approx(1.0)


def test_anisotropy_array_shape():
    out = anisotropy_beta([1.0, 2.0], [1.0, 2.0], [1.0, 2.0])
    assert out.shape == (2,)
    assert np.allclose(out, 0.0)


def test_phase_angle_cases():
    assert phase_angle([1.0, 0.0, 9.0], [2.0, 0.0, -3.0]) == pytest.approx(0.0)
    assert phase_angle([1.0, 0.0], [0.0, 4.0]) == pytest.approx(math.pi / 2)
    assert phase_angle([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(math.pi)
    assert math.isnan(phase_angle([0.0, 0.0], [1.0, 0.0]))


def test_analyse_finds_center(settings, tables):
    dm1, dm2, stars = tables
    result = analyse_snapshot([dm1, dm2], stars, settings, None, 3)
    assert np.all(np.abs(result.center[:3] - OFFSET) < 2e-4)
    assert np.all(np.abs(result.center[3:] - BULK) < 2.0)
    assert result.time == pytest.approx(3 * SNAPSHOT_INTERVAL)
    assert result.distance == pytest.approx(1e3 * np.linalg.norm(result.center[:3]))


def test_analyse_counts_and_record(settings, tables):
    dm1, dm2, stars = tables
    result = analyse_snapshot([dm1, dm2], stars, settings, None, 1)
    assert result.num_bound + result.num_unbound == len(dm1)
    assert result.halo.num_p == result.num_bound
    assert result.star is not None
    assert result.star_num_bound + result.star_num_unbound == len(stars)
    assert result.boundmass.x == pytest.approx(result.center[0])
    assert result.boundmass.mgrav == result.halo.mgrav
    assert result.energy.self_pe < 0
    assert result.star_center is not None


def test_external_potential_enters_total(settings, tables):
    dm1, dm2, stars = tables
    result = analyse_snapshot([dm1, dm2], stars, settings, lambda x, y, z: -1.0, 0)
    total_mass = 400 * 1e6 + 100 * 1e5
    assert result.energy.ext_pe == pytest.approx(-total_mass)
    assert result.energy.total_pe == pytest.approx(result.energy.self_pe - total_mass)


def test_analyse_without_stars(settings, tables):
    dm1, dm2, _ = tables
    result = analyse_snapshot([dm1, dm2], None, settings)
    assert result.star is None
    assert result.star_center is None
    assert math.isnan(result.phase)


def test_analyse_requires_dark_matter(settings, tables):
    _, _, stars = tables
    with pytest.raises(ValueError):
        analyse_snapshot([], stars, settings)


def test_format_halo_summary_lines():
    halo = Halo(num_p=7, m=2.0, J=np.array([4.0, 6.0, 8.0]))
    text = format_halo_summary(halo)
    lines = text.splitlines()
    assert lines[0].startswith("pos[6]:")
    assert "num_p: 7" in lines
    assert "j[3] 2.000000 3.000000 4.000000" in lines
    assert lines[-1].startswith("halfmass_radius:")