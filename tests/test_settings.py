import dataclasses

import pytest

from rockhalo.settings import Settings


def test_particle_mass_lookup():
    s = Settings(masses={1: 2.5, 4: 0.5})
    assert s.particle_mass(4) == 0.5
    assert s.particle_mass(1) == 2.5


def test_unknown_type_raises():
    s = Settings(masses={1: 2.5})
    with pytest.raises(ValueError):
        s.particle_mass(3)


def test_with_masses_returns_updated_copy():
    s = Settings(masses={1: 2.5})
    s2 = s.with_masses({2: 3.0})
    assert s2.particle_mass(2) == 3.0
    assert s2.particle_mass(1) == s.particle_mass(1)
    with pytest.raises(ValueError):
        s.particle_mass(2)


def test_hubble_scaling_is_one_today_for_flat_universe():
    s = Settings(omega_m=0.3, omega_l=0.7)
    assert s.hubble_scaling(0.0) == pytest.approx(1.0)


def test_hubble_scaling_grows_with_redshift():
    s = Settings()
    assert s.hubble_scaling(1.0) > s.hubble_scaling(0.5) > s.hubble_scaling(0.0)


def test_hubble_scaling_matter_only():
    s = Settings(omega_m=1.0, omega_l=0.0)
    assert s.hubble_scaling(3.0) == pytest.approx(8.0)


def test_settings_are_immutable():
    s = Settings()
    original = s.force_res
    with pytest.raises(dataclasses.FrozenInstanceError):
        s.force_res = original + 1.0
    assert s.force_res == original