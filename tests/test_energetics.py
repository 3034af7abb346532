import numpy as np
import pytest

from rockhalo.energetics import (
    G_KPC,
    BoundMassRecord,
    EnergyBudget,
    append_boundmass,
    count_bound_within,
    energy_budget,
    write_positions,
)
from rockhalo.potential import ParticleTable
from rockhalo.settings import Settings


def _table(pos, types, pe, ke, r2=None, ids=None):
    t = ParticleTable.from_arrays(np.asarray(pos, dtype=float), types, ids)
    t.pe = np.asarray(pe, dtype=float)
    t.ke = np.asarray(ke, dtype=float)
    if r2 is not None:
        t.r2 = np.asarray(r2, dtype=float)
    return t


SETTINGS = Settings().with_masses({1: 2.0, 2: 2.0, 4: 1.0})


def test_self_energies_follow_table():
    t = _table([[0, 0, 0, 3, 4, 0], [1, 0, 0, 0, 0, 0]], [1, 4], [1000.0, 0.0], [0.0, 5.0])
    b = energy_budget(t, np.zeros(6), SETTINGS)
    assert b.self_pe == pytest.approx(-G_KPC * 2.0)
    assert b.self_ke == pytest.approx(25.0)
    assert b.total_ke == pytest.approx(25.0)
    assert b.ext_pe == 0.0
    assert b.total_pe == pytest.approx(b.self_pe)


def test_bound_energies_only_count_bound_particles():
    t = _table([[0, 0, 0, 1, 0, 0], [0, 0, 0, 2, 0, 0]], [1, 1], [10.0, 1.0], [1.0, 10.0])
    b = energy_budget(t, np.zeros(6), SETTINGS)
    assert b.bound_ke == pytest.approx(0.5 * 2.0 * 1.0)
    assert b.bound_pe == pytest.approx(-G_KPC * 2.0 * 10.0 / 1000.0)
    assert b.bound_ke < b.self_ke


def test_relative_velocity_used_for_self_ke():
    t = _table([[0, 0, 0, 5, 0, 0]], [4], [0.0], [0.0])
    b = energy_budget(t, [0, 0, 0, 5, 0, 0], SETTINGS)
    assert b.self_ke == 0.0
    assert b.total_ke == pytest.approx(12.5)


def test_external_potential_gets_kpc_coordinates():
    seen = []

    def phi(x, y, z):
        seen.append((x, y, z))
        return 3.0

    t = _table([[0.001, 0.002, 0.003, 0, 0, 0]], [1], [0.0], [0.0])
    b = energy_budget(t, np.zeros(6), SETTINGS, phi)
    assert seen[0] == pytest.approx((1.0, 2.0, 3.0))
    assert b.ext_pe == pytest.approx(6.0)
    assert b.total_pe == pytest.approx(b.self_pe + 6.0)


def test_bad_center_raises():
    t = _table([[0, 0, 0, 0, 0, 0]], [1], [0.0], [0.0])
    with pytest.raises(ValueError):
        energy_budget(t, [0, 0, 0], SETTINGS)


def test_count_bound_within_excludes_stars_and_unbound():
    r2 = [(0.005e-3) ** 2, (0.005e-3) ** 2, (0.005e-3) ** 2, (0.5e-3) ** 2]
    t = _table(np.zeros((4, 6)), [1, 4, 2, 2], [5, 5, 1, 5], [1, 1, 5, 1], r2=r2)
    counts = count_bound_within(t, [1.066, 0.01])
    assert counts[1.066] == 2
    assert counts[0.01] == 1


def test_write_positions(tmp_path):
    pos = [[1e-6, 0, 0, 1, 0, 0], [1e-6, 0, 0, 1, 0, 0], [1, 0, 0, 0, 0, 0], [0, 0, 0, 0, 0, 0]]
    t = _table(pos, [1, 1, 1, 4], [5, 1, 5, 5], [1, 5, 1, 1], ids=[7, 8, 9, 10])
    path = tmp_path / "dm.txt"
    n = write_positions(path, t, np.zeros(6), 1e-10, (1, 2))
    lines = path.read_text().splitlines()
    assert n == 1 == len(lines)
    fields = lines[0].split()
    assert fields[2] == "7"
    assert float(fields[0]) == pytest.approx(1e-3)
    assert fields[1] == "0.500000"


def test_record_format_and_append(tmp_path):
    rec = BoundMassRecord(1.5, *([0.0] * 15))
    line = rec.format()
    assert line.split()[0] == "1.500000"
    assert len(line.split()) == 16
    path = tmp_path / "boundmass.txt"
    append_boundmass(path, rec)
    append_boundmass(path, rec)
    assert path.read_text().splitlines() == [line, line]


def test_budget_total_pe_property():
    b = EnergyBudget(-2.0, 1.0, -3.0, 4.0, -1.0, 0.5)
    assert b.total_pe == -5.0