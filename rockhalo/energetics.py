"""Energy budget, bound-mass counts and per-snapshot text records."""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

import numpy as np

from rockhalo.potential import ParticleTable
from rockhalo.settings import Settings

G_KPC = 4.30091727e-6
"""Gravitational constant in kpc (km/s)^2 / Msun."""
STAR_TYPE = 4
DM_TYPES = (1, 2)
DEFAULT_RADII = (1.066, 0.01, 0.02, 0.05, 0.1, 0.2)
"""Radii in kpc at which bound dark-matter particles are counted."""

ExternalPotential = Callable[[float, float, float], float]


@dataclass(frozen=True)
class EnergyBudget:
    """Summed energies of a particle set, in Msun (km/s)^2."""

    self_pe: float
    self_ke: float
    ext_pe: float
    total_ke: float
    bound_pe: float
    bound_ke: float

    @property
    def total_pe(self) -> float:
        """Self-gravity plus external potential energy."""
        return self.self_pe + self.ext_pe


@dataclass(frozen=True)
class BoundMassRecord:
    """One line of the bound-mass history file."""

    time: float
    mgrav: float
    mdm_rh: float
    x: float
    y: float
    z: float
    distance: float
    self_pe: float
    self_ke: float
    total_pe: float
    total_ke: float
    mdm_10: float
    mdm_20: float
    mdm_50: float
    bound_pe: float
    bound_ke: float

    def format(self) -> str:
        """The record as space-separated fixed-point fields, without a newline."""
        return " ".join("%f" % value for value in astuple(self))


def _type_masses(types: np.ndarray, settings: Settings) -> np.ndarray:
    out = np.empty(len(types), dtype=np.float64)
    for t in np.unique(types):
        out[types == t] = settings.particle_mass(int(t))
    return out


def _center(center: Sequence[float]) -> np.ndarray:
    c = np.asarray(center, dtype=np.float64).ravel()
    if len(c) != 6:
        raise ValueError("center must hold three positions and three velocities")
    return c


def energy_budget(
    table: ParticleTable,
    center: Sequence[float],
    settings: Settings,
    external_potential: ExternalPotential | None = None,
) -> EnergyBudget:
    """Self, external, kinetic and bound energies of the particles in ``table``.

    ``table.pe`` holds the potential sums from the tree walk; the external
    potential is called with coordinates in kpc and returns energy per mass.
    """
    c = _center(center)
    mass = _type_masses(table.types, settings)
    dv = table.pos[:, 3:6] - c[3:6]
    dv2 = np.sum(dv * dv, axis=1)
    v2 = np.sum(table.pos[:, 3:6] ** 2, axis=1)
    pe_each = -(G_KPC * mass * table.pe / 1000.0)
    ke_each = 0.5 * mass * dv2
    bound = table.ke < table.pe

    ext_pe = 0.0
    if external_potential is not None:
        for m, (x, y, z) in zip(mass, table.pos[:, :3]):
            ext_pe += float(m) * float(external_potential(1000.0 * x, 1000.0 * y, 1000.0 * z))

    return EnergyBudget(
        self_pe=float(pe_each.sum()),
        self_ke=float(ke_each.sum()),
        ext_pe=ext_pe,
        total_ke=float(np.sum(0.5 * mass * v2)),
        bound_pe=float(pe_each[bound].sum()),
        bound_ke=float(ke_each[bound].sum()),
    )


def count_bound_within(
    table: ParticleTable, radii: Iterable[float] = DEFAULT_RADII
) -> dict[float, int]:
    """Number of bound non-star particles inside each radius (kpc).

    Uses the squared distances (Mpc^2) already stored in ``table.r2``.
    """
    eligible = (table.ke < table.pe) & (table.types != STAR_TYPE)
    r2 = table.r2[eligible]
    return {float(r): int(np.count_nonzero(r2 < (r * 1e-3) ** 2)) for r in radii}


def write_positions(
    path,
    table: ParticleTable,
    center: Sequence[float],
    max_r2: float,
    types: Iterable[int] = DM_TYPES,
) -> int:
    """Write bound particles of ``types`` within ``sqrt(max_r2)`` Mpc of ``center``.

    Each line holds r (kpc), specific kinetic energy, id, offsets in
    position and velocity.  Returns the number of lines written.
    """
    c = _center(center)
    d = table.pos - c
    r2 = np.sum(d[:, :3] ** 2, axis=1)
    dv2 = np.sum(d[:, 3:6] ** 2, axis=1)
    chosen = (
        np.isin(table.types, list(types))
        & (r2 < max_r2)
        & (table.ke < table.pe)
    )
    written = 0
    with open(path, "w") as out:
        for i in np.nonzero(chosen)[0]:
            dx, dy, dz, dvx, dvy, dvz = d[i]
            out.write(
                "%f  %f  %d  %f  %f  %f  %f  %f  %f  \n"
                % (1000 * math.sqrt(r2[i]), 0.5 * dv2[i], int(table.ids[i]),
                   dx, dy, dz, dvx, dvy, dvz)
            )
            written += 1
    return written


def append_boundmass(path, record: BoundMassRecord) -> None:
    """Append ``record`` as one line to the bound-mass history file."""
    with open(Path(path), "a") as out:
        out.write(record.format() + "\n")


def masses_from_counts(counts: Mapping[float, int], particle_mass: float) -> dict[float, float]:
    """Convert particle counts per radius into masses."""
    return {r: n * particle_mass for r, n in counts.items()}