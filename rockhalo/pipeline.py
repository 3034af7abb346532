"""Analysis of one snapshot: centre, energies, halo and stellar properties."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from rockhalo.centering import (
    mean_phase_space,
    potential_minimum_center,
    refine_center,
    remove_unbound,
)
from rockhalo.energetics import (
    BoundMassRecord,
    EnergyBudget,
    ExternalPotential,
    count_bound_within,
    energy_budget,
)
from rockhalo.halo_props import (
    Halo,
    MassThresholds,
    calc_additional_halo_props,
    calc_basic_halo_props,
    calc_mass_definition,
)
from rockhalo.potential import ParticleTable, compute_potential
from rockhalo.settings import Settings

SNAPSHOT_INTERVAL = 0.2
"""Time between snapshots in Gyr."""
CORE_COUNT = 300
STAR_CORE_COUNT = 100
REFINE_RADIUS = 5e-3
REFINE_LIMIT = 200
HALO_TYPE = 1
STAR_TYPE = 4


@dataclass
class SnapshotResult:
    """Everything derived from one snapshot."""

    snapshot: int
    time: float
    center: np.ndarray
    potential_center: np.ndarray
    star_center: np.ndarray | None
    halo: Halo
    star: Halo | None
    energy: EnergyBudget
    bound_counts: dict[float, int]
    boundmass: BoundMassRecord
    num_bound: int
    num_unbound: int
    phase: float
    distance: float
    velocity: float
    star_num_bound: int = 0
    star_num_unbound: int = 0
    extra: dict = field(default_factory=dict)


def anisotropy_beta(vr, vt, vp):
    """Velocity anisotropy 1 - (vt^2 + vp^2) / (2 vr^2)."""
    vr = np.asarray(vr, dtype=np.float64)
    vt = np.asarray(vt, dtype=np.float64)
    vp = np.asarray(vp, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        beta = 1.0 - (vt * vt + vp * vp) / (2.0 * vr * vr)
    return float(beta) if beta.ndim == 0 else beta


def phase_angle(a: Sequence[float], b: Sequence[float]) -> float:
    """Angle in radians between the x-y projections of two vectors."""
    ax, ay = float(a[0]), float(a[1])
    bx, by = float(b[0]), float(b[1])
    norm = math.hypot(ax, ay) * math.hypot(bx, by)
    if norm == 0:
        return math.nan
    cosine = (ax * bx + ay * by) / norm
    return math.acos(max(-1.0, min(1.0, cosine)))


def _star_center(star_table: ParticleTable, settings: Settings) -> np.ndarray:
    stars = star_table.select(np.arange(len(star_table)))
    stars.ke = np.zeros(len(stars))
    stars.update_r2(np.zeros(3))
    stars.sort_by_distance()
    compute_potential(stars, settings)
    stars.sort_by_potential()
    return mean_phase_space(stars, min(STAR_CORE_COUNT, len(stars)))


def _bound_component(
    table: ParticleTable,
    center: np.ndarray,
    thresholds: MassThresholds,
    settings: Settings,
    label: str,
) -> tuple[Halo, int]:
    bound = remove_unbound(table)
    if len(bound) == 0:
        raise ValueError(f"no bound {label} particles")
    bound.sort_by_distance()
    halo = Halo(pos=center.copy(), corevel=center[3:6].copy(), num_p=len(bound))
    calc_basic_halo_props(halo, bound, thresholds, settings)
    calc_additional_halo_props(halo, bound, thresholds, settings)
    return halo, len(bound)


def analyse_snapshot(
    dm_tables: Sequence[ParticleTable],
    star_table: ParticleTable | None,
    settings: Settings,
    external_potential: ExternalPotential | None = None,
    snapshot: int = 0,
) -> SnapshotResult:
    """Find the centre of a satellite and measure its dark and stellar components."""
    dm_tables = list(dm_tables)
    if not dm_tables or sum(len(t) for t in dm_tables) == 0:
        raise ValueError("at least one dark-matter particle is required")
    has_stars = star_table is not None and len(star_table) > 0
    parts = dm_tables + ([star_table] if has_stars else [])
    everything = ParticleTable.concat(parts)
    everything.ke = np.zeros(len(everything))

    everything.update_r2(np.zeros(3))
    potential_center = potential_minimum_center(everything, settings, CORE_COUNT)
    star_center = _star_center(star_table, settings) if has_stars else None

    center = potential_center.copy()
    from rockhalo.potential import compute_kinetic_energy

    compute_kinetic_energy(everything, center[3:6], settings)
    everything.update_r2(center).sort_by_distance()
    center = refine_center(everything, REFINE_RADIUS, REFINE_LIMIT)
    everything.update_r2(center).sort_by_distance()

    budget = energy_budget(everything, center, settings, external_potential)
    counts = count_bound_within(everything)
    m1 = settings.particle_mass(HALO_TYPE)
    radii = sorted(counts)

    def mass_at(r: float) -> float:
        return counts[min(radii, key=lambda k: abs(k - r))] * m1

    thresholds = calc_mass_definition(settings)
    dm = everything.select(everything.types == HALO_TYPE)
    halo, num_bound = _bound_component(dm, center, thresholds, settings, "dark-matter")
    num_unbound = len(dm) - num_bound

    star = None
    star_bound = star_unbound = 0
    phase = math.nan
    if has_stars:
        stars = everything.select(everything.types == STAR_TYPE)
        star, star_bound = _bound_component(stars, center, thresholds, settings, "star")
        star_unbound = len(stars) - star_bound
        phase = phase_angle(halo.major_axis, star.major_axis)

    radius = float(np.linalg.norm(center[:3]))
    record = BoundMassRecord(
        time=snapshot * SNAPSHOT_INTERVAL,
        mgrav=halo.mgrav,
        mdm_rh=mass_at(1.066),
        x=float(center[0]),
        y=float(center[1]),
        z=float(center[2]),
        distance=radius,
        self_pe=budget.self_pe,
        self_ke=budget.self_ke,
        total_pe=budget.total_pe,
        total_ke=budget.total_ke,
        mdm_10=mass_at(0.01),
        mdm_20=mass_at(0.02),
        mdm_50=mass_at(0.05),
        bound_pe=budget.bound_pe,
        bound_ke=budget.bound_ke,
    )
    return SnapshotResult(
        snapshot=int(snapshot),
        time=snapshot * SNAPSHOT_INTERVAL,
        center=center,
        potential_center=potential_center,
        star_center=star_center,
        halo=halo,
        star=star,
        energy=budget,
        bound_counts=counts,
        boundmass=record,
        num_bound=num_bound,
        num_unbound=num_unbound,
        phase=phase,
        distance=radius * 1e3,
        velocity=float(np.linalg.norm(center[3:6])),
        star_num_bound=star_bound,
        star_num_unbound=star_unbound,
    )


def _per_mass(values, m):
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.asarray(values, dtype=np.float64) / np.float64(m)


def format_halo_summary(halo: Halo) -> str:
    """Human-readable listing of a halo's properties, one per line."""
    p, cv, bv = halo.pos, halo.corevel, halo.bulkvel
    j = _per_mass(halo.J, halo.m)
    lines = [
        "pos[6]: %f %f %f %f %f %f" % tuple(p[:6]),
        "core vel %f %f %f " % tuple(cv[:3]),
        "bulk vel %f %f %f " % tuple(bv[:3]),
        "mass: %e" % halo.m,
        "mbound: %e" % halo.mgrav,
        "r: %f" % halo.r,
        "rs: %f" % halo.rs,
        "num_p: %d" % halo.num_p,
        "dens_tot: %d" % halo.dens_tot,
        "vrms: %f" % halo.vrms,
        "vmax: %f" % halo.vmax,
        "rvmax: %f" % halo.rvmax,
        "J[3] %e %e %e" % tuple(halo.J[:3]),
        "j[3] %f %f %f" % tuple(j[:3]),
        "jin[3] (r<5 kpc) %f %f %f" % tuple(halo.jin[:3]),
        "djOverdT[3] %f %f %f" % tuple(halo.dj_over_dt[:3]),
        "deOverdT: %f" % halo.de_over_dt,
        "b_to_a: %f" % halo.b_to_a,
        "c_to_a: %f" % halo.c_to_a,
        "A[3]: %f %f %f" % tuple(halo.major_axis[:3]),
        "kin_to_pot: %f" % halo.kin_to_pot,
        "energy: %e" % halo.energy,
        "spin: %f" % halo.spin,
        "Xoff: %f" % halo.xoff,
        "Voff: %f" % halo.voff,
        "bullock_spin: %f" % halo.bullock_spin,
        "halfmass_radius: %f" % halo.halfmass_radius,
    ]
    return "\n".join(lines)