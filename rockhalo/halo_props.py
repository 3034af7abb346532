"""Bulk, shape, energy and spin properties of a single halo."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from rockhalo.nfw import calc_scale_radius
from rockhalo.potential import ParticleTable
from rockhalo.settings import Settings
from rockhalo.tidal import tidal_acceleration

VMAX_BINS = 50
_FOUR_THIRDS_PI = 4.0 * math.pi / 3.0
_THREE_OVER_FOUR_PI = 3.0 / (4.0 * math.pi)
_INNER_RADIUS = 0.005
_GYR_CONVERSION = 3.1536e-3 / 3.0857
_LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_TABLE_FIELDS = ("pos", "types", "ids", "r2", "pe", "ke")


def _zeros(n: int):
    return lambda: np.zeros(n)


@dataclass
class Halo:
    """Properties of one halo; positions in Mpc, radii in kpc, velocities in km/s."""

    pos: np.ndarray = field(default_factory=_zeros(6))
    corevel: np.ndarray = field(default_factory=_zeros(3))
    bulkvel: np.ndarray = field(default_factory=_zeros(3))
    num_p: int = 0
    p_start: int = 0
    num_child_particles: int = 0
    m: float = 0.0
    mgrav: float = 0.0
    r: float = 0.0
    child_r: float = 0.0
    rs: float = 0.0
    klypin_rs: float = 0.0
    vrms: float = 0.0
    vmax: float = 0.0
    vmax_r: float = 0.0
    rvmax: float = 0.0
    dens_tot: int = 0
    J: np.ndarray = field(default_factory=_zeros(3))
    jin: np.ndarray = field(default_factory=_zeros(3))
    dj_over_dt: np.ndarray = field(default_factory=_zeros(3))
    de_over_dt: float = 0.0
    b_to_a: float = 0.0
    c_to_a: float = 0.0
    major_axis: np.ndarray = field(default_factory=_zeros(3))
    b_to_a2: float = 0.0
    c_to_a2: float = 0.0
    major_axis2: np.ndarray = field(default_factory=_zeros(3))
    kin_to_pot: float = 0.0
    energy: float = 0.0
    spin: float = 0.0
    bullock_spin: float = 0.0
    xoff: float = 0.0
    voff: float = 0.0
    halfmass_radius: float = 0.0
    alt_m: np.ndarray = field(default_factory=_zeros(4))
    m_pe_d: float = 0.0
    m_pe_b: float = 0.0
    n_core: int = 0
    min_vel_err: float = 0.0
    min_bulkvel_err: float = 0.0

    def __post_init__(self) -> None:
        pos = np.zeros(6)
        given = np.asarray(self.pos, dtype=np.float64).ravel()
        pos[: min(6, len(given))] = given[:6]
        self.pos = pos
        for name in ("corevel", "bulkvel", "J", "jin", "dj_over_dt", "major_axis", "major_axis2"):
            setattr(self, name, np.asarray(getattr(self, name), dtype=np.float64).copy())
        self.alt_m = np.asarray(self.alt_m, dtype=np.float64).copy()


@dataclass(frozen=True)
class MassThresholds:
    """Particle-number density thresholds for the configured mass definitions."""

    thresh_dens: tuple[float, ...]
    rvir_dens: float
    rvir_dens_z0: float
    dynamical_time: float
    min_dens_index: int


def _div(a, b):
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.float64(a) / np.float64(b)


def _atof(text: str) -> float:
    match = _LEADING_NUMBER.match(text)
    return float(match.group(0)) if match else 0.0


def vir_density(a: float) -> float:
    """Overdensity used for the virial definition: fixed at 200."""
    return 200.0


def mass_definition_density(definition: str, settings: Settings) -> float:
    """Particle-number density threshold for a definition such as ``200b`` or ``500c``."""
    a = settings.scale_now
    matter_fraction = (settings.omega_m / a**3) / settings.hubble_scaling(1.0 / a - 1.0) ** 2
    cons = settings.omega_m * settings.critical_density / settings.particle_mass(1)
    last = definition[-1:].lower()
    body = definition[1:] if definition[:1] in ("m", "M") else definition
    if last == "b":
        return _atof(body) * cons
    if last == "c":
        return _atof(body) * cons / matter_fraction
    return vir_density(a) * cons


def calc_mass_definition(settings: Settings, definitions: Sequence[str] | None = None) -> MassThresholds:
    """Thresholds for five mass definitions plus the 200c virial density."""
    definitions = tuple(settings.mass_definitions if definitions is None else definitions)
    if len(definitions) != 5:
        raise ValueError("exactly five mass definitions are required")
    thresh = tuple(mass_definition_density(d, settings) for d in definitions)
    rvir_dens = mass_definition_density("200c", settings)
    dyn = 1.0 / math.sqrt(_FOUR_THIRDS_PI * settings.gc * rvir_dens * settings.particle_mass(1))
    min_index = 0
    for i in range(1, 5):
        if thresh[i] < thresh[min_index]:
            min_index = i
    return MassThresholds(thresh, rvir_dens, rvir_dens, dyn, min_index)


def add_ang_mom(L, center, pos) -> np.ndarray:
    """``L`` plus the summed r x v of one or more phase-space rows about ``center``."""
    c = np.asarray(center, dtype=np.float64)
    rows = np.atleast_2d(np.asarray(pos, dtype=np.float64))
    if rows.size == 0:
        return np.asarray(L, dtype=np.float64).copy()
    dr = rows[:, :3] - c[:3]
    dv = rows[:, 3:6] - c[3:6]
    return np.asarray(L, dtype=np.float64) + np.cross(dr, dv).sum(axis=0)


def add_dut(J, center, pos) -> np.ndarray:
    """``J`` plus the summed torque -r x a; rows hold position then acceleration."""
    c = np.asarray(center, dtype=np.float64)
    rows = np.atleast_2d(np.asarray(pos, dtype=np.float64))
    if rows.size == 0:
        return np.asarray(J, dtype=np.float64).copy()
    dr = rows[:, :3] - c[:3]
    return np.asarray(J, dtype=np.float64) + np.cross(dr, -rows[:, 3:6]).sum(axis=0)


def _estimate_vmax(bins: np.ndarray, r_scale: float, settings: Settings) -> float:
    r = np.maximum((np.arange(len(bins)) + 1.0) / r_scale, settings.force_res)
    vcirc = np.cumsum(bins) / r
    vmax = max(0.0, float(vcirc.max())) if len(vcirc) else 0.0
    return math.sqrt(settings.gc * vmax * settings.reference_mass / settings.scale_now)


def _estimate_vmax_halo(halo: Halo, rows: np.ndarray, thresholds: MassThresholds, settings: Settings) -> None:
    halo.vmax = halo.vmax_r = 0.0
    if not halo.child_r > 0:
        return
    r_scale = VMAX_BINS / halo.child_r
    dist = np.sqrt(np.sum((halo.pos[:3] - rows[:, :3]) ** 2, axis=1))
    idx = (dist * r_scale).astype(np.int64)
    bins = np.bincount(idx[idx < VMAX_BINS], minlength=VMAX_BINS)
    halo.vmax = _estimate_vmax(bins, r_scale, settings)
    halo.vmax_r = math.sqrt(settings.scale_now) * halo.vmax * thresholds.dynamical_time


def calc_basic_halo_props(halo: Halo, table: ParticleTable, thresholds: MassThresholds, settings: Settings) -> Halo:
    """Bulk velocity, velocity dispersion, particle-count radius and vmax radius."""
    if halo.num_p < 1:
        raise ValueError("halo has no particles")
    rows = table.pos[halo.p_start : halo.p_start + halo.num_p]
    mean = rows.mean(axis=0)
    var = np.sum((rows - mean) ** 2, axis=0) / halo.num_p
    vrms2 = float(var[3:].sum())
    halo.bulkvel = mean[3:6].copy()
    halo.m = float(halo.num_p)
    if not halo.num_child_particles:
        halo.num_child_particles = halo.num_p
    halo.r = math.cbrt(halo.num_p / (_FOUR_THIRDS_PI * thresholds.rvir_dens))
    halo.child_r = math.cbrt(halo.num_child_particles / (_FOUR_THIRDS_PI * thresholds.rvir_dens))
    _estimate_vmax_halo(halo, rows, thresholds, settings)
    if halo.vmax_r:
        halo.r = halo.vmax_r
    halo.vrms = math.sqrt(vrms2)
    return halo


def calculate_corevel(halo: Halo, table: ParticleTable, thresholds: MassThresholds) -> Halo:
    """Core and bulk velocities from running means; ``table`` must be sorted by distance."""
    total_p = len(table)
    rvir_thresh = thresholds.rvir_dens * _FOUR_THIRDS_PI
    j = np.arange(total_p, dtype=np.float64)
    r2 = table.r2[:total_p]
    inside = np.nonzero(j * j > (r2 * r2 * r2) * (rvir_thresh * rvir_thresh))[0]
    rvir_max = int(inside[-1]) if len(inside) else -1
    if rvir_max < 1:
        return halo
    core = np.nonzero(r2 * 100.0 < r2[rvir_max])[0]
    core_max = max(int(core[-1]) if len(core) else -1, 100)

    vel = table.pos[:rvir_max, 3:6]
    n = np.arange(1, rvir_max + 1, dtype=np.float64)[:, None]
    means = np.cumsum(vel, axis=0) / n
    var = np.cumsum(vel * vel, axis=0) - n * means * means
    total_var = var.sum(axis=1)

    bestvar = 0.0
    for i, thisvar in enumerate(total_var):
        if i < 10 or thisvar < bestvar * (i - 3) * i:
            bestvar = thisvar / ((i - 3) * i) if i > 3 else 0.0
            if i < core_max:
                halo.n_core = i
                halo.min_vel_err = float(bestvar)
                halo.corevel = means[i].copy()
            halo.bulkvel = means[i].copy()
            halo.min_bulkvel_err = float(bestvar)
    return halo


def _usable(table: ParticleTable, count: int, bound) -> np.ndarray:
    if bound:
        return ~(table.pe[:count] < table.ke[:count])
    return np.ones(min(count, len(table)), dtype=bool)


def calc_shape(halo: Halo, table: ParticleTable, total_p: int, bound, settings: Settings) -> Halo:
    """Iterative ellipsoid axis ratios and major axis inside ``halo.r``."""
    halo.b_to_a = halo.c_to_a = 0.0
    halo.major_axis = np.zeros(3)
    if not halo.r > 0:
        return halo
    min_r = settings.force_res * settings.force_res * 1e6 / (halo.r * halo.r)
    usable = _usable(table, total_p, bound)
    analyze_p = int(usable.sum())
    if analyze_p < 3:
        return halo
    iterations = min(settings.shape_iterations, analyze_p)
    d = table.pos[: len(usable)][usable, :3] - halo.pos[:3]
    orth = np.eye(3)
    eig = np.full(3, halo.r * halo.r * 1e-6)
    for _ in range(iterations):
        proj = d @ orth.T
        rr = np.sum(proj * proj / eig, axis=1)
        rr = np.maximum(rr, min_r)
        keep = (rr > 0) & (rr <= 1)
        tw = 1.0 / rr[keep] if settings.weighted_shapes else np.ones(int(keep.sum()))
        weight = float(tw.sum())
        if not weight:
            return halo
        dk = d[keep]
        mass_t = (dk * tw[:, None]).T @ dk / weight
        vals, vecs = np.linalg.eigh(mass_t)
        eig = vals.copy()
        orth = vecs.T.copy()
        a, b, c = 0, 1, 2
        if eig[1] > eig[0]:
            a, b = 1, 0
        if eig[2] > eig[b]:
            c, b = b, 2
        if eig[b] > eig[a]:
            a, b = b, a
        if not eig[a] or not eig[b] or not eig[c]:
            return halo
        with np.errstate(invalid="ignore"):
            b_to_a = float(np.sqrt(eig[b] / eig[a]))
            c_to_a = float(np.sqrt(eig[c] / eig[a]))
        if abs(b_to_a - halo.b_to_a) < 0.01 * halo.b_to_a and abs(c_to_a - halo.c_to_a) < 0.01 * halo.c_to_a:
            return halo
        halo.b_to_a = b_to_a if b_to_a > 0 else 0.0
        halo.c_to_a = c_to_a if c_to_a > 0 else 0.0
        r = math.sqrt(eig[a])
        halo.major_axis = 1e3 * r * orth[a]
        eig = eig * (halo.r * halo.r * 1e-6) / (r * r)
    return halo


def estimate_total_energy(table: ParticleTable, total_p: int, settings: Settings) -> tuple[float, float]:
    """Total energy and kinetic-to-potential ratio of the bound particles in the first ``total_p`` rows."""
    idx = np.nonzero(table.pe[:total_p] > table.ke[:total_p])[0][::-1]
    pm = settings.reference_mass
    ke = float(table.ke[idx].sum())
    r = np.maximum(np.sqrt(table.r2[idx]), settings.force_res)
    shell = pm / r
    phi_before = np.cumsum(shell) - shell
    total_phi = float(np.sum(pm * idx / r + phi_before)) / 2.0
    ratio = ke / total_phi if total_phi else 0.0
    energy = (ke - total_phi) * pm * settings.gc / settings.scale_now
    return energy, ratio


def _calc_pseudo_evolution_masses(halo, table, total_p, bound, thresholds, settings) -> None:
    r_pe_d = max(halo.rs * 4.0, halo.r / 5.0) * 1e-3
    usable = _usable(table, total_p, bound)
    idx = np.nonzero(usable)[0]
    num_part = np.arange(1, len(idx) + 1, dtype=np.float64)
    r = np.sqrt(table.r2[idx])
    with np.errstate(divide="ignore", invalid="ignore"):
        values = num_part * num_part / (np.sqrt(r) ** 3)
    max_pe_b = max(0.0, float(np.nanmax(values))) if len(values) else 0.0
    close = np.nonzero(r < r_pe_d)[0]
    num_pe_d = float(num_part[close[-1]]) if len(close) else 0.0
    pm = settings.reference_mass
    halo.m_pe_d = num_pe_d * pm
    halo.m_pe_b = pm * max_pe_b ** (2.0 / 3.0) / math.cbrt(_FOUR_THIRDS_PI * thresholds.rvir_dens_z0)


def _last(cond: np.ndarray, values: np.ndarray) -> int:
    where = np.nonzero(cond)[0]
    return int(values[where[-1]]) if len(where) else 0


def _additional_props(halo, table, total_p, bound, thresholds, settings) -> None:
    dens = [t * _FOUR_THIRDS_PI for t in thresholds.thresh_dens]
    rvir_thresh = thresholds.rvir_dens * _FOUR_THIRDS_PI
    mass1 = settings.particle_mass(1)
    vmax_conv = mass1 / settings.scale_now

    idx = np.nonzero(_usable(table, total_p, bound))[0]
    num_part = np.arange(1, len(idx) + 1)
    r = np.maximum(np.sqrt(table.r2[idx]), settings.force_res)
    cur = num_part / (r * r * r)
    over = cur > dens[0]
    part_mdelta = _last(over, num_part)
    dens_tot = _last(over, idx)
    np_alt = [_last(cur > d, num_part) for d in dens[1:5]]
    rv = cur > rvir_thresh
    np_vir = _last(rv, num_part)
    candidates = rv & np.logical_or.accumulate(over) if len(over) else rv
    vmax = rvmax = 0.0
    if candidates.any():
        circ = num_part / r
        k = int(np.argmax(np.where(candidates, circ, -np.inf)))
        vmax, rvmax = float(circ[k]), float(r[k])

    halo.dens_tot = dens_tot
    sel = idx[idx < dens_tot]
    rows = table.pos[sel]
    L = add_ang_mom(np.zeros(3), halo.pos, rows)
    inner = table.r2[sel] < _INNER_RADIUS * _INNER_RADIUS
    lin = add_ang_mom(np.array([3.0, 0.0, 0.0]), halo.pos, rows[inner])
    numin = float(inner.sum())
    parts_avgd = len(sel)
    reached = sel[np.nonzero(2 * np.arange(1, parts_avgd + 1) >= part_mdelta)[0]]
    later = reached[reached > 0]
    num_part_half = int(later[0]) if len(later) else 0
    if parts_avgd:
        xavg = rows[:, :3].mean(axis=0)
        vavg = rows[:, 3:6].mean(axis=0)
        vrms = np.sum((rows[:, 3:6] - vavg) ** 2, axis=0) / parts_avgd
    else:
        xavg = vavg = vrms = np.zeros(3)

    dj = np.zeros(3)
    de = 0.0
    if bound and parts_avgd:
        acc = np.array([[tidal_acceleration(a, p, settings.gc) for a in range(3)] for p in rows[:, :3]])
        dj = add_dut(dj, halo.pos, np.hstack([rows[:, :3], acc]))
        de = -float(np.sum((rows[:, 3:6] - halo.pos[3:6]) * acc))

    m = part_mdelta * mass1
    if bound:
        halo.mgrav = m
    else:
        halo.m = m
    if bool(bound) != bool(settings.bound_props):
        return

    pm = settings.reference_mass
    halo.xoff = math.sqrt(float(np.sum((xavg - halo.pos[:3]) ** 2))) * 1e3
    halo.voff = math.sqrt(float(np.sum((vavg - halo.pos[3:6]) ** 2)))
    halo.alt_m = np.array(np_alt, dtype=np.float64) * pm
    halo.vrms = math.sqrt(float(vrms.sum()))
    halo.vmax = settings.vmax_const * math.sqrt(vmax * vmax_conv)
    halo.rvmax = rvmax * 1e3
    halo.halfmass_radius = math.sqrt(table.r2[num_part_half]) * 1e3

    halo.r = math.cbrt(_THREE_OVER_FOUR_PI * np_alt[2] / thresholds.thresh_dens[3]) * 1e3
    calc_shape(halo, table, np_alt[2], bound, settings)
    halo.b_to_a2, halo.c_to_a2 = halo.b_to_a, halo.c_to_a
    halo.major_axis2 = halo.major_axis.copy()
    halo.r = math.cbrt(_THREE_OVER_FOUR_PI * part_mdelta / thresholds.thresh_dens[0]) * 1e3
    calc_shape(halo, table, dens_tot, bound, settings)

    rvir = math.cbrt(_THREE_OVER_FOUR_PI * np_vir / thresholds.rvir_dens) * 1e3
    mvir = np_vir * mass1
    halo.rs, halo.klypin_rs = calc_scale_radius(
        m, halo.r, halo.vmax, halo.rvmax, settings.scale_now, table, dens_tot, bound, settings
    )
    halo.J = mass1 * settings.scale_now * L
    halo.jin = _div(lin, numin)
    if bound:
        halo.dj_over_dt = _div(dj, dens_tot) * _GYR_CONVERSION
        halo.de_over_dt = float(_div(de, dens_tot) * _GYR_CONVERSION)
    halo.energy, halo.kin_to_pot = estimate_total_energy(table, dens_tot, settings)
    jh = mass1 * settings.scale_now * math.sqrt(float(np.sum(L * L)))
    if m > 0:
        halo.spin = float(_div(jh * math.sqrt(abs(halo.energy)), settings.gc * m**2.5))
        halo.bullock_spin = float(
            _div(jh, mvir * math.sqrt(2.0 * settings.gc * mvir * rvir * settings.scale_now / 1e3))
        )
    else:
        halo.spin = halo.bullock_spin = 0.0
    _calc_pseudo_evolution_masses(halo, table, total_p, bound, thresholds, settings)


def _sort_head_by_distance(table: ParticleTable, count: int) -> None:
    order = np.concatenate([np.argsort(table.r2[:count], kind="stable"), np.arange(count, len(table))])
    ordered = table.select(order)
    for name in _TABLE_FIELDS:
        setattr(table, name, getattr(ordered, name))


def calc_additional_halo_props(halo: Halo, table: ParticleTable, thresholds: MassThresholds, settings: Settings) -> Halo:
    """Masses, shapes, spins and energies of all and of bound particles.

    Assumes the centre and velocities are already set; sorts the first
    ``halo.num_p`` rows of ``table`` by distance.
    """
    if halo.num_p < 1:
        return halo
    total_p = min(halo.num_p, len(table))
    _sort_head_by_distance(table, total_p)
    _additional_props(halo, table, total_p, False, thresholds, settings)
    _additional_props(halo, table, total_p, True, thresholds, settings)
    return halo