"""Run-wide physical constants and per-type particle masses."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Mapping

GC = 4.30117902e-9
"""Gravitational constant in Mpc (km/s)^2 / Msun."""
CRITICAL_DENSITY = 2.77519737e11
"""Critical density today in h^2 Msun / Mpc^3."""
RMAX_TO_RS = 2.1626
"""Ratio of the radius of peak circular velocity to the NFW scale radius."""
RS_CONSTANT = 0.216216595
"""Peak value of M(<r)/r for a unit NFW profile."""


def _default_masses() -> dict[int, float]:
    return {1: 1.0, 2: 1.0, 4: 1.0}


@dataclass(frozen=True)
class Settings:
    """Configuration shared by the halo analysis routines."""

    force_res: float = 2e-6
    scale_now: float = 1.0
    omega_m: float = 0.3
    omega_l: float = 0.7
    h0: float = 0.7
    gc: float = GC
    critical_density: float = CRITICAL_DENSITY
    vmax_const: float = math.sqrt(GC)
    rs_constant: float = RS_CONSTANT
    rmax_to_rs: float = RMAX_TO_RS
    reference_mass: float = 1.0
    masses: Mapping[int, float] = field(default_factory=_default_masses, hash=False)
    shape_iterations: int = 10
    weighted_shapes: bool = True
    bound_props: bool = True
    mass_definitions: tuple[str, ...] = ("vir", "200b", "200c", "500c", "2500c")

    def particle_mass(self, ptype: int) -> float:
        """Mass of one particle of the given type."""
        try:
            return float(self.masses[int(ptype)])
        except KeyError:
            raise ValueError(f"no mass configured for particle type {ptype}") from None

    def hubble_scaling(self, z: float) -> float:
        """H(z)/H0 for a flat matter plus cosmological-constant universe."""
        return math.sqrt(self.omega_m * (1.0 + z) ** 3 + self.omega_l)

    def with_masses(self, masses: Mapping[int, float]) -> "Settings":
        """Copy of these settings with the given type masses added or replaced."""
        merged = dict(self.masses)
        merged.update({int(k): float(v) for k, v in masses.items()})
        return replace(self, masses=merged)