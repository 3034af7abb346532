# rockhalo

`rockhalo` analyses one bound object in an N-body snapshot: a dark-matter
halo together with the stars it carries. Starting from positions,
velocities, particle types and ids held in NumPy arrays, it finds the
centre of the object, computes every particle's gravitational potential
(with a Barnes–Hut tree walk or by direct summation) and kinetic energy,
removes unbound particles, and measures the properties a halo finder would
report: bound and spherical-overdensity masses, radii, NFW scale radius,
maximum circular velocity, shape axis ratios, spin, angular momentum,
energy, and the tidal torque and energy change from a fixed NFW host.

Lengths inside the tables are in comoving Mpc, velocities in km/s and
masses in solar masses; radii stored on a `Halo` are in kpc.

## Installing

The package needs Python 3.10 or later and NumPy. Install it from a
checkout with your usual Python installer; the `test` extra adds pytest.

## Modules

| Module | What it holds |
| --- | --- |
| `rockhalo.settings` | `Settings`: cosmology, force resolution, mass definitions, shape options and per-type particle masses (`particle_mass`, `hubble_scaling`, `with_masses`) |
| `rockhalo.tidal` | Fixed NFW host halo: `enclosed_mass_over_radius`, `mass_over_radius_table`, `tidal_acceleration` |
| `rockhalo.nfw` | Concentration and scale radius: `c_to_f`, `f_to_c`, `estimate_scale_radius`, `chi2_scale`, `calc_scale_from_bins`, `calc_scale_radius` |
| `rockhalo.potential` | `ParticleTable` and `compute_potential` (Barnes–Hut), `compute_direct_potential`, `compute_kinetic_energy` |
| `rockhalo.merger` | Descendant matching between two catalogues: `HaloSpan`, `particle_halo_map`, `calculate_descendants` |
| `rockhalo.halo_props` | `Halo`, `MassThresholds`, `calc_mass_definition`, `mass_definition_density`, `calc_basic_halo_props`, `calculate_corevel`, `calc_shape`, `estimate_total_energy`, `calc_additional_halo_props`, `add_ang_mom`, `add_dut` |
| `rockhalo.centering` | `potential_minimum_center`, `refine_center`, `mean_phase_space`, `remove_unbound`, `log_radial_bins` |
| `rockhalo.energetics` | `EnergyBudget`, `BoundMassRecord`, `energy_budget`, `count_bound_within`, `write_positions`, `append_boundmass`, `masses_from_counts` |
| `rockhalo.pipeline` | The per-snapshot analysis: `analyse_snapshot`, `SnapshotResult`, `format_halo_summary`, `phase_angle`, `anisotropy_beta` |

## Using it

Particles live in a `ParticleTable`. The position array has six columns:
three position components and three velocity components. Each particle
also has a type code (1 and 2 for dark matter, 4 for stars) and an id.
Particle masses come from `Settings.masses`, keyed by type; every default
mass is 1.

```python
import numpy as np

from rockhalo.settings import Settings
from rockhalo.potential import ParticleTable, compute_potential, compute_kinetic_energy
from rockhalo.centering import remove_unbound

settings = Settings().with_masses({1: 1.0e4, 2: 8.0e4, 4: 1.0e3})

rng = np.random.default_rng(1)
pos = np.hstack([rng.normal(0.0, 1e-3, (2000, 3)), rng.normal(0.0, 5.0, (2000, 3))])
types = np.ones(2000, dtype=np.int32)

table = ParticleTable.from_arrays(pos, types, np.arange(2000))
table.update_r2(np.zeros(3)).sort_by_distance()

compute_potential(table, settings)
compute_kinetic_energy(table, np.zeros(3), settings)
bound = remove_unbound(table)
```

After this every particle carries a potential (`pe`) and a kinetic energy
(`ke`) in the same units; a particle is bound when its kinetic energy does
not exceed its potential.

### A whole snapshot

`analyse_snapshot(dm_tables, star_table, settings, external_potential, snapshot)`
runs the full analysis:

1. the potential of all particles is computed and the centre is the mean
   phase-space position of the 300 most deeply bound particles;
2. kinetic energies are taken relative to that centre's velocity, and the
   centre is refined to the mean of at most 200 bound particles within
   5 kpc;
3. the energy budget, the bound dark-matter counts inside 0.01–1.066 kpc
   and a `BoundMassRecord` are computed;
4. bound type-1 particles and (when stars are given) bound stars are each
   measured into a `Halo`, and the angle between their major axes is
   reported as `phase`.

`external_potential`, if given, is any callable taking x, y, z in kpc and
returning the potential per unit mass; it enters only `EnergyBudget.ext_pe`.
A star table is optional; the star-only centre is reported separately as
`star_center`.

The returned `SnapshotResult` holds `center`, `potential_center`,
`star_center`, `halo`, `star`, `energy`, `bound_counts`, `boundmass`,
`num_bound`, `num_unbound`, `phase`, `distance` (kpc) and `velocity`.
`format_halo_summary(halo)` lists a halo's properties one per line.

### Records on disk

`write_positions(path, table, center, max_r2, types)` writes the bound
particles of the given types inside a radius, one line each with radius,
specific kinetic energy, id and offsets; `append_boundmass(path, record)`
appends one `BoundMassRecord.format()` line to a history file.

### Descendants

Describe each halo as a `HaloSpan(id, p_start, num_p)` over a particle-id
sequence and call `calculate_descendants(halos1, particles1, halos2, particles2)`.
Each earlier halo gets the id of the later halo that holds most of its
particles (ties go to the smallest id), or -1 when none is shared.

## What it does not do

- It does not read snapshot files; particle arrays must be loaded by the
  caller and wrapped in `ParticleTable` objects.
- It does not compute radial density, mass, dispersion or velocity
  profiles; `log_radial_bins` and `anisotropy_beta` are the only profile
  helpers.
- It ships no host-galaxy potential model and no command-line program;
  it is used as a library from Python.
- It does not find halos across a whole simulation volume or run
  distributed work; it measures one object whose particles are given.