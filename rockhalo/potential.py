"""Particle tables and gravitational potential / kinetic energy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from rockhalo.settings import Settings

POINTS_PER_LEAF = 10
POTENTIAL_ERR_TOL = 1.0
_CHUNK = 512


@dataclass
class ParticleTable:
    """Phase-space positions with per-particle energies and distances.

    ``pos`` holds x, y, z (Mpc) and vx, vy, vz (km/s); ``pe`` is the
    potential sum in mass / length units before the gravitational constant.
    """

    pos: np.ndarray
    types: np.ndarray
    ids: np.ndarray
    r2: np.ndarray
    pe: np.ndarray
    ke: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.pos)
        if self.pos.ndim != 2 or self.pos.shape[1] != 6:
            raise ValueError("pos must have shape (n, 6)")
        for name in ("types", "ids", "r2", "pe", "ke"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"{name} must have {n} entries")

    def __len__(self) -> int:
        return len(self.pos)

    @classmethod
    def from_arrays(cls, pos, types, ids=None) -> "ParticleTable":
        """Build a table with zeroed energies and distances."""
        pos = np.asarray(pos, dtype=np.float64)
        if pos.size == 0:
            pos = pos.reshape(0, 6)
        if pos.ndim != 2 or pos.shape[1] != 6:
            raise ValueError("pos must have shape (n, 6)")
        n = len(pos)
        types = np.asarray(types, dtype=np.int32)
        if types.ndim == 0:
            types = np.full(n, int(types), dtype=np.int32)
        ids = np.arange(n, dtype=np.int64) if ids is None else np.asarray(ids, dtype=np.int64)
        return cls(pos.copy(), types.copy(), ids.copy(), np.zeros(n), np.zeros(n), np.zeros(n))

    def update_r2(self, center: Sequence[float]) -> "ParticleTable":
        """Set squared distances to the spatial part of ``center``."""
        c = np.asarray(center, dtype=np.float64)[:3]
        self.r2 = np.sum((self.pos[:, :3] - c) ** 2, axis=1)
        return self

    def _reorder(self, order: np.ndarray) -> "ParticleTable":
        for name in ("pos", "types", "ids", "r2", "pe", "ke"):
            setattr(self, name, getattr(self, name)[order])
        return self

    def sort_by_distance(self) -> "ParticleTable":
        """Order rows by increasing squared distance."""
        return self._reorder(np.argsort(self.r2, kind="stable"))

    def sort_by_potential(self) -> "ParticleTable":
        """Order rows from the deepest potential (largest pe) outwards."""
        return self._reorder(np.argsort(-self.pe, kind="stable"))

    def select(self, mask) -> "ParticleTable":
        """New table holding the rows picked by a boolean mask or index array."""
        idx = np.asarray(mask)
        return ParticleTable(
            self.pos[idx].copy(), self.types[idx].copy(), self.ids[idx].copy(),
            self.r2[idx].copy(), self.pe[idx].copy(), self.ke[idx].copy(),
        )

    @classmethod
    def concat(cls, tables: Iterable["ParticleTable"]) -> "ParticleTable":
        """Stack several tables into one."""
        tables = list(tables)
        if not tables:
            return cls.from_arrays(np.empty((0, 6)), np.empty(0, dtype=np.int32))
        return cls(
            np.concatenate([t.pos for t in tables]),
            np.concatenate([t.types for t in tables]),
            np.concatenate([t.ids for t in tables]),
            np.concatenate([t.r2 for t in tables]),
            np.concatenate([t.pe for t in tables]),
            np.concatenate([t.ke for t in tables]),
        )


def _masses(types: np.ndarray, settings: Settings) -> np.ndarray:
    out = np.empty(len(types), dtype=np.float64)
    for t in np.unique(types):
        out[types == t] = settings.particle_mass(int(t))
    return out


def _pairwise(targets, sources, src_mass, force_res, self_offset=None) -> np.ndarray:
    out = np.zeros(len(targets))
    for start in range(0, len(targets), _CHUNK):
        block = targets[start : start + _CHUNK]
        dist = np.sqrt(np.sum((block[:, None, :] - sources[None, :, :]) ** 2, axis=-1))
        inv = 1.0 / np.maximum(dist, force_res)
        if self_offset is not None:
            rows = np.arange(len(block))
            inv[rows, rows + start + self_offset] = 0.0
        out[start : start + len(block)] = inv @ src_mass
    return out


def compute_direct_potential(table: ParticleTable, settings: Settings) -> None:
    """Add the exact pairwise potential sum of every other particle to ``pe``."""
    if len(table) == 0:
        return
    pos = table.pos[:, :3]
    mass = _masses(table.types, settings)
    table.pe = table.pe + _pairwise(pos, pos, mass, settings.force_res, self_offset=0)


class _Node:
    __slots__ = ("start", "end", "lo", "hi", "left", "right", "mass", "center", "dmin", "active")

    def __init__(self, start, end, lo, hi):
        self.start, self.end, self.lo, self.hi = start, end, lo, hi
        self.left = self.right = None
        self.mass = 0.0
        self.center = None
        self.dmin = 0.0
        self.active = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None


def _build(pos, order, start, end, leaves) -> _Node:
    pts = pos[order[start:end]]
    node = _Node(start, end, pts.min(axis=0), pts.max(axis=0))
    count = end - start
    dim = int(np.argmax(node.hi - node.lo))
    if count <= POINTS_PER_LEAF or node.hi[dim] <= node.lo[dim]:
        leaves.append(node)
        return node
    seg = order[start:end]
    order[start:end] = seg[np.argsort(pos[seg, dim], kind="stable")]
    mid = start + count // 2
    node.left = _build(pos, order, start, mid, leaves)
    node.right = _build(pos, order, mid, end, leaves)
    return node


def _finish(node, pos, order, mass, pe, ke) -> None:
    idx = order[node.start : node.end]
    if node.is_leaf:
        node.mass = float(mass[idx].sum())
        node.center = pos[idx].mean(axis=0)
        node.active = idx[~(pe[idx] > ke[idx])]
    else:
        _finish(node.left, pos, order, mass, pe, ke)
        _finish(node.right, pos, order, mass, pe, ke)
        node.mass = node.left.mass + node.right.mass
        if node.mass:
            node.center = (node.left.center * node.left.mass
                           + node.right.center * node.right.mass) / node.mass
        else:
            node.center = np.zeros(3)
    d2 = np.sum((pos[idx] - node.center) ** 2, axis=1)
    bmax = np.sqrt(d2.max()) / 2.0
    node.dmin = float(bmax + np.sqrt(bmax * bmax + d2.sum() / (len(idx) * POTENTIAL_ERR_TOL)))


def _accumulate(leaf, other, pos, order, mass, pe, force_res) -> None:
    if leaf is other:
        idx = order[leaf.start : leaf.end]
        if len(idx) > 2 * POINTS_PER_LEAF:
            return
        pe[idx] += _pairwise(pos[idx], pos[idx], mass[idx], force_res, self_offset=0)
        return
    contained = bool(np.all(leaf.lo >= other.lo) and np.all(leaf.hi <= other.hi))
    acceptable = float(np.sum((leaf.center - other.center) ** 2)) > other.dmin * other.dmin
    targets = leaf.active
    if contained or not acceptable:
        if other.is_leaf:
            if len(targets):
                src = order[other.start : other.end]
                pe[targets] += _pairwise(pos[targets], pos[src], mass[src], force_res)
        else:
            _accumulate(leaf, other.left, pos, order, mass, pe, force_res)
            _accumulate(leaf, other.right, pos, order, mass, pe, force_res)
    elif len(targets):
        r = np.sqrt(np.sum((pos[targets] - other.center) ** 2, axis=1))
        pe[targets] += other.mass / r


def compute_potential(table: ParticleTable, settings: Settings) -> None:
    """Reset and compute ``pe`` with a Barnes-Hut tree walk."""
    table.pe = np.zeros(len(table))
    if len(table) == 0:
        return
    pos = table.pos[:, :3]
    mass = _masses(table.types, settings)
    order = np.arange(len(table))
    leaves: list[_Node] = []
    root = _build(pos, order, 0, len(table), leaves)
    pe = table.pe
    _finish(root, pos, order, mass, pe, table.ke)
    for leaf in leaves:
        _accumulate(leaf, root, pos, order, mass, pe, settings.force_res)
    table.pe = pe


def compute_kinetic_energy(table: ParticleTable, vel_center: Sequence[float], settings: Settings) -> None:
    """Set ``ke`` from velocities relative to ``vel_center``; negative ``ke`` is kept."""
    conv = 0.5 * settings.scale_now / settings.gc
    vc = np.asarray(vel_center, dtype=np.float64)[:3]
    active = ~(table.ke < 0)
    dv = table.pos[active, 3:6] - vc
    ke = table.ke.astype(np.float64, copy=True)
    ke[active] = conv * np.sum(dv * dv, axis=1)
    table.ke = ke