"""Descendant assignment between halo catalogues by shared particle IDs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class HaloSpan:
    """A halo and the slice of the particle-ID list it owns."""

    id: int
    p_start: int
    num_p: int


def particle_halo_map(halos: Iterable[HaloSpan], particle_ids: Sequence[int]) -> dict[int, int]:
    """Map each particle ID to the halo owning it; later halos win."""
    owner: dict[int, int] = {}
    for halo in halos:
        for pid in particle_ids[halo.p_start : halo.p_start + halo.num_p]:
            owner[int(pid)] = halo.id
    return owner


def calculate_descendants(halos1, particles1, halos2, particles2) -> list[int]:
    """Descendant halo ID of each halo in ``halos1``, or -1 when none.

    The descendant is the later halo holding most of the earlier halo's
    particles; ties go to the smallest halo ID.
    """
    halos1 = list(halos1)
    halos2 = list(halos2)
    if not halos2:
        return [-1] * len(halos1)
    owner = particle_halo_map(halos2, particles2)
    result = []
    for halo in halos1:
        counts = Counter(
            owner[int(pid)]
            for pid in particles1[halo.p_start : halo.p_start + halo.num_p]
            if int(pid) in owner
        )
        if not counts:
            result.append(-1)
            continue
        best = max(counts.values())
        result.append(min(hid for hid, n in counts.items() if n == best))
    return result