# src/outbreak_phylodynamics/phylogeny/transmission_tree.py
# Who-infected-whom view over the Individual registry.
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from ..errors import DataInconsistency


@dataclass(frozen=True)
class TransmissionEdge:
    source: int
    target: int
    length: float


class TransmissionTree:
    """Read-only transmission forest; each infector is an internal node."""

    def __init__(self, individuals: Sequence, edges: Tuple[TransmissionEdge, ...],
                 roots: Tuple[int, ...], children: Dict[int, Tuple[int, ...]]):
        self._individuals = {ind.id: ind for ind in individuals}
        self.edges = edges
        self.roots = roots
        self._children = children

    @classmethod
    def from_individuals(cls, individuals: Sequence) -> "TransmissionTree":
        by_id = {ind.id: ind for ind in individuals}
        edges: List[TransmissionEdge] = []
        roots: List[int] = []
        children: Dict[int, List[int]] = {i: [] for i in by_id}

        for ind in individuals:
            if ind.infector_id is None:
                roots.append(ind.id)
                continue
            src = by_id.get(ind.infector_id)
            if src is None:
                raise DataInconsistency(f"Infector {ind.infector_id} of individual {ind.id} is not in the registry")
            # ids grow with infection order, so parent pointers cannot form cycles
            if src.id >= ind.id:
                raise DataInconsistency(f"Infector {src.id} does not precede individual {ind.id}")
            edges.append(TransmissionEdge(src.id, ind.id, ind.infection_time - src.infection_time))
            children[src.id].append(ind.id)

        ordered = {
            i: tuple(sorted(kids, key=lambda c: (by_id[c].infection_time, c)))
            for i, kids in children.items()
        }
        return cls(individuals, tuple(edges), tuple(sorted(roots)), ordered)

    @property
    def is_forest(self) -> bool:
        return len(self.roots) > 1

    @property
    def individuals(self) -> Tuple:
        return tuple(self._individuals[i] for i in sorted(self._individuals))

    def individual(self, ind_id: int):
        return self._individuals[ind_id]

    def children(self, ind_id: int) -> Tuple[int, ...]:
        """Infectees of `ind_id` ordered by (infection time, id)."""
        return self._children.get(ind_id, ())

    def offspring_counts(self) -> Dict[int, int]:
        return {i: len(kids) for i, kids in self._children.items()}

    def __len__(self):
        return len(self._individuals)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(e.source, e.target, e.length) for e in self.edges],
            columns=["from", "to", "length"],
        )
