# src/outbreak_phylodynamics/phylogeny/phylogeny.py
"""
Dated bifurcating phylogeny derived from the transmission tree.

In the transmission tree an infector is an internal node. In the phylogeny every
infected individual is a tip (sampled at removal), and each transmission
event splits the infector's lineage: one branch carries on as the infector,
the other leads to the infectee's subtree.

The phylogeny is stored as a tskit tree sequence over a unit-length genome,
so it holds a single tree. tskit measures time backward and needs every
parent strictly older than its children, while a transmission at removal
puts a branching node at exactly its infector's sampling time. Node times in
the tables are therefore negated clock times, nudged by one ulp where a
branch would have zero length. Exact clock times and individual ids live in
the node metadata.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import tskit

from ..errors import DataInconsistency
from .transmission_tree import TransmissionTree

_NODE_SCHEMA = tskit.MetadataSchema({"codec": "json"})


@dataclass(frozen=True)
class PhyloNode:
    node_id: int
    time: float
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    individual_id: Optional[int] = None

    @property
    def is_tip(self) -> bool:
        return not self.children


class Phylogeny:
    """Read-only view of a tskit tree sequence, with nodes addressed by tskit node id."""

    def __init__(self, ts: tskit.TreeSequence):
        self.ts = ts
        self.tree = ts.first()
        meta = [node.metadata for node in ts.nodes()]
        self.times = np.array([m["time"] for m in meta], dtype=float)
        self.individual_ids = [m["individual"] for m in meta]
        self.roots = tuple(self.tree.roots)
        self.nodes = tuple(
            PhyloNode(
                u,
                float(self.times[u]),
                self._parent(u),
                tuple(self.tree.children(u)),
                self.individual_ids[u],
            )
            for u in range(ts.num_nodes)
        )

    @classmethod
    def from_nodes(cls, nodes: Sequence[PhyloNode]) -> "Phylogeny":
        """Build a phylogeny from PhyloNode records whose children refer to node ids."""
        by_id = {n.node_id: n for n in nodes}
        builder = _TableBuilder()
        new_ids: Dict[int, int] = {}
        for root in (n for n in nodes if n.parent is None):
            stack = [(root.node_id, False)]
            while stack:
                node_id, expanded = stack.pop()
                node = by_id[node_id]
                if expanded or node.is_tip:
                    new_ids[node_id] = builder.add(
                        node.time, [new_ids[c] for c in node.children], node.individual_id
                    )
                    continue
                stack.append((node_id, True))
                stack.extend((c, False) for c in node.children)
        return builder.finish()

    def _parent(self, u: int) -> Optional[int]:
        parent = self.tree.parent(u)
        return None if parent == tskit.NULL else parent

    def __len__(self):
        return len(self.nodes)

    def __getitem__(self, node_id: int) -> PhyloNode:
        return self.nodes[node_id]

    @property
    def is_empty(self) -> bool:
        return not self.roots

    @property
    def is_forest(self) -> bool:
        """More than one root: the transmission forest had several index cases."""
        return len(self.roots) > 1

    @property
    def tips(self) -> Tuple[PhyloNode, ...]:
        return tuple(n for n in self.nodes if n.is_tip)

    @property
    def internal_nodes(self) -> Tuple[PhyloNode, ...]:
        return tuple(n for n in self.nodes if not n.is_tip)

    @property
    def tip_count(self) -> int:
        return self.ts.num_samples

    def tip_ids(self) -> List[int]:
        return sorted(self.individual_ids[u] for u in self.ts.samples())

    @property
    def tmrca(self) -> float:
        """Time of the (earliest) root node."""
        if self.is_empty:
            raise DataInconsistency("Empty phylogeny has no root")
        return float(min(self.times[r] for r in self.roots))

    @property
    def last_tip_time(self) -> float:
        if self.is_empty:
            raise DataInconsistency("Empty phylogeny has no tips")
        return float(self.times[self.ts.samples()].max())

    def branch_length(self, node_id: int) -> float:
        parent = self._parent(node_id)
        if parent is None:
            return 0.0
        return float(self.times[node_id] - self.times[parent])

    def to_newick(self, precision: int = 6) -> str:
        """Newick string with branch lengths and tips labelled by individual id; one line per tree."""
        labels = {int(u): str(self.individual_ids[u]) for u in self.ts.samples()}
        return "\n".join(
            self.tree.as_newick(root=root, precision=precision, node_labels=labels)
            for root in self.roots
        )


class _TableBuilder:
    """Appends nodes and edges to a TableCollection while a phylogeny is being assembled.

    Children must be added before their parent.
    """

    def __init__(self):
        self.tables = tskit.TableCollection(sequence_length=1.0)
        self.tables.nodes.metadata_schema = _NODE_SCHEMA
        self._ago: List[float] = []

    def add(self, time, children=(), individual_id=None) -> int:
        ago = -float(time)
        for child in children:
            if self._ago[child] >= ago:
                ago = float(np.nextafter(self._ago[child], np.inf))
        u = self.tables.nodes.add_row(
            flags=0 if children else tskit.NODE_IS_SAMPLE,
            time=ago,
            metadata={
                "time": float(time),
                "individual": None if individual_id is None else int(individual_id),
            },
        )
        for child in children:
            self.tables.edges.add_row(left=0.0, right=1.0, parent=u, child=child)
        self._ago.append(ago)
        return u

    def finish(self) -> Phylogeny:
        self.tables.sort()
        return Phylogeny(self.tables.tree_sequence())


def _latest_time(individuals) -> float:
    times = [ind.infection_time for ind in individuals]
    times += [ind.recovery_time for ind in individuals if ind.recovery_time is not None]
    return max(times) if times else 0.0


def build_phylogeny(individuals, end_time: Optional[float] = None) -> Phylogeny:
    """Convert the transmission tree into a dated bifurcating phylogeny

    Args:
        individuals: sequence of Individuals, or a TransmissionTree
        end_time: sampling time for individuals still infected at the end;
            defaults to the latest infection/recovery time in the registry
    Returns:
        Phylogeny with one tip per individual and one root per index case
    Raises:
        DataInconsistency
    """
    if isinstance(individuals, TransmissionTree):
        tree = individuals
        registry = list(tree.individuals)
    else:
        registry = list(individuals)
        tree = TransmissionTree.from_individuals(registry)

    if end_time is None:
        end_time = _latest_time(registry)

    builder = _TableBuilder()
    heads: Dict[int, int] = {}

    # Infectees always have larger ids, so walking ids downwards sees every
    # child subtree before its infector
    for ind in sorted(registry, key=lambda i: i.id, reverse=True):
        tip_time = ind.recovery_time if ind.recovery_time is not None else end_time
        kids = tree.children(ind.id)
        if kids and tip_time < tree.individual(kids[-1]).infection_time:
            raise DataInconsistency(f"Individual {ind.id} is sampled before its last transmission")

        head = builder.add(tip_time, individual_id=ind.id)
        for child in reversed(kids):
            head = builder.add(tree.individual(child).infection_time, children=(head, heads.pop(child)))
        heads[ind.id] = head

    return builder.finish()


def restrict_to_tips(phylogeny: Phylogeny, keep: Iterable[int]) -> Phylogeny:
    """Prune tips whose individual id is not in `keep`

    tskit's simplify drops the pruned lineages and the unary nodes they leave
    behind. Node times are absolute, so the branch spanning a removed node
    equals the sum of the two branches it replaces.
    """
    keep = set(int(i) for i in keep)
    samples = sorted(
        (int(u) for u in phylogeny.ts.samples() if phylogeny.individual_ids[u] in keep),
        key=lambda u: phylogeny.individual_ids[u],
    )
    if not samples:
        return _TableBuilder().finish()
    return Phylogeny(phylogeny.ts.simplify(samples=samples))
