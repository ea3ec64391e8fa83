import logging
from typing import Dict, Iterable, List, NamedTuple, Set, Union

logger = logging.getLogger(__name__)


class OriginalRef(NamedTuple):
    """An element of the original instance, by position (nodes first, then edges)."""
    position: int


class DerivedRef(NamedTuple):
    """An element synthesized by a reduction, by index into the sons list."""
    index: int


Ref = Union[OriginalRef, DerivedRef]


class ProvenanceError(RuntimeError):
    """The provenance forest is inconsistent. Reduction cannot be trusted any more."""


class ProvenanceIndex:
    """
    Records which original nodes and edges every working-graph element stands for.

    node_refs and edge_refs keep a reference for every element ever created, deleted ones included.
    The sons list is append-only; entry i lists the references an element replaced at the time it
    was created, so a DerivedRef inside entry i always points to an entry before i.
    """

    __slots__ = ['node_refs', 'edge_refs', 'sons']

    def __init__(self):
        self.node_refs: Dict[int, Ref] = {}
        self.edge_refs: Dict[int, Ref] = {}
        self.sons: List[List[Ref]] = []

    def add_entry(self, refs: Iterable[Ref]) -> DerivedRef:
        refs = list(refs)
        index = len(self.sons)
        for ref in refs:
            if isinstance(ref, DerivedRef) and ref.index >= index:
                raise ProvenanceError(f"Entry {index} would reference later entry {ref.index}")
        self.sons.append(refs)
        return DerivedRef(index)

    def add_new(self, replaced_nodes: Iterable[int], replaced_edges: Iterable[int]) -> DerivedRef:
        """Append an entry made of the references of the replaced nodes, then the replaced edges."""
        refs = [self.node_refs[v] for v in replaced_nodes]
        refs.extend(self.edge_refs[e] for e in replaced_edges)
        return self.add_entry(refs)

    def expand(self, refs: Iterable[Ref]) -> Set[int]:
        """
        Resolve references down to original positions.

        Uses an explicit stack, so arbitrarily deep chains of reductions do not hit the recursion
        limit. Each sons entry is expanded once.

        Args:
            refs: References of the elements of a reduced solution.

        Returns:
            Set of positions of original nodes and edges.
        """
        positions = set()
        visited = set()
        stack = list(refs)
        while stack:
            ref = stack.pop()
            if isinstance(ref, OriginalRef):
                positions.add(ref.position)
                continue
            if ref.index in visited:
                continue
            if not 0 <= ref.index < len(self.sons):
                raise ProvenanceError(f"Dangling provenance reference {ref.index}")
            visited.add(ref.index)
            for child in self.sons[ref.index]:
                if isinstance(child, DerivedRef) and child.index >= ref.index:
                    raise ProvenanceError(f"Provenance cycle through entry {ref.index}")
                stack.append(child)
        return positions
