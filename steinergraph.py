import logging
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

import networkx as nx

logger = logging.getLogger(__name__)

INF = float("inf")


class EdgeWeightedGraph:
    """
    Mutable undirected multigraph with plain integer handles.

    Nodes and edges are identified by integers allocated in increasing order and never reused,
    so a handle of a deleted element can never alias a new one. Edges live in a networkx
    MultiGraph with their id as the edge key and their cost under the "weight" attribute.
    """

    __slots__ = ['graph', '_ends', '_next_node', '_next_edge']

    def __init__(self):
        self.graph = nx.MultiGraph()
        self._ends = {}  # edge id -> (source, target)
        self._next_node = 0
        self._next_edge = 0

    @classmethod
    def from_networkx(cls, graph: nx.Graph, weight: str = "weight"):
        """
        Copy a networkx graph.

        Returns:
            Tuple of the copy, a map original node -> node id, and a list of edge ids in
            the iteration order of graph.edges().
        """
        copy = cls()
        node_map = {v: copy.new_node() for v in graph.nodes}
        edge_ids = []
        for u, v, data in graph.edges(data=True):
            edge_ids.append(copy.new_edge(node_map[u], node_map[v], data.get(weight, 1)))
        return copy, node_map, edge_ids

    # Creation and deletion

    def new_node(self) -> int:
        v = self._next_node
        self._next_node += 1
        self.graph.add_node(v)
        return v

    def new_edge(self, u: int, v: int, weight: float) -> int:
        assert u in self.graph and v in self.graph, "Both endpoints must exist"
        e = self._next_edge
        self._next_edge += 1
        self.graph.add_edge(u, v, key=e, weight=weight)
        self._ends[e] = (u, v)
        return e

    def del_edge(self, e: int):
        u, v = self._ends.pop(e)
        self.graph.remove_edge(u, v, key=e)

    def del_node(self, v: int):
        for e, _ in self.incident(v):
            self._ends.pop(e, None)
        self.graph.remove_node(v)

    def clear_except(self, keep: int):
        """Delete every node but keep."""
        for v in self.nodes():
            if v != keep:
                self.del_node(v)

    def contract(self, e: int) -> int:
        """
        Contract edge e into its source node. Edges that would become self-loops are deleted.

        Returns:
            The surviving node.
        """
        u, v = self._ends[e]
        self.del_edge(e)
        if u == v:
            return u
        for f, w in self.incident(v):
            if f not in self._ends:
                continue
            weight = self.weight(f)
            self.del_edge(f)
            if w == v or w == u:
                continue
            # Keep the id so provenance of the moved edge stays valid
            self.graph.add_edge(u, w, key=f, weight=weight)
            self._ends[f] = (u, w)
        self.graph.remove_node(v)
        return u

    # Queries

    def __contains__(self, v) -> bool:
        return v in self.graph

    def has_edge(self, e: int) -> bool:
        return e in self._ends

    def nodes(self) -> List[int]:
        return list(self.graph.nodes)

    def edges(self) -> List[int]:
        return list(self._ends)

    def number_of_nodes(self) -> int:
        return self.graph.number_of_nodes()

    def number_of_edges(self) -> int:
        return len(self._ends)

    def max_node_index(self) -> int:
        return self._next_node - 1

    def max_edge_index(self) -> int:
        return self._next_edge - 1

    def ends(self, e: int) -> Tuple[int, int]:
        return self._ends[e]

    def opposite(self, e: int, v: int) -> int:
        source, target = self._ends[e]
        return target if source == v else source

    def weight(self, e: int) -> float:
        u, v = self._ends[e]
        return self.graph.edges[u, v, e]["weight"]

    def set_weight(self, e: int, weight: float):
        u, v = self._ends[e]
        self.graph.edges[u, v, e]["weight"] = weight

    def degree(self, v: int) -> int:
        return self.graph.degree(v)

    def incident(self, v: int) -> List[Tuple[int, int]]:
        """List of (edge id, neighbour) pairs. A self-loop is listed twice, matching degree()."""
        result = []
        for w, keys in self.graph.adj[v].items():
            for e in keys:
                result.append((e, w))
                if w == v:
                    result.append((e, w))
        return result

    def search_edge(self, u: int, v: int) -> Optional[int]:
        keys = self.graph.get_edge_data(u, v)
        if not keys:
            return None
        return next(iter(keys))

    def empty(self) -> bool:
        return self.graph.number_of_nodes() == 0

    def is_connected(self) -> bool:
        return self.empty() or nx.is_connected(self.graph)

    def is_loop_free(self) -> bool:
        return nx.number_of_selfloops(self.graph) == 0

    def is_simple(self) -> bool:
        if not self.is_loop_free():
            return False
        return all(len(keys) == 1 for _, _, keys in self._pairs())

    def _pairs(self):
        for u, nbrs in self.graph.adj.items():
            for v, keys in nbrs.items():
                if u < v:
                    yield u, v, keys

    def total_weight(self) -> float:
        return sum(w for _, _, w in self.graph.edges(data="weight"))



class Voronoi:
    """
    Voronoi regions of a weighted graph with respect to a set of seeds.

    Every reachable node gets the seed it is closest to, the distance to that seed, and its
    predecessor on a shortest path from the seed. Unreachable nodes have no seed and
    distance infinity.
    """

    __slots__ = ['_seed', '_distance', '_predecessor']

    def __init__(self, graph: nx.MultiGraph, seeds: Iterable[Hashable]):
        seeds = list(seeds)
        self._seed = {}
        self._predecessor = {}
        self._distance = {}
        if not seeds:
            return
        self._distance = nx.multi_source_dijkstra_path_length(graph, seeds, weight="weight")
        for s in seeds:
            self._seed[s] = s
            self._predecessor[s] = None
        # nodes tied with their predecessor through zero weight edges wait for a later pass
        pending = [v for v in sorted(self._distance, key=self._distance.get) if v not in self._seed]
        while pending:
            deferred = [v for v in pending if not self._inherit_seed(graph, v)]
            assert len(deferred) < len(pending), "Voronoi predecessor search made no progress"
            pending = deferred

    def _inherit_seed(self, graph, v) -> bool:
        for u, keyed in graph.adj[v].items():
            if u == v or u not in self._seed:
                continue
            w = min(data["weight"] for data in keyed.values())
            if self._distance[u] + w == self._distance[v]:
                self._seed[v] = self._seed[u]
                self._predecessor[v] = u
                return True
        return False

    def seed(self, v):
        return self._seed.get(v)

    def distance(self, v) -> float:
        return self._distance.get(v, INF)

    def predecessor(self, v):
        return self._predecessor.get(v)


def shortest_path_lengths(graph: nx.MultiGraph, source) -> Dict[Hashable, float]:
    """Single-source Dijkstra distances; unreachable nodes are absent."""
    return nx.single_source_dijkstra_path_length(graph, source, weight="weight")


def minimum_spanning_tree(graph: nx.Graph) -> Tuple[nx.Graph, float]:
    """MST (forest for disconnected input) and its total weight."""
    tree = nx.minimum_spanning_tree(graph, weight="weight")
    return tree, sum(w for _, _, w in tree.edges(data="weight"))


class EpsilonTest:
    """Floating point comparisons with an absolute tolerance."""

    __slots__ = ['eps']

    def __init__(self, eps=1e-6):
        self.eps = eps

    def less(self, x, y):
        return x < y - self.eps

    def leq(self, x, y):
        return x < y + self.eps

    def greater(self, x, y):
        return x > y + self.eps

    def geq(self, x, y):
        return x > y - self.eps

    def equal(self, x, y):
        return self.leq(x, y) and self.geq(x, y)
