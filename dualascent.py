import logging
from typing import Dict, List, Tuple

import networkx as nx

from steinergraph import INF, EdgeWeightedGraph, EpsilonTest

logger = logging.getLogger(__name__)


class _TerminalCut:
    """Nodes that reach a terminal over zero reduced cost arcs, and the arcs entering them."""

    __slots__ = ['terminal', 'members', 'cut']

    def __init__(self, terminal):
        self.terminal = terminal
        self.members = set()
        self.cut = set()  # arcs (edge, head)


class LowerBoundDualAscent:
    """
    One run of Wong's dual ascent on the bidirected graph, rooted at root.

    An arc is written (edge, head) and means the edge traversed towards head. While some terminal
    cannot be reached from the root over zero reduced cost arcs, the terminal with the smallest cut
    gets the reduced cost of all its cut arcs lowered by their minimum, which raises the lower bound
    by the same amount.
    """

    def __init__(self, graph: EdgeWeightedGraph, terminals, root, eps=1e-6):
        self.graph = graph
        self.root = root
        self.eps = EpsilonTest(eps)
        self.lower = 0
        self.reduced_cost: Dict[Tuple[int, int], float] = {}
        for e in graph.edges():
            u, v = graph.ends(e)
            if u != v:
                self.reduced_cost[(e, u)] = self.reduced_cost[(e, v)] = graph.weight(e)

        self.active: List[_TerminalCut] = []
        for t in terminals:
            if t == root:
                continue
            data = _TerminalCut(t)
            if self._grow(data, t):
                self.active.append(data)

    def _grow(self, data: _TerminalCut, start) -> bool:
        """Adds start and everything reaching it over zero cost arcs. False once the root is reached."""
        stack = [start]
        while stack:
            x = stack.pop()
            if x in data.members:
                continue
            if x == self.root:
                return False
            data.members.add(x)
            for e, w in self.graph.incident(x):
                if w == x:
                    continue
                if w in data.members:
                    data.cut.discard((e, w))
                elif self.reduced_cost[(e, x)] == 0:
                    stack.append(w)
                else:
                    data.cut.add((e, x))
        return True

    def compute(self) -> float:
        while self.active:
            data = min(self.active, key=lambda d: len(d.cut))
            assert data.cut, f"Terminal {data.terminal} is disconnected from the root"
            delta = min(self.reduced_cost[arc] for arc in data.cut)

            zeroed = []
            for arc in data.cut:
                self.reduced_cost[arc] -= delta
                if self.eps.leq(self.reduced_cost[arc], 0):
                    self.reduced_cost[arc] = 0
                    zeroed.append(arc)
            self.lower += delta

            for e, head in zeroed:
                tail = self.graph.opposite(e, head)
                for other in list(self.active):
                    if head in other.members and tail not in other.members:
                        if not self._grow(other, tail):
                            self.active.remove(other)
        return self.lower


class SteinerTreeLowerBoundDualAscent:
    """
    Dual ascent lower bounds for the Steiner tree problem (Polzin and Vahdati Daneshmand).

    With repetitions > 1 the computation is repeated with the next terminals as roots and the best
    bound is kept.
    """

    def __init__(self, repetitions=1, eps=1e-6):
        self.repetitions = repetitions
        self.eps = eps

    def _roots(self, terminals):
        return list(terminals)[:max(1, self.repetitions)]

    def call(self, graph: EdgeWeightedGraph, terminals) -> float:
        """Returns the lower bound on the cost of a Steiner tree."""
        return max(LowerBoundDualAscent(graph, terminals, root, self.eps).compute() for root in self._roots(terminals))

    def compute_bounds(self, graph: EdgeWeightedGraph, terminals) -> Tuple[Dict[int, float], Dict[int, float]]:
        """
        Lower bounds on the cost of a Steiner tree containing a given node or edge.

        Returns:
            Tuple of node bounds and edge bounds, keyed by node and edge id.
        """
        assert graph.is_connected(), "Dual ascent bounds need a connected graph"
        node_bounds = {v: 0 for v in graph.nodes()}
        edge_bounds = {e: 0 for e in graph.edges()}
        for root in self._roots(terminals):
            nodes, edges = self._compute_bounds(graph, terminals, root)
            for v, bound in nodes.items():
                node_bounds[v] = max(node_bounds[v], bound)
            for e, bound in edges.items():
                edge_bounds[e] = max(edge_bounds[e], bound)
        return node_bounds, edge_bounds

    def _compute_bounds(self, graph, terminals, root):
        algorithm = LowerBoundDualAscent(graph, terminals, root, self.eps)
        lower = algorithm.compute()

        network = nx.DiGraph()
        network.add_nodes_from(graph.nodes())
        for (e, head), cost in algorithm.reduced_cost.items():
            tail = graph.opposite(e, head)
            if not network.has_edge(tail, head) or network[tail][head]["weight"] > cost:
                network.add_edge(tail, head, weight=cost)

        from_root = nx.single_source_dijkstra_path_length(network, root, weight="weight")
        non_root_terminals = [t for t in terminals if t != root]
        to_terminal = nx.multi_source_dijkstra_path_length(network.reverse(copy=False), non_root_terminals, weight="weight")

        nodes = {v: lower + from_root.get(v, INF) + to_terminal.get(v, INF) for v in graph.nodes()}
        edges = {}
        for e in graph.edges():
            u, v = graph.ends(e)
            if u == v:
                edges[e] = lower + from_root.get(u, INF) + graph.weight(e) + to_terminal.get(u, INF)
                continue
            edges[e] = lower + min(
                from_root.get(u, INF) + algorithm.reduced_cost[(e, v)] + to_terminal.get(v, INF),
                from_root.get(v, INF) + algorithm.reduced_cost[(e, u)] + to_terminal.get(u, INF),
            )
        logger.debug(f"Dual ascent from root {root}: lower bound {lower}")
        return nodes, edges
