import itertools
import logging
import random
from collections import deque
from typing import Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

import networkx as nx
import numpy as np

from closestterminals import ClosestKTerminals
from dualascent import SteinerTreeLowerBoundDualAscent
from heavypathdecomposition import HeavyPathDecomposition
from priorityqueue import LazyPriorityQueue
from provenance import OriginalRef, ProvenanceIndex
from steinergraph import INF, EdgeWeightedGraph, EpsilonTest, Voronoi, minimum_spanning_tree, shortest_path_lengths
from steinertreemodules import SteinerTreeModule, TakahashiHeuristic
from terminalspanningtree import construct_terminal_spanning_tree

logger = logging.getLogger(__name__)

EPS = 1e-6
LONG_EDGES_SEARCH_LIMIT = 200

# Graph states each test relies on; the orchestrator restores them before calling the test
PRECONDITIONS = {
    "ptm_test": ("connected",),
    "ntdk_test": ("simple", "connected"),
    "nearest_vertex_test": ("loop_free", "connected"),
    "short_links_test": ("loop_free", "connected"),
    "terminal_distance_test": ("connected",),
    "lower_bound_based_test": ("connected",),
    "reachability_test": ("simple", "connected"),
    "cut_reachability_test": ("leaf_free", "connected"),
    "long_edges_test": ("connected",),
    "dual_ascent_based_test": ("connected",),
}


def repeat(f: Callable[[], bool]) -> bool:
    """Calls f until it returns False. Returns whether any call returned True."""
    changed = False
    while f():
        changed = True
    return changed


class SteinerTreePreprocessing:
    """
    Reductions for the Steiner tree problem in graphs.

    The instance is copied into a working graph which the reduction tests shrink in place. Every
    test returns whether it changed the working graph. Elements the reductions create are tracked in a
    provenance index, so a Steiner tree of the reduced instance can be turned back into a Steiner
    tree of the original one with compute_original_solution().

    The tests follow
    - C. Duin, A. Volgenant: Reduction tests for the Steiner problem in graphs. Networks 19 (1989).
    - T. Polzin, S. Vahdati Daneshmand: Improved algorithms for the Steiner problem in networks.
      Discrete Applied Mathematics 112 (2001).
    """

    def __init__(self, graph: nx.Graph, terminals: Iterable[Hashable], is_terminal: Optional[Mapping[Hashable, bool]] = None, eps: float = EPS):
        """
        Args:
            graph: Undirected networkx Graph or MultiGraph, edge costs under "weight" (default 1).
            terminals: The terminal nodes.
            is_terminal: Terminal membership for every node. Derived from terminals when omitted.
            eps: Tolerance of the floating point comparisons.
        """
        if graph.is_directed():
            raise ValueError("Steiner tree instances must be undirected")
        if graph.number_of_nodes() == 0:
            raise ValueError("Cannot preprocess an empty graph")
        terminals = list(terminals)
        missing = [t for t in terminals if t not in graph]
        if missing:
            raise ValueError(f"Terminals {missing} are not in the graph")
        if any(w < 0 for *_, w in graph.edges(data="weight", default=1)):
            raise ValueError("Edge weights must be non-negative")
        if is_terminal is None:
            terminal_set = set(terminals)
            is_terminal = {v: v in terminal_set for v in graph.nodes}

        self.orig_graph = graph
        self.orig_terminals = terminals
        self.orig_is_terminal = is_terminal
        self.orig_nodes = list(graph.nodes)
        self.orig_edges = list(graph.edges(keys=True)) if graph.is_multigraph() else list(graph.edges())
        self.eps = EpsilonTest(eps)

        self.copy_graph, node_map, edge_ids = EdgeWeightedGraph.from_networkx(graph)
        self.provenance = ProvenanceIndex()
        for position, v in enumerate(self.orig_nodes):
            self.provenance.node_refs[node_map[v]] = OriginalRef(position)
        for position, e in enumerate(edge_ids, start=len(self.orig_nodes)):
            self.provenance.edge_refs[e] = OriginalRef(position)
        self.copy_terminals = [node_map[t] for t in terminals]
        self.copy_is_terminal = {node_map[v]: bool(is_terminal[v]) for v in self.orig_nodes}

        self.cost_already_inserted = 0
        self.cost_upper_bound_algorithm: SteinerTreeModule = TakahashiHeuristic()

    # Accessors

    @property
    def reduced_graph(self) -> EdgeWeightedGraph:
        return self.copy_graph

    @property
    def reduced_terminals(self) -> List[int]:
        return self.copy_terminals

    @property
    def reduced_is_terminal(self) -> Dict[int, bool]:
        return self.copy_is_terminal

    @property
    def cost_edges_already_inserted(self) -> float:
        return self.cost_already_inserted

    def shuffle_reduced_terminals(self, rng: random.Random = None):
        (rng or random).shuffle(self.copy_terminals)

    def set_cost_upper_bound_algorithm(self, module: SteinerTreeModule):
        self.cost_upper_bound_algorithm = module

    # Solving and reconstruction

    def solve(self, module: SteinerTreeModule) -> Tuple[float, nx.Graph]:
        """
        Solves the reduced instance with module and maps the result back.

        Returns:
            Tuple of the cost of the solution including the cost of edges already inserted,
            and the solution as a subgraph of the original graph.
        """
        graph = self.copy_graph
        if not self.copy_terminals:
            return self.cost_already_inserted, self.compute_original_solution(nx.MultiGraph())

        if graph.max_node_index() > graph.number_of_nodes() + 5 or graph.max_edge_index() > graph.number_of_edges() + 10:
            # relabel so that the solver sees dense ids
            nodes = graph.nodes()
            compact_of = {v: i for i, v in enumerate(nodes)}
            edges = graph.edges()
            compact = nx.MultiGraph()
            compact.add_nodes_from(range(len(nodes)))
            for i, e in enumerate(edges):
                u, v = graph.ends(e)
                compact.add_edge(compact_of[u], compact_of[v], key=i, weight=graph.weight(e))
            cost, compact_tree = module.call(
                compact,
                [compact_of[t] for t in self.copy_terminals],
                {compact_of[v]: self.copy_is_terminal[v] for v in nodes},
            )
            reduced_tree = nx.MultiGraph()
            reduced_tree.add_nodes_from(nodes[i] for i in compact_tree.nodes)
            for u, v, i, w in compact_tree.edges(keys=True, data="weight"):
                reduced_tree.add_edge(nodes[u], nodes[v], key=edges[i], weight=w)
        else:
            cost, reduced_tree = module.call(graph.graph, self.copy_terminals, self.copy_is_terminal)

        return cost + self.cost_already_inserted, self.compute_original_solution(reduced_tree)

    def compute_original_solution(self, reduced_solution: nx.MultiGraph) -> nx.Graph:
        """
        Expands a solution of the reduced instance to the original instance.

        Args:
            reduced_solution: Subgraph of the working graph, a MultiGraph keyed by edge id.

        Returns:
            Subgraph of the original graph (same networkx class, original attributes).
        """
        refs = [self.provenance.node_refs[v] for v in reduced_solution.nodes]
        refs.extend(self.provenance.edge_refs[e] for _, _, e in reduced_solution.edges(keys=True))
        positions = self.provenance.expand(refs)

        solution = self.orig_graph.__class__()
        num_nodes = len(self.orig_nodes)
        for position in sorted(positions):
            if position < num_nodes:
                solution.add_node(self.orig_nodes[position])
                continue
            edge = self.orig_edges[position - num_nodes]
            if self.orig_graph.is_multigraph():
                u, v, key = edge
                solution.add_edge(u, v, key=key, **self.orig_graph.edges[u, v, key])
            else:
                u, v = edge
                solution.add_edge(u, v, **self.orig_graph.edges[u, v])
        for v in solution.nodes:
            solution.nodes[v].update(self.orig_graph.nodes[v])
        return solution

    # Combinations of tests

    def reduce_trivial(self) -> bool:
        """Apply degree2_test, make_simple and delete_leaves until nothing changes."""
        def trivial_round():
            if self.copy_graph.empty():
                return False
            changed = self.degree2_test()
            changed |= self.make_simple()
            changed |= self.delete_leaves()
            return changed
        return repeat(trivial_round)

    def reduce_fast(self, k: int = 5) -> bool:
        """Apply the fast tests, including the trivial ones, until nothing changes."""
        changed = self.delete_components_without_terminals()
        trivially_changed = False

        def fast_round():
            nonlocal trivially_changed
            if self.copy_graph.empty():
                return False
            trivially_changed |= self.reduce_trivial()
            inner_changed = self.run_test("nearest_vertex_test")
            inner_changed |= self.run_test("terminal_distance_test")
            inner_changed |= self.run_test("ntdk_test", 10, k)
            inner_changed |= self.run_test("short_links_test")
            inner_changed |= self.run_test("lower_bound_based_test")
            inner_changed |= self.run_test("ptm_test", k)
            logger.debug(f"Fast round: {self.copy_graph.number_of_nodes()} nodes, "
                         f"{self.copy_graph.number_of_edges()} edges, {len(self.copy_terminals)} terminals")
            return inner_changed

        changed |= repeat(fast_round)
        logger.info(f"reduce_fast done: {self.copy_graph.number_of_nodes()} nodes, {self.copy_graph.number_of_edges()} edges, "
                    f"{len(self.copy_terminals)} terminals, cost already inserted {self.cost_already_inserted}")
        return changed or trivially_changed

    def reduce_fast_and_dual_ascent(self) -> bool:
        """Alternate reduce_fast and dual_ascent_based_test until nothing changes."""
        def round_with_dual_ascent():
            changed = self.reduce_fast()
            changed |= self.run_test("dual_ascent_based_test")
            return changed
        return repeat(round_with_dual_ascent)

    def run_test(self, name: str, *args, **kwargs) -> bool:
        """Restore the graph state test name relies on, then run it."""
        changed = self._establish(PRECONDITIONS.get(name, ()))
        if self.copy_graph.empty():
            return changed
        result = getattr(self, name)(*args, **kwargs)
        return result or changed

    def _establish(self, conditions) -> bool:
        graph = self.copy_graph
        changed = False
        if ("simple" in conditions and not graph.is_simple()) or ("loop_free" in conditions and not graph.is_loop_free()):
            changed |= self.make_simple()
        if "leaf_free" in conditions and any(graph.degree(v) == 1 for v in graph.nodes()):
            changed |= self.delete_leaves()
        if "connected" in conditions and not graph.is_connected():
            changed |= self.delete_components_without_terminals()
        return changed

    # Provenance

    def add_new_node(self, v: int, replaced_nodes: Iterable[int], replaced_edges: Iterable[int], delete_replaced: bool = True):
        """Let node v stand for the replaced nodes and edges."""
        replaced_nodes, replaced_edges = list(replaced_nodes), list(replaced_edges)
        self.provenance.node_refs[v] = self.provenance.add_new(replaced_nodes, replaced_edges)
        if delete_replaced:
            self._delete(replaced_nodes, replaced_edges)

    def add_new_edge(self, e: int, replaced_nodes: Iterable[int], replaced_edges: Iterable[int], delete_replaced: bool = True):
        """Let edge e stand for the replaced nodes and edges."""
        replaced_nodes, replaced_edges = list(replaced_nodes), list(replaced_edges)
        self.provenance.edge_refs[e] = self.provenance.add_new(replaced_nodes, replaced_edges)
        if delete_replaced:
            self._delete(replaced_nodes, replaced_edges)

    def _delete(self, nodes, edges):
        for e in edges:
            if self.copy_graph.has_edge(e):
                self.copy_graph.del_edge(e)
        for v in nodes:
            self.copy_graph.del_node(v)

    def add_edges_to_solution(self, edges: Iterable[int]) -> bool:
        """
        Contract edges that belong to an optimal solution and pay for them.

        An edge an earlier contraction of the same batch has turned into a self-loop is skipped.
        """
        edges = list(edges)
        if not edges:
            return False
        graph = self.copy_graph
        for e in edges:
            if not graph.has_edge(e):
                logger.debug(f"Edge {e} vanished while contracting, skipped")
                continue
            x, y = graph.ends(e)
            refs = [self.provenance.node_refs[x], self.provenance.node_refs[y], self.provenance.edge_refs[e]]
            self.cost_already_inserted += graph.weight(e)
            v = graph.contract(e)
            self.provenance.node_refs[v] = self.provenance.add_entry(refs)
            self.copy_is_terminal[v] = True
        self.recompute_terminals_list()
        return True

    def recompute_terminals_list(self):
        self.copy_terminals = [v for v in self.copy_graph.nodes() if self.copy_is_terminal[v]]

    # Trivial tests

    def _collapse_to_terminal(self, terminal) -> bool:
        if self.copy_graph.number_of_nodes() > 1:
            self.copy_graph.clear_except(terminal)
            return True
        return False

    def delete_leaves(self) -> bool:
        """
        Delete degree-1 nodes. A terminal leaf is merged into its neighbour: the connecting edge is
        paid for and the neighbour becomes a terminal. With a single terminal left, everything else goes.
        """
        assert not self.copy_graph.empty()
        if len(self.copy_terminals) == 1:
            return self._collapse_to_terminal(self.copy_terminals[0])

        graph = self.copy_graph
        queue = deque(v for v in graph.nodes() if graph.degree(v) == 1)
        if not queue:
            return False

        removed = 0
        while queue:
            v = queue.popleft()
            if v not in graph or graph.degree(v) == 0:
                continue
            (e, w), = graph.incident(v)
            if self.copy_is_terminal[v]:
                if not self.copy_is_terminal[w]:
                    self.copy_is_terminal[w] = True
                    self.copy_terminals.append(w)
                self.copy_terminals.remove(v)
                self.cost_already_inserted += graph.weight(e)
                self.provenance.node_refs[w] = self.provenance.add_new([w, v], [e])
            if graph.degree(w) == 2:
                queue.append(w)
            graph.del_node(v)
            removed += 1
            if len(self.copy_terminals) == 1:
                logger.debug(f"delete_leaves: removed {removed} leaves, one terminal left")
                self._collapse_to_terminal(self.copy_terminals[0])
                return True
        logger.debug(f"delete_leaves: removed {removed} leaves")
        return True

    def make_simple(self) -> bool:
        """Delete self-loops and all but the cheapest edge between any two nodes."""
        graph = self.copy_graph
        deleted = 0
        for v in graph.nodes():
            cheapest = {}
            for e, w in graph.incident(v):
                if not graph.has_edge(e):
                    continue
                if w == v:
                    graph.del_edge(e)
                    deleted += 1
                elif w not in cheapest or graph.weight(cheapest[w]) > graph.weight(e):
                    if w in cheapest:
                        graph.del_edge(cheapest[w])
                        deleted += 1
                    cheapest[w] = e
                else:
                    graph.del_edge(e)
                    deleted += 1
        logger.debug(f"make_simple: deleted {deleted} edges")
        return deleted > 0

    def delete_components_without_terminals(self) -> bool:
        """Keep only the connected component holding the terminals."""
        graph = self.copy_graph
        components = list(nx.connected_components(graph.graph))
        if len(components) <= 1:
            return False

        terminal_component = None
        for component in components:
            if any(t in component for t in self.copy_terminals):
                if terminal_component is not None:
                    logger.error("Terminals lie in different connected components")
                assert terminal_component is None, "The instance has no feasible Steiner tree"
                terminal_component = component

        deleted = 0
        for component in components:
            if component is not terminal_component:
                for v in component:
                    graph.del_node(v)
                deleted += len(component)
        logger.debug(f"delete_components_without_terminals: removed {deleted} nodes")
        return True

    def degree2_test(self) -> bool:
        """Replace each non-terminal of degree 2 by an edge between its neighbours."""
        graph = self.copy_graph
        assert not graph.empty()
        replaced = 0
        for v in graph.nodes():
            if v not in graph or self.copy_is_terminal[v] or graph.degree(v) != 2:
                continue
            (left_edge, left), (right_edge, right) = graph.incident(v)
            if left != right:
                e = graph.new_edge(left, right, graph.weight(left_edge) + graph.weight(right_edge))
                self.add_new_edge(e, [v], [left_edge, right_edge])
            else:
                # a self-loop, or two edges to the same node: v leads nowhere
                graph.del_node(v)
            replaced += 1
        logger.debug(f"degree2_test: replaced {replaced} degree 2 nodes")
        return replaced > 0

    # Shortest path based tests

    def least_cost_test(self) -> bool:
        """Delete edges that are longer than some path between their ends (all pairs shortest paths)."""
        graph = self.copy_graph
        assert not graph.empty()
        nodes = graph.nodes()
        index = {v: i for i, v in enumerate(nodes)}
        distance = np.full((len(nodes), len(nodes)), INF)
        np.fill_diagonal(distance, 0)
        for e in graph.edges():
            u, v = graph.ends(e)
            i, j = index[u], index[v]
            distance[i, j] = distance[j, i] = min(distance[i, j], graph.weight(e))
        for pivot in range(len(nodes)):
            distance = np.minimum(distance, distance[:, pivot:pivot + 1] + distance[pivot:pivot + 1, :])

        deleted = 0
        for e in graph.edges():
            u, v = graph.ends(e)
            if u != v and self.eps.less(distance[index[u], index[v]], graph.weight(e)):
                graph.del_edge(e)
                deleted += 1
        logger.debug(f"least_cost_test: deleted {deleted} edges")
        return deleted > 0

    def _find_closest_non_terminals(self, source: int, max_distance: float, expanded_edges: int) -> Dict[int, float]:
        """
        Dijkstra from source that does not enter terminals, only keeps distances below max_distance and
        stops expanding after expanded_edges edges.
        """
        graph = self.copy_graph
        distance = {source: 0}
        queue = LazyPriorityQueue()
        queue.push(0, source)
        while len(queue):
            _, v = queue.pop()
            for e, w in graph.incident(v):
                if expanded_edges <= 0:
                    break
                expanded_edges -= 1
                candidate = distance[v] + graph.weight(e)
                if self.eps.geq(candidate, max_distance) or self.copy_is_terminal[w]:
                    continue
                if candidate < distance.get(w, INF):
                    distance[w] = candidate
                    queue.push(candidate, w)
        return distance

    def long_edges_test(self) -> bool:
        """Delete edges for which a bounded search finds a shorter detour through non-terminals."""
        graph = self.copy_graph
        assert not graph.empty()
        deleted = 0
        for e in graph.edges():
            u, v = graph.ends(e)
            weight = graph.weight(e)
            from_u = self._find_closest_non_terminals(u, weight, LONG_EDGES_SEARCH_LIMIT)
            from_v = self._find_closest_non_terminals(v, weight, LONG_EDGES_SEARCH_LIMIT)
            for common, du in from_u.items():
                if common in from_v and self.eps.less(du + from_v[common], weight):
                    graph.del_edge(e)
                    deleted += 1
                    break
        logger.debug(f"long_edges_test: deleted {deleted} edges")
        return deleted > 0

    def terminal_distance_test(self) -> bool:
        """Delete edges heavier than the heaviest edge of a terminal spanning tree."""
        graph = self.copy_graph
        assert not graph.empty()
        tree, _ = construct_terminal_spanning_tree(graph, self.copy_terminals)
        max_bridge = max((w for _, _, w in tree.edges(data="weight")), default=0)
        deleted = 0
        for e in graph.edges():
            if self.eps.greater(graph.weight(e), max_bridge):
                graph.del_edge(e)
                deleted += 1
        logger.debug(f"terminal_distance_test: deleted {deleted} edges")
        return deleted > 0

    # Bottleneck Steiner distance tests

    def _bottleneck_structures(self, k: int) -> Tuple[ClosestKTerminals, HeavyPathDecomposition]:
        graph = self.copy_graph
        tree, _ = construct_terminal_spanning_tree(graph, self.copy_terminals)
        closest = ClosestKTerminals(graph, self.copy_terminals, self.copy_is_terminal, k)
        return closest, HeavyPathDecomposition(tree)

    def _compute_bottleneck_distance(self, x, y, closest: ClosestKTerminals, hpd: HeavyPathDecomposition) -> float:
        """Upper bound on the bottleneck Steiner distance between x and y via their closest terminals."""
        best = INF
        for tx, dx in closest[x]:
            for ty, dy in closest[y]:
                best = min(best, dx + dy + hpd.get_bottleneck_steiner_distance(tx, ty))
        return best

    def ptm_test(self, k: int = 3) -> bool:
        """Delete edges heavier than the bottleneck Steiner distance between their ends."""
        graph = self.copy_graph
        assert not graph.empty()
        if not self.copy_terminals:
            return False
        closest, hpd = self._bottleneck_structures(k)
        deleted = 0
        for e in graph.edges():
            u, v = graph.ends(e)
            if self.eps.greater(graph.weight(e), self._compute_bottleneck_distance(u, v, closest, hpd)):
                graph.del_edge(e)
                deleted += 1
        logger.debug(f"ptm_test: deleted {deleted} edges")
        return deleted > 0

    def delete_steiner_degree_two_node(self, v: int, closest: ClosestKTerminals, hpd: HeavyPathDecomposition):
        """
        Delete a non-terminal that has degree at most 2 in some optimal solution. Each pair of its edges is
        replaced by a merged edge unless the two neighbours are already joined at most as cheaply, or the
        merged edge would fail the bottleneck distance test.
        """
        graph = self.copy_graph
        incident = graph.incident(v)
        new_edges = []
        for i, (e1, n1) in enumerate(incident):
            for e2, n2 in incident[i + 1:]:
                if n1 == n2:
                    continue
                weight = graph.weight(e1) + graph.weight(e2)
                existing = graph.search_edge(n1, n2)
                if existing is not None and graph.weight(existing) <= weight:
                    continue
                if self.eps.greater(weight, self._compute_bottleneck_distance(n1, n2, closest, hpd)):
                    continue
                new_edges.append((e1, n1, e2, n2, existing, weight))

        for e1, n1, e2, n2, existing, weight in new_edges:
            if existing is not None:
                assert graph.weight(existing) > weight
                graph.set_weight(existing, weight)
                e = existing
            else:
                e = graph.new_edge(n1, n2, weight)
            self.add_new_edge(e, [v], [e1, e2], delete_replaced=False)
        graph.del_node(v)

    def ntdk_test(self, max_tested_degree: int = 5, k: int = 3) -> bool:
        """
        Non-terminal degree k test: a non-terminal whose edges to any 3 or more neighbours are not
        cheaper than a bottleneck MST of those neighbours has degree at most 2 in some optimal solution.
        """
        graph = self.copy_graph
        assert not graph.empty()
        if len(self.copy_terminals) <= 2:
            return False
        assert graph.is_simple(), "ntdk_test needs a simple graph"
        assert graph.is_connected(), "ntdk_test needs a connected graph"

        closest, hpd = self._bottleneck_structures(k)
        deleted = 0
        for v in graph.nodes():
            if v not in graph or self.copy_is_terminal[v]:
                continue
            degree = graph.degree(v)
            if degree <= 2 or degree > max_tested_degree:
                continue
            if self._has_cheaper_neighbour_subset(v, closest, hpd):
                continue
            self.delete_steiner_degree_two_node(v, closest, hpd)
            deleted += 1
        logger.debug(f"ntdk_test: deleted {deleted} non-terminals")
        return deleted > 0

    def _has_cheaper_neighbour_subset(self, v, closest, hpd) -> bool:
        graph = self.copy_graph
        incident = graph.incident(v)
        bottleneck = {}
        for (_, x), (_, y) in itertools.combinations(incident, 2):
            bottleneck[x, y] = self._compute_bottleneck_distance(x, y, closest, hpd)

        for size in range(3, len(incident) + 1):
            for subset in itertools.combinations(incident, size):
                auxiliary = nx.Graph()
                for (_, x), (_, y) in itertools.combinations(subset, 2):
                    auxiliary.add_edge(x, y, weight=bottleneck[x, y])
                _, mst_cost = minimum_spanning_tree(auxiliary)
                if sum(graph.weight(e) for e, _ in subset) < mst_cost:
                    return True
        return False

    # Voronoi region based tests

    def _find_two_minimum_cost_edges(self, v) -> Tuple[int, int]:
        """Cheapest and second cheapest edge at v. Ties for the cheapest go to the smaller edge id."""
        graph = self.copy_graph
        first = second = None
        for e, _ in graph.incident(v):
            if (first is None
                    or self.eps.less(graph.weight(e), graph.weight(first))
                    or (self.eps.equal(graph.weight(e), graph.weight(first)) and e < first)):
                second, first = first, e
            elif second is None or self.eps.less(graph.weight(e), graph.weight(second)):
                second = e
        assert first != second
        return first, second

    def _mark_successors(self, start, voronoi: Voronoi, marked: set):
        graph = self.copy_graph
        stack = [start]
        while stack:
            v = stack.pop()
            if v in marked:
                continue
            marked.add(v)
            for _, w in graph.incident(v):
                if voronoi.predecessor(w) == v:
                    stack.append(w)

    def nearest_vertex_test(self) -> bool:
        """
        Contract the cheapest edge at a terminal when its second cheapest edge is at least as expensive as
        reaching another terminal through the cheapest one.
        """
        graph = self.copy_graph
        assert not graph.empty()
        assert graph.is_loop_free(), "nearest_vertex_test needs a graph without self-loops"
        assert graph.is_connected(), "nearest_vertex_test needs a connected graph"

        voronoi = Voronoi(graph.graph, self.copy_terminals)
        candidates = [t for t in self.copy_terminals if graph.degree(t) >= 2]
        min_edges = {t: self._find_two_minimum_cost_edges(t) for t in candidates}

        # nodes whose shortest path from their terminal starts with that terminal's cheapest edge
        successors = set()
        for t in candidates:
            closest = graph.opposite(min_edges[t][0], t)
            if voronoi.seed(closest) == t:
                self._mark_successors(closest, voronoi, successors)

        to_closest_terminal = {}
        for e in graph.edges():
            x, y = graph.ends(e)
            seed_x, seed_y = voronoi.seed(x), voronoi.seed(y)
            if seed_x == seed_y:
                continue
            through = voronoi.distance(x) + graph.weight(e) + voronoi.distance(y)
            if x in successors:
                to_closest_terminal[seed_x] = min(to_closest_terminal.get(seed_x, INF), through)
            if y in successors:
                to_closest_terminal[seed_y] = min(to_closest_terminal.get(seed_y, INF), through)

        to_add = []
        for t in candidates:
            first, second = min_edges[t]
            closest = graph.opposite(first, t)
            if voronoi.seed(closest) == t:
                distance = to_closest_terminal.get(t, INF)
            else:
                distance = graph.weight(first) + voronoi.distance(closest)
            if self.eps.geq(graph.weight(second), distance) and first not in to_add:
                to_add.append(first)

        logger.debug(f"nearest_vertex_test: contracting {len(to_add)} edges")
        return self.add_edges_to_solution(to_add)

    def short_links_test(self) -> bool:
        """
        Contract the cheapest edge leaving a Voronoi region when the second cheapest one is not cheaper than
        the terminal-to-terminal path through the first. When a region has a single leaving edge, every
        solution uses it.
        """
        graph = self.copy_graph
        assert not graph.empty()
        assert graph.is_connected(), "short_links_test needs a connected graph"
        if len(self.copy_terminals) <= 1:
            return False

        voronoi = Voronoi(graph.graph, self.copy_terminals)
        first, second = {}, {}

        def update(seed, e):
            if seed not in first or graph.weight(first[seed]) > graph.weight(e):
                second[seed] = first.get(seed)
                first[seed] = e
            elif second.get(seed) is None or graph.weight(second[seed]) > graph.weight(e):
                second[seed] = e

        for e in graph.edges():
            x, y = graph.ends(e)
            seed_x, seed_y = voronoi.seed(x), voronoi.seed(y)
            if seed_x != seed_y:
                update(seed_x, e)
                update(seed_y, e)

        to_add = []
        for t in self.copy_terminals:
            if t not in first:
                continue
            e = first[t]
            if second.get(t) is None:
                if e not in to_add:
                    to_add.append(e)
                continue
            x, y = graph.ends(e)
            if self.eps.geq(graph.weight(second[t]), voronoi.distance(x) + graph.weight(e) + voronoi.distance(y)) and e not in to_add:
                to_add.append(e)

        logger.debug(f"short_links_test: contracting {len(to_add)} edges")
        return self.add_edges_to_solution(to_add)

    # Bound based tests

    def compute_upper_bound(self) -> Tuple[float, nx.MultiGraph]:
        return self.cost_upper_bound_algorithm.call(self.copy_graph.graph, self.copy_terminals, self.copy_is_terminal)

    def _delete_nodes_above(self, bounds: Mapping[int, float], upper_bound: float) -> int:
        deleted = 0
        for v in self.copy_graph.nodes():
            if self.copy_is_terminal[v]:
                continue
            if self.eps.greater(bounds.get(v, -INF), upper_bound):
                self.copy_graph.del_node(v)
                deleted += 1
        return deleted

    def _delete_edges_above(self, bounds: Mapping[int, float], upper_bound: float) -> int:
        deleted = 0
        for e in self.copy_graph.edges():
            if self.eps.greater(bounds.get(e, -INF), upper_bound):
                self.copy_graph.del_edge(e)
                deleted += 1
        return deleted

    def compute_radius_sum(self) -> float:
        """Sum of the Voronoi radii of all terminals except the two largest."""
        assert len(self.copy_terminals) > 1
        graph = self.copy_graph
        voronoi = Voronoi(graph.graph, self.copy_terminals)
        radius = {t: INF for t in self.copy_terminals}
        for e in graph.edges():
            x, y = graph.ends(e)
            seed_x, seed_y = voronoi.seed(x), voronoi.seed(y)
            if seed_x == seed_y:
                continue
            radius[seed_x] = min(radius[seed_x], voronoi.distance(x) + graph.weight(e))
            radius[seed_y] = min(radius[seed_y], voronoi.distance(y) + graph.weight(e))
        return sum(sorted(radius.values())[:-2])

    def lower_bound_based_test(self, upper_bound: Optional[float] = None) -> bool:
        """
        Delete nodes (or, if none, edges) whose radius-sum or auxiliary-MST lower bound exceeds the upper bound.
        """
        graph = self.copy_graph
        assert not graph.empty()
        if len(self.copy_terminals) <= 1:
            return False
        assert graph.is_connected(), "lower_bound_based_test needs a connected graph"
        if upper_bound is None:
            upper_bound, _ = self.compute_upper_bound()

        closest = ClosestKTerminals(graph, self.copy_terminals, self.copy_is_terminal, 3)
        radius_sum = self.compute_radius_sum()

        node_bounds = {}
        for v in graph.nodes():
            if self.copy_is_terminal[v]:
                continue
            if len(closest[v]) < 2:
                node_bounds[v] = INF
                continue
            node_bounds[v] = closest[v][0][1] + closest[v][1][1] + radius_sum

        def to_terminal(x):
            return closest[x][0][1] if closest[x] else INF

        edge_bounds = {}
        for e in graph.edges():
            x, y = graph.ends(e)
            edge_bounds[e] = max(0, graph.weight(e) + to_terminal(x) + to_terminal(y) + radius_sum)

        # MST over the Voronoi regions, each region entered from its cheaper side
        voronoi = Voronoi(graph.graph, self.copy_terminals)
        auxiliary = nx.Graph()
        auxiliary.add_nodes_from(self.copy_terminals)
        for e in graph.edges():
            x, y = graph.ends(e)
            seed_x, seed_y = voronoi.seed(x), voronoi.seed(y)
            if seed_x == seed_y:
                continue
            weight = min(voronoi.distance(x), voronoi.distance(y)) + graph.weight(e)
            if not auxiliary.has_edge(seed_x, seed_y) or auxiliary[seed_x][seed_y]["weight"] > weight:
                auxiliary.add_edge(seed_x, seed_y, weight=weight)
        tree, mst_cost = minimum_spanning_tree(auxiliary)
        longest = max((w for _, _, w in tree.edges(data="weight")), default=-INF)

        for v in graph.nodes():
            if self.copy_is_terminal[v] or len(closest[v]) < 2:
                continue
            node_bounds[v] = max(node_bounds[v], mst_cost - longest + closest[v][0][1] + closest[v][1][1])

        deleted_nodes = self._delete_nodes_above(node_bounds, upper_bound)
        deleted_edges = 0 if deleted_nodes else self._delete_edges_above(edge_bounds, upper_bound)
        logger.debug(f"lower_bound_based_test: deleted {deleted_nodes} nodes and {deleted_edges} edges")
        return deleted_nodes + deleted_edges > 0

    def dual_ascent_based_test(self, repetitions: int = 1, upper_bound: Optional[float] = None) -> bool:
        """Delete nodes and edges whose dual ascent lower bound exceeds the upper bound."""
        graph = self.copy_graph
        assert not graph.empty()
        if len(self.copy_terminals) <= 1:
            return False
        if upper_bound is None:
            upper_bound, _ = self.compute_upper_bound()
        node_bounds, edge_bounds = SteinerTreeLowerBoundDualAscent(repetitions, self.eps.eps).compute_bounds(graph, self.copy_terminals)
        deleted_nodes = self._delete_nodes_above(node_bounds, upper_bound)
        deleted_edges = self._delete_edges_above(edge_bounds, upper_bound)
        logger.debug(f"dual_ascent_based_test: deleted {deleted_nodes} nodes and {deleted_edges} edges")
        return deleted_nodes + deleted_edges > 0

    # Reachability tests

    def reachability_test(self, max_degree_test: int = 0, k: int = 3) -> bool:
        """
        Delete nodes outside the upper bound tree whose distances to their farthest and two closest terminals
        already reach the upper bound. Nodes that may still appear with degree 2 are replaced by merged edges.
        """
        graph = self.copy_graph
        assert not graph.empty()
        if not self.copy_terminals:
            return False
        assert graph.is_simple(), "reachability_test needs a simple graph"
        assert graph.is_connected(), "reachability_test needs a connected graph"
        if max_degree_test <= 0:
            max_degree_test = graph.number_of_nodes()

        upper_bound, upper_bound_tree = self.compute_upper_bound()
        in_upper_bound_tree = set(upper_bound_tree.nodes)
        closest, hpd = self._bottleneck_structures(k)

        deleted = replaced = 0
        for v in graph.nodes():
            if v not in graph or v in in_upper_bound_tree or graph.degree(v) > max_degree_test:
                continue
            distance = shortest_path_lengths(graph.graph, v)
            farthest = 0
            closest1 = closest2 = INF
            for t in self.copy_terminals:
                d = distance.get(t, INF)
                if farthest < d:
                    farthest = d
                if closest1 > d:
                    closest1, closest2 = d, closest1
                elif closest2 > d:
                    closest2 = d

            if farthest == INF or closest2 == INF or self.eps.geq(farthest + closest1 + closest2, upper_bound):
                if farthest != INF and closest2 != INF and self.eps.less(farthest + closest1, upper_bound):
                    self.delete_steiner_degree_two_node(v, closest, hpd)
                    replaced += 1
                else:
                    graph.del_node(v)
                    deleted += 1
        logger.debug(f"reachability_test: deleted {deleted} nodes, replaced {replaced} by merged edges")
        return deleted + replaced > 0

    def _compute_optimal_terminals(self, v, distance_of):
        """The two terminals minimising distance_of, from a Dijkstra run at v."""
        distance = shortest_path_lengths(self.copy_graph.graph, v)
        reachable = [t for t in self.copy_terminals if t in distance and t != v]
        ranked = sorted(reachable, key=lambda t: distance_of(t, distance))
        assert len(ranked) >= 2, f"Node {v} reaches fewer than two terminals"
        return ranked[0], ranked[1], distance

    def cut_reachability_test(self) -> bool:
        """
        Reachability test with the cut bound: every terminal needs at least its cheapest edge, so a solution
        through v costs at least the sum of those plus v's distances to two terminals minus their cheapest edges.
        """
        graph = self.copy_graph
        assert not graph.empty()
        if len(self.copy_terminals) <= 2:
            return False
        assert graph.is_connected(), "cut_reachability_test needs a connected graph"

        upper_bound, upper_bound_tree = self.compute_upper_bound()
        in_upper_bound_tree = set(upper_bound_tree.nodes)

        cheapest_edge = {t: min((graph.weight(e) for e, _ in graph.incident(t)), default=INF) for t in self.copy_terminals}
        c_k = sum(cheapest_edge.values())

        def dist(t, distance):
            return distance.get(t, INF) - cheapest_edge[t]

        optimal = {}

        def optimal_terminals(v):
            if v not in optimal:
                optimal[v] = self._compute_optimal_terminals(v, dist)
            return optimal[v]

        delete_nodes = []
        delete_edges = set()
        for v in graph.nodes():
            if v in in_upper_bound_tree:
                continue
            v_first, v_second, v_distance = optimal_terminals(v)
            if self.eps.geq(c_k + dist(v_first, v_distance) + dist(v_second, v_distance), upper_bound):
                delete_nodes.append(v)
                continue
            for e, w in graph.incident(v):
                if self.copy_is_terminal[w]:
                    continue
                w_first, w_second, w_distance = optimal_terminals(w)
                v_terminal, w_terminal = v_first, w_first
                if v_terminal == w_terminal:
                    # the two ends must reach different terminals
                    if self.eps.leq(dist(v_first, v_distance) + dist(w_second, w_distance),
                                    dist(v_second, v_distance) + dist(w_first, w_distance)):
                        w_terminal = w_second
                    else:
                        v_terminal = v_second
                if self.eps.geq(c_k + dist(v_terminal, v_distance) + dist(w_terminal, w_distance) + graph.weight(e), upper_bound):
                    delete_edges.add(e)

        deleted_edges = 0
        for e in delete_edges:
            if graph.has_edge(e):
                graph.del_edge(e)
                deleted_edges += 1
        for v in delete_nodes:
            graph.del_node(v)
        logger.debug(f"cut_reachability_test: deleted {len(delete_nodes)} nodes and {deleted_edges} edges")
        return deleted_edges + len(delete_nodes) > 0
