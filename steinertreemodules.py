import abc
import itertools
import logging
from typing import Hashable, List, Mapping, Tuple

import networkx as nx

from priorityqueue import LazyPriorityQueue

logger = logging.getLogger(__name__)

INF = float("inf")


class UnionFind:
    __slots__ = ['parent', 'size']
    def __init__(self, elements):
        self.parent = {x: x for x in elements}
        self.size = {x: 1 for x in self.parent}

    def find(self, u):
        root = u
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[u] != root:
            self.parent[u], u = root, self.parent[u]
        return root

    def union(self, u, v):
        pu, pv = self.find(u), self.find(v)
        if pu == pv:
            return False
        if self.size[pu] < self.size[pv]:
            pu, pv = pv, pu
        self.parent[pv] = pu
        self.size[pu] += self.size[pv]
        return True

    def connected(self, u, v):
        return self.find(u) == self.find(v)


class SteinerTreeModule(abc.ABC):
    """
    A Steiner tree algorithm.

    The input graph is a networkx MultiGraph whose edge keys are edge ids and whose costs are stored
    under "weight". The returned tree is a MultiGraph over the same node ids and edge keys.
    """

    @abc.abstractmethod
    def call(self, graph: nx.MultiGraph, terminals: List[Hashable], is_terminal: Mapping[Hashable, bool]) -> Tuple[float, nx.MultiGraph]:
        """
        Computes a Steiner tree.

        Returns:
            Tuple of the cost of the tree and the tree.
        """
        pass


def _single_node_tree(v) -> nx.MultiGraph:
    tree = nx.MultiGraph()
    tree.add_node(v)
    return tree


def tree_weight(tree: nx.Graph) -> float:
    return sum(w for *_, w in tree.edges(data="weight"))


def kruskal_tree(graph: nx.MultiGraph, nodes) -> nx.MultiGraph:
    """Minimum spanning forest of the subgraph induced by nodes, keeping edge keys."""
    nodes = set(nodes)
    candidates = sorted(
        (w, e, u, v) for u, v, e, w in graph.subgraph(nodes).edges(keys=True, data="weight") if u != v
    )
    union_find = UnionFind(nodes)
    tree = nx.MultiGraph()
    tree.add_nodes_from(nodes)
    for w, e, u, v in candidates:
        if union_find.union(u, v):
            tree.add_edge(u, v, key=e, weight=w)
    return tree


def prune_dangling_steiner_paths(tree: nx.MultiGraph, is_terminal: Mapping[Hashable, bool]) -> float:
    """Repeatedly removes non-terminal leaves from tree. Returns the weight removed."""
    removed = 0
    stack = [v for v in tree.nodes if tree.degree(v) == 1 and not is_terminal[v]]
    while stack:
        v = stack.pop()
        if v not in tree or tree.degree(v) != 1:
            continue
        _, u, w = next(iter(tree.edges(v, data="weight")))
        removed += w
        tree.remove_node(v)
        if not is_terminal[u] and tree.degree(u) == 1:
            stack.append(u)
    return removed


def is_steiner_tree(graph: nx.Graph, terminals, is_terminal: Mapping[Hashable, bool], tree: nx.Graph) -> bool:
    """
    Checks that tree is a subgraph of graph which is a tree spanning all terminals and has no
    non-terminal leaves.
    """
    terminals = list(terminals)
    if tree.number_of_nodes() == 0:
        return not terminals
    if not nx.is_tree(tree):
        return False

    for u, v in tree.edges():
        if not graph.has_edge(u, v):
            return False

    for t in terminals:
        if t not in tree:
            return False
        if len(terminals) > 1 and tree.degree(t) < 1:
            return False

    for v in tree.nodes:
        if not is_terminal[v] and tree.degree(v) <= 1:
            return False
    return True


class TakahashiHeuristic(SteinerTreeModule):
    """
    Shortest path heuristic of Takahashi and Matsuyama.

    Starting from the first terminal, the closest terminal not yet in the tree is connected by a
    shortest path, until all terminals are in. The nodes of the tree are then spanned by an MST and
    dangling non-terminal paths are pruned.
    """

    def call(self, graph, terminals, is_terminal):
        terminals = list(terminals)
        assert terminals, "At least one terminal is required"
        if len(terminals) == 1:
            return 0, _single_node_tree(terminals[0])

        start = terminals[0]
        in_tree = {start}
        remaining = set(terminals) - in_tree
        distance = {start: 0}
        predecessor = {}

        queue = LazyPriorityQueue()
        queue.push(0, start)
        while remaining and len(queue):
            _, v = queue.pop()
            if v in remaining:
                remaining.discard(v)
                # Nodes of the new path become sources of the ongoing search
                w = v
                while w not in in_tree:
                    in_tree.add(w)
                    distance[w] = 0
                    queue.push(0, w)
                    w = predecessor[w]
                continue

            for w, keys in graph.adj[v].items():
                for e, data in keys.items():
                    candidate = distance[v] + data["weight"]
                    if candidate < distance.get(w, INF):
                        distance[w] = candidate
                        predecessor[w] = v
                        queue.push(candidate, w)

        if remaining:
            raise ValueError(f"Terminals {sorted(remaining)} are not reachable from terminal {start}")

        tree = kruskal_tree(graph, in_tree)
        prune_dangling_steiner_paths(tree, is_terminal)
        return tree_weight(tree), tree


class MehlhornHeuristic(SteinerTreeModule):
    """Mehlhorn's 2-approximation, as implemented by networkx."""

    def call(self, graph, terminals, is_terminal):
        terminals = list(terminals)
        assert terminals, "At least one terminal is required"
        if len(terminals) == 1:
            return 0, _single_node_tree(terminals[0])

        simple = nx.Graph()
        for u, v, e, w in graph.edges(keys=True, data="weight"):
            if u != v and (not simple.has_edge(u, v) or simple[u][v]["weight"] > w):
                simple.add_edge(u, v, weight=w, eid=e)
        approximation = nx.approximation.steiner_tree(simple, terminals, weight="weight", method="mehlhorn")

        candidate = nx.MultiGraph()
        candidate.add_nodes_from(approximation.nodes)
        for u, v, data in approximation.edges(data=True):
            candidate.add_edge(u, v, key=data["eid"], weight=data["weight"])
        tree = kruskal_tree(candidate, candidate.nodes)
        prune_dangling_steiner_paths(tree, is_terminal)
        return tree_weight(tree), tree


class ExactSteinerTree(SteinerTreeModule):
    """
    Exact Steiner trees for small instances: the best MST over the terminals plus every subset of
    non-terminals whose induced subgraph is connected.
    """

    def __init__(self, max_steiner_nodes=16):
        self.max_steiner_nodes = max_steiner_nodes

    def call(self, graph, terminals, is_terminal):
        terminals = list(terminals)
        assert terminals, "At least one terminal is required"
        if len(terminals) == 1:
            return 0, _single_node_tree(terminals[0])

        steiner_nodes = [v for v in graph.nodes if not is_terminal[v]]
        if len(steiner_nodes) > self.max_steiner_nodes:
            raise ValueError(f"{len(steiner_nodes)} non-terminals exceed the limit of {self.max_steiner_nodes}")

        best_cost, best_tree = INF, None
        for size in range(len(steiner_nodes) + 1):
            for subset in itertools.combinations(steiner_nodes, size):
                nodes = terminals + list(subset)
                tree = kruskal_tree(graph, nodes)
                if tree.number_of_edges() != len(nodes) - 1:
                    continue
                cost = tree_weight(tree)
                if cost < best_cost:
                    best_cost, best_tree = cost, tree

        if best_tree is None:
            raise ValueError("Terminals are not connected")
        prune_dangling_steiner_paths(best_tree, is_terminal)
        return tree_weight(best_tree), best_tree
