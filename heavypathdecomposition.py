import logging
from bisect import bisect_left
from itertools import accumulate
from typing import Hashable, Mapping, Optional, Tuple

import networkx as nx

logger = logging.getLogger(__name__)


class MaxSegmentTree:
    """Range maximum over a fixed list of non-negative values. Empty ranges give 0."""

    __slots__ = ['size', 'tree']

    def __init__(self, values):
        self.size = len(values)
        self.tree = [0] * (4 * max(1, self.size))
        if self.size:
            self._build(values, 1, 0, self.size - 1)

    def _build(self, values, node, left, right):
        if left == right:
            self.tree[node] = values[left]
            return
        middle = (left + right) // 2
        self._build(values, 2 * node, left, middle)
        self._build(values, 2 * node + 1, middle + 1, right)
        self.tree[node] = max(self.tree[2 * node], self.tree[2 * node + 1])

    def query(self, left: int, right: int):
        if left > right or self.size == 0:
            return 0
        return self._query(1, 0, self.size - 1, left, right)

    def _query(self, node, node_left, node_right, left, right):
        if right < node_left or node_right < left:
            return 0
        if left <= node_left and node_right <= right:
            return self.tree[node]
        middle = (node_left + node_right) // 2
        return max(self._query(2 * node, node_left, middle, left, right),
                   self._query(2 * node + 1, middle + 1, node_right, left, right))


class HeavyPathDecomposition:
    """
    Heavy path decomposition of a weighted tree answering lowest common ancestor and bottleneck
    Steiner distance queries.

    The bottleneck Steiner distance between two nodes is the largest weight of a segment of their
    tree path that runs between two consecutive terminals (or from an end node to the first
    terminal). When every tree node is a terminal it is the heaviest edge on the path.

    The tree is rooted at its first node. Each chain is stored top to bottom together with a prefix
    maximum and a segment tree over "distance from the node up to its closest terminal ancestor".
    """

    __slots__ = ['root', 'terminals', 'parent', 'level', 'distance_to_root', 'closest_steiner_ancestor',
                 'node_weight', 'chains', 'chain_of', 'position', 'father_of_chain', 'chains_of_terminals',
                 'terminal_levels', 'longest_prefix', 'segment_trees']

    def __init__(self, tree: nx.Graph, is_terminal: Optional[Mapping[Hashable, bool]] = None):
        """
        Args:
            tree: A tree with a "weight" attribute on every edge.
            is_terminal: Terminal membership of the tree nodes. Every node is a terminal when omitted.
        """
        assert tree.number_of_nodes() > 0, "Cannot decompose an empty tree"
        if is_terminal is None:
            self.terminals = set(tree.nodes)
        else:
            self.terminals = {v for v in tree.nodes if is_terminal[v]}
        self.root = next(iter(tree.nodes))

        self._dfs(tree)
        self._build_chains()

    def _dfs(self, tree: nx.Graph):
        root = self.root
        self.parent = {root: None}
        self.level = {root: 0}
        self.distance_to_root = {root: 0}
        self.closest_steiner_ancestor = {root: None}
        children = {}
        order = []

        stack = [root]
        while stack:
            v = stack.pop()
            order.append(v)
            children[v] = []
            for w, data in tree[v].items():
                if w == self.parent[v]:
                    continue
                assert w not in self.parent, "Input is not a tree"
                self.parent[w] = v
                self.level[w] = self.level[v] + 1
                self.distance_to_root[w] = self.distance_to_root[v] + data["weight"]
                self.closest_steiner_ancestor[w] = v if v in self.terminals else self.closest_steiner_ancestor[v]
                children[v].append(w)
                stack.append(w)
        assert len(order) == tree.number_of_nodes(), "Input tree is not connected"

        # Children come before their parent in reversed preorder, so chains grow bottom-up
        self.node_weight = {}
        self.chain_of = {}
        self.chains = []
        for v in reversed(order):
            self.node_weight[v] = 1 + sum(self.node_weight[w] for w in children[v])
            heavy = None
            for w in children[v]:
                if heavy is None or self.node_weight[w] > self.node_weight[heavy]:
                    heavy = w
            if heavy is None:
                self.chain_of[v] = len(self.chains)
                self.chains.append([v])
            else:
                self.chain_of[v] = self.chain_of[heavy]
                self.chains[self.chain_of[v]].append(v)

    def _build_chains(self):
        self.position = {}
        self.father_of_chain = []
        self.chains_of_terminals = []
        self.terminal_levels = []
        self.longest_prefix = []
        self.segment_trees = []
        for chain in self.chains:
            chain.reverse()
            for i, v in enumerate(chain):
                self.position[v] = i
            self.father_of_chain.append(self.parent[chain[0]])

            on_chain = [v for v in chain if v in self.terminals]
            self.chains_of_terminals.append(on_chain)
            self.terminal_levels.append([self.level[v] for v in on_chain])

            values = [self._distance_to_closest_terminal_ancestor(v) for v in chain]
            self.longest_prefix.append(list(accumulate(values, max)))
            self.segment_trees.append(MaxSegmentTree(values))

    def _distance_to_closest_terminal_ancestor(self, v):
        return self.distance_to_ancestor(v, self.closest_steiner_ancestor[v])

    def distance_to_ancestor(self, v, ancestor):
        if ancestor is None:
            return self.distance_to_root[v]
        return self.distance_to_root[v] - self.distance_to_root[ancestor]

    def lowest_common_ancestor(self, x, y):
        while self.chain_of[x] != self.chain_of[y]:
            father_x = self.father_of_chain[self.chain_of[x]]
            father_y = self.father_of_chain[self.chain_of[y]]
            level_x = self.level[father_x] if father_x is not None else -1
            level_y = self.level[father_y] if father_y is not None else -1
            if level_x >= level_y:
                x = father_x
            else:
                y = father_y
        return x if self.level[x] <= self.level[y] else y

    def _upmost_terminal_on_chain(self, chain, min_level):
        index = bisect_left(self.terminal_levels[chain], min_level)
        if index == len(self.chains_of_terminals[chain]):
            return None
        return self.chains_of_terminals[chain][index]

    def compute_bottleneck_on_branch(self, x, ancestor) -> Tuple[float, float]:
        """
        Walk from x up to its ancestor.

        Returns:
            Tuple of the largest terminal-to-terminal segment strictly inside the branch, and the
            distance from the upmost terminal of the branch (x itself if there is none) to the ancestor.
        """
        longest = 0
        upmost = x
        while True:
            chain = self.chain_of[x]
            head_ancestor = self.closest_steiner_ancestor[self.chains[chain][0]]
            if head_ancestor is None or self.level[head_ancestor] < self.level[ancestor]:
                break
            longest = max(longest, self.longest_prefix[chain][self.position[x]])
            on_chain = self.chains_of_terminals[chain]
            if on_chain and self.level[on_chain[0]] <= self.level[x]:
                upmost = on_chain[0]
            x = self.father_of_chain[chain]

        chain = self.chain_of[x]
        terminal = self._upmost_terminal_on_chain(chain, self.level[ancestor])
        if terminal is not None and self.level[terminal] <= self.level[x]:
            upmost = terminal
            longest = max(longest, self.segment_trees[chain].query(self.position[terminal] + 1, self.position[x]))

        return longest, self.distance_to_ancestor(upmost, ancestor)

    def get_bottleneck_steiner_distance(self, x, y) -> float:
        lca = self.lowest_common_ancestor(x, y)
        longest_x, from_x = self.compute_bottleneck_on_branch(x, lca)
        longest_y, from_y = self.compute_bottleneck_on_branch(y, lca)
        return max(longest_x, longest_y, from_x + from_y)
