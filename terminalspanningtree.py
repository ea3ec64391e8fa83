import logging
from typing import Tuple

import networkx as nx

from steinergraph import EdgeWeightedGraph, Voronoi, minimum_spanning_tree

logger = logging.getLogger(__name__)


def construct_terminal_spanning_tree(graph: EdgeWeightedGraph, terminals, voronoi: Voronoi = None) -> Tuple[nx.Graph, float]:
    """
    Spanning tree over the terminals built from Voronoi region bridges.

    Every edge (x, y) joining two Voronoi regions is a bridge between their seeds of cost
    d(x) + w(x, y) + d(y); the cheapest bridge per seed pair becomes an edge of an auxiliary graph
    on the terminals, and the tree is the MST of that graph. Tree nodes are the terminals of
    the working graph themselves; each tree edge records its bridge under "bridge".

    Args:
        graph: The working graph, expected to be connected.
        terminals: The terminals of the working graph.
        voronoi: Precomputed Voronoi regions of the terminals (optional).

    Returns:
        Tuple[nx.Graph, float]: The tree and its total weight.
    """
    if voronoi is None:
        voronoi = Voronoi(graph.graph, terminals)

    auxiliary = nx.Graph()
    auxiliary.add_nodes_from(terminals)
    for e in graph.edges():
        x, y = graph.ends(e)
        seed_x, seed_y = voronoi.seed(x), voronoi.seed(y)
        if seed_x is None or seed_y is None or seed_x == seed_y:
            continue
        bridge = voronoi.distance(x) + graph.weight(e) + voronoi.distance(y)
        if not auxiliary.has_edge(seed_x, seed_y) or auxiliary[seed_x][seed_y]["weight"] > bridge:
            auxiliary.add_edge(seed_x, seed_y, weight=bridge, bridge=e)

    tree, weight = minimum_spanning_tree(auxiliary)
    logger.debug(f"Terminal spanning tree on {tree.number_of_nodes()} terminals with weight {weight}")
    return tree, weight
