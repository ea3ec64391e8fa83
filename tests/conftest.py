"""Pytest fixtures for testing."""

import random

import networkx as nx
import pytest

from steinerinstance import SteinerInstance
from steinerpreprocessing import SteinerTreePreprocessing
from steinertreemodules import ExactSteinerTree


@pytest.fixture
def exact():
    """Exact solver for instances with few non-terminals."""
    return ExactSteinerTree(max_steiner_nodes=16)


@pytest.fixture
def make_instance():
    """Factory for seeded random instances small enough for the exact solver."""
    def factory(seed, num_nodes=12, density=0.3, num_terminals=4):
        random.seed(seed)
        return SteinerInstance(num_nodes, density, num_terminals)
    return factory


@pytest.fixture
def optimum(exact):
    """Optimal cost of an unreduced instance."""
    def compute(graph, terminals):
        cost, _ = SteinerTreePreprocessing(graph, terminals).solve(exact)
        return cost
    return compute


def cycle_graph(length, weight=1):
    graph = nx.cycle_graph(length)
    nx.set_edge_attributes(graph, weight, "weight")
    return graph


@pytest.fixture
def six_cycle():
    """Unit weight 6-cycle with terminals on opposite sides."""
    return cycle_graph(6), [0, 3]


@pytest.fixture
def four_cycle():
    return cycle_graph(4), [0, 2]


@pytest.fixture
def star():
    """Non-terminal center "c" joined to four terminals by unit edges."""
    graph = nx.Graph()
    terminals = ["t0", "t1", "t2", "t3"]
    for t in terminals:
        graph.add_edge("c", t, weight=1)
    return graph, terminals


@pytest.fixture
def star_with_path(star):
    """The star plus a unit path t0-t1-t2-t3 between the terminals."""
    graph, terminals = star
    for u, v in zip(terminals, terminals[1:]):
        graph.add_edge(u, v, weight=1)
    return graph, terminals
