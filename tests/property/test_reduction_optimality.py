"""Every reduction keeps the optimum and maps solutions back to Steiner trees of the original graph."""

import pytest

from dualascent import SteinerTreeLowerBoundDualAscent
from provenance import OriginalRef
from reducesteiner import SINGLE_TESTS, STRATEGIES, apply_strategy
from steinergraph import EdgeWeightedGraph
from steinerpreprocessing import SteinerTreePreprocessing
from steinertreemodules import TakahashiHeuristic, is_steiner_tree, tree_weight

SEEDS = range(6)
EPS = 1e-6


def check_solution(instance, cost, solution):
    assert is_steiner_tree(instance.graph, instance.terminals, instance.is_terminal, solution)
    assert tree_weight(solution) == pytest.approx(cost)


@pytest.mark.parametrize("seed", SEEDS)
@pytest.mark.parametrize("name", SINGLE_TESTS)
def test_single_test_keeps_optimum(name, seed, make_instance, optimum, exact):
    instance = make_instance(seed)
    expected = optimum(instance.graph, instance.terminals)

    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    engine.run_test(name)
    cost, solution = engine.solve(exact)

    assert cost == pytest.approx(expected)
    check_solution(instance, cost, solution)


@pytest.mark.parametrize("seed", SEEDS)
@pytest.mark.parametrize("strategy", list(STRATEGIES))
def test_strategy_keeps_optimum(strategy, seed, make_instance, optimum, exact):
    instance = make_instance(seed, num_nodes=14, density=0.25, num_terminals=5)
    expected = optimum(instance.graph, instance.terminals)

    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    apply_strategy(engine, strategy)
    cost, solution = engine.solve(exact)

    assert cost == pytest.approx(expected)
    check_solution(instance, cost, solution)


@pytest.mark.parametrize("seed", SEEDS)
def test_repeated_single_tests_keep_optimum(seed, make_instance, optimum, exact):
    instance = make_instance(seed, num_nodes=14, density=0.25, num_terminals=5)
    expected = optimum(instance.graph, instance.terminals)

    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    for name in SINGLE_TESTS:
        engine.run_test(name)
        if engine.reduced_graph.empty():
            break
    cost, solution = engine.solve(exact)

    assert cost == pytest.approx(expected)
    check_solution(instance, cost, solution)


@pytest.mark.parametrize("seed", SEEDS)
def test_reduce_fast_is_safe(seed, make_instance):
    instance = make_instance(seed, num_nodes=40, density=0.1, num_terminals=8)
    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    engine.reduce_fast()

    reduced = engine.reduced_graph
    assert reduced.is_connected()
    assert reduced.number_of_nodes() <= instance.graph.number_of_nodes()
    assert all(engine.reduced_is_terminal[t] for t in engine.reduced_terminals)

    # every original terminal is represented by some reduced terminal
    positions = engine.provenance.expand(engine.provenance.node_refs[t] for t in engine.reduced_terminals)
    for t in instance.terminals:
        assert engine.orig_nodes.index(t) in positions

    for v in reduced.nodes():
        assert engine.provenance.node_refs[v] is not None
    for e in reduced.edges():
        ref = engine.provenance.edge_refs[e]
        assert not isinstance(ref, OriginalRef) or ref.position >= len(engine.orig_nodes)


@pytest.mark.parametrize("seed", SEEDS)
def test_heuristic_solution_after_reduction(seed, make_instance):
    instance = make_instance(seed, num_nodes=60, density=0.08, num_terminals=10)
    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    engine.reduce_fast_and_dual_ascent()
    cost, solution = engine.solve(TakahashiHeuristic())

    graph, node_map, _ = EdgeWeightedGraph.from_networkx(instance.graph)
    lower_bound = SteinerTreeLowerBoundDualAscent(3).call(graph, [node_map[t] for t in instance.terminals])
    assert lower_bound <= cost + EPS
    assert tree_weight(solution) <= cost + EPS
    assert set(instance.terminals) <= set(solution.nodes)
