"""Unit tests for the reduction engine on small hand-built instances."""

import logging
import random

import networkx as nx
import pytest

from steinerpreprocessing import SteinerTreePreprocessing, repeat
from steinertreemodules import MehlhornHeuristic, is_steiner_tree, tree_weight


def weighted_graph(edges, graph_class=nx.Graph):
    graph = graph_class()
    for u, v, w in edges:
        graph.add_edge(u, v, weight=w)
    return graph


def node_of(engine, original):
    """Working node id of an original node, valid while no reduction has touched it."""
    return engine.orig_nodes.index(original)


def is_terminal_of(graph, terminals):
    return {v: v in terminals for v in graph.nodes}


class TestConstruction:

    def test_rejects_directed_graph(self):
        with pytest.raises(ValueError):
            SteinerTreePreprocessing(nx.DiGraph([(0, 1)]), [0])

    def test_rejects_empty_graph(self):
        with pytest.raises(ValueError):
            SteinerTreePreprocessing(nx.Graph(), [])

    def test_rejects_unknown_terminal(self):
        with pytest.raises(ValueError):
            SteinerTreePreprocessing(weighted_graph([(0, 1, 1)]), [0, 7])

    def test_rejects_negative_weight(self):
        with pytest.raises(ValueError):
            SteinerTreePreprocessing(weighted_graph([(0, 1, -1)]), [0])

    def test_copy_leaves_original_untouched(self):
        graph = weighted_graph([(0, 1, 1), (1, 2, 1)])
        engine = SteinerTreePreprocessing(graph, [0, 2])
        engine.reduce_fast()
        assert graph.number_of_nodes() == 3
        assert graph.number_of_edges() == 2


class TestCycles:

    def test_six_cycle(self, six_cycle, exact):
        graph, terminals = six_cycle
        engine = SteinerTreePreprocessing(graph, terminals)
        assert engine.reduce_fast()
        assert engine.reduced_graph.number_of_nodes() == 1
        assert engine.cost_edges_already_inserted == 3

        cost, solution = engine.solve(exact)
        assert cost == 3
        assert tree_weight(solution) == 3
        assert is_steiner_tree(graph, terminals, is_terminal_of(graph, terminals), solution)

    def test_four_cycle(self, four_cycle, exact):
        graph, terminals = four_cycle
        engine = SteinerTreePreprocessing(graph, terminals)
        engine.reduce_fast()
        cost, solution = engine.solve(exact)
        assert cost == 2
        assert solution.number_of_edges() == 2
        assert is_steiner_tree(graph, terminals, is_terminal_of(graph, terminals), solution)


class TestTrivialReductions:

    def test_delete_leaves_folds_terminal_leaf(self):
        graph = weighted_graph([("t0", "a", 2), ("a", "b", 1), ("b", "t1", 1), ("a", "t1", 5), ("b", "x", 4)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.delete_leaves()
        assert engine.cost_edges_already_inserted == 2
        a = node_of(engine, "a")
        assert engine.reduced_is_terminal[a]
        assert sorted(engine.reduced_terminals) == sorted([a, node_of(engine, "t1")])
        assert node_of(engine, "x") not in engine.reduced_graph
        assert not engine.delete_leaves()

    def test_delete_leaves_single_terminal_collapses(self):
        graph = weighted_graph([(0, 1, 1), (1, 2, 1), (2, 0, 1)])
        engine = SteinerTreePreprocessing(graph, [1])
        assert engine.delete_leaves()
        assert engine.reduced_graph.nodes() == [node_of(engine, 1)]
        assert not engine.delete_leaves()

    def test_make_simple(self):
        graph = weighted_graph([(0, 1, 3), (0, 1, 1), (1, 1, 2), (1, 2, 4)], nx.MultiGraph)
        engine = SteinerTreePreprocessing(graph, [0, 2])
        assert engine.make_simple()
        assert engine.reduced_graph.is_simple()
        assert engine.reduced_graph.total_weight() == 5
        assert not engine.make_simple()

    def test_degree2_replaces_path(self):
        graph = weighted_graph([("t0", "a", 2), ("a", "t1", 3), ("t0", "t1", 10)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.degree2_test()
        reduced = engine.reduced_graph
        assert reduced.number_of_nodes() == 2
        assert sorted(reduced.weight(e) for e in reduced.edges()) == [5, 10]
        assert not engine.degree2_test()

    def test_degree2_deletes_node_with_doubled_neighbour(self):
        graph = weighted_graph([("t0", "a", 1), ("t0", "a", 2), ("t0", "t1", 1)], nx.MultiGraph)
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.degree2_test()
        assert engine.reduced_graph.number_of_nodes() == 2
        assert not engine.degree2_test()

    def test_delete_components_without_terminals(self):
        graph = weighted_graph([(0, 1, 1), (2, 3, 1)])
        engine = SteinerTreePreprocessing(graph, [0, 1])
        assert engine.delete_components_without_terminals()
        assert sorted(engine.reduced_graph.nodes()) == [0, 1]
        assert not engine.delete_components_without_terminals()

    def test_split_terminals_fail(self):
        graph = weighted_graph([(0, 1, 1), (2, 3, 1)])
        engine = SteinerTreePreprocessing(graph, [0, 3])
        with pytest.raises(AssertionError):
            engine.delete_components_without_terminals()

    def test_reduce_trivial_is_idempotent(self, make_instance):
        instance = make_instance(3, num_nodes=20, density=0.12)
        engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
        engine.reduce_trivial()
        assert not engine.reduce_trivial()


class TestShortestPathTests:

    def test_least_cost_deletes_long_edge(self):
        graph = weighted_graph([("t0", "a", 1), ("a", "t1", 1), ("t0", "t1", 5)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.least_cost_test()
        assert engine.reduced_graph.number_of_edges() == 2
        assert not engine.least_cost_test()

    def test_long_edges_deletes_detour_edge(self):
        graph = weighted_graph([("t0", "a", 1), ("a", "b", 1), ("b", "t1", 1), ("a", "b2", 1), ("b2", "b", 1), ("a", "b", 5)],
                               nx.MultiGraph)
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.long_edges_test()
        assert sorted(engine.reduced_graph.weight(e) for e in engine.reduced_graph.edges()) == [1] * 5

    def test_terminal_distance_deletes_heavy_edges(self):
        graph = weighted_graph([("t0", "t1", 1), ("t1", "t2", 2), ("t0", "a", 9), ("a", "t2", 1)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        assert engine.terminal_distance_test()
        assert engine.reduced_graph.number_of_edges() == 3
        assert not engine.terminal_distance_test()


class TestBottleneckTests:

    def test_ptm_deletes_edge_above_bottleneck(self):
        graph = weighted_graph([("t0", "t1", 1), ("t1", "t2", 1), ("t0", "t2", 3)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        assert engine.ptm_test()
        assert engine.reduced_graph.number_of_edges() == 2

    def test_ntdk_keeps_star_center(self, star):
        graph, terminals = star
        engine = SteinerTreePreprocessing(graph, terminals)
        assert not engine.ntdk_test()
        assert node_of(engine, "c") in engine.reduced_graph

    def test_ntdk_deletes_center_of_star_with_path(self, star_with_path):
        graph, terminals = star_with_path
        engine = SteinerTreePreprocessing(graph, terminals)
        edges_before = engine.reduced_graph.number_of_edges()
        assert engine.ntdk_test()
        assert node_of(engine, "c") not in engine.reduced_graph
        assert engine.reduced_graph.number_of_edges() == edges_before - 4
        assert engine.reduced_graph.max_edge_index() == edges_before - 1


class TestVoronoiTests:

    def test_nearest_vertex_contracts_cheap_edge(self):
        graph = weighted_graph([("t0", "t1", 1), ("t0", "a", 5), ("a", "t2", 1), ("t1", "t2", 6)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        assert engine.nearest_vertex_test()
        assert engine.cost_edges_already_inserted >= 1
        assert len(engine.reduced_terminals) < 3

    def test_short_links_contracts_cheapest_boundary_edge(self):
        graph = weighted_graph([("t0", "a", 1), ("a", "t1", 1), ("t0", "b", 4), ("b", "t1", 4)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.short_links_test()
        assert engine.cost_edges_already_inserted >= 1

    def test_short_links_contracts_single_boundary_edge(self, exact):
        graph = weighted_graph([("t0", "a", 1), ("t0", "d", 1), ("d", "a", 1), ("a", "b", 5),
                                ("b", "t1", 1), ("b", "c", 1), ("c", "t1", 1)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        assert engine.short_links_test()
        assert engine.cost_edges_already_inserted == 5

        cost, solution = engine.solve(exact)
        assert cost == 7
        assert is_steiner_tree(graph, ["t0", "t1"], is_terminal_of(graph, ["t0", "t1"]), solution)

    def test_add_edges_to_solution_skips_vanished_edge(self):
        graph = weighted_graph([("t0", "t1", 2), ("t0", "t1", 3), ("t1", "t2", 1)], nx.MultiGraph)
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        first, parallel, _ = engine.reduced_graph.edges()
        assert engine.add_edges_to_solution([first, parallel])
        assert engine.cost_edges_already_inserted == 2
        assert len(engine.reduced_terminals) == 2
        assert not engine.add_edges_to_solution([])


class TestBoundTests:

    def test_radius_sum(self):
        graph = weighted_graph([("t0", "t1", 1), ("t1", "t2", 2), ("t2", "t3", 3)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2", "t3"])
        # radii 1, 1, 2, 3
        assert engine.compute_radius_sum() == 2

    def test_lower_bound_with_explicit_upper_bound(self):
        graph = weighted_graph([("t0", "t1", 1), ("t1", "t2", 1), ("t0", "a", 10), ("a", "t2", 10)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        assert engine.lower_bound_based_test(upper_bound=2)
        assert node_of(engine, "a") not in engine.reduced_graph

    def test_upper_bound_module_can_be_replaced(self, make_instance):
        instance = make_instance(1)
        engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
        engine.set_cost_upper_bound_algorithm(MehlhornHeuristic())
        cost, tree = engine.compute_upper_bound()
        assert cost == tree_weight(tree)

    def test_dual_ascent_deletes_far_node(self):
        graph = weighted_graph([("t0", "t1", 1), ("t1", "t2", 1), ("t0", "a", 10), ("a", "t2", 10)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        assert engine.dual_ascent_based_test(upper_bound=2)
        assert node_of(engine, "a") not in engine.reduced_graph

    def test_single_terminal_bound_tests_do_nothing(self):
        graph = weighted_graph([(0, 1, 1)])
        engine = SteinerTreePreprocessing(graph, [0])
        assert not engine.lower_bound_based_test()
        assert not engine.dual_ascent_based_test()


class TestCombinators:

    def test_repeat(self):
        calls = iter([True, True, False])
        assert repeat(lambda: next(calls))
        assert not repeat(lambda: False)

    def test_reduce_fast_is_idempotent(self, make_instance):
        instance = make_instance(7, num_nodes=30, density=0.15, num_terminals=6)
        engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
        engine.reduce_fast()
        assert not engine.reduce_fast()

    def test_run_test_establishes_simple_graph(self):
        graph = weighted_graph([("t0", "a", 1), ("t0", "a", 2), ("a", "t1", 1), ("a", "t2", 1), ("t1", "t2", 1)],
                               nx.MultiGraph)
        engine = SteinerTreePreprocessing(graph, ["t0", "t1", "t2"])
        engine.run_test("ntdk_test")
        assert engine.reduced_graph.is_simple()

    def test_solve_without_terminals(self, exact):
        graph = weighted_graph([(0, 1, 1)])
        engine = SteinerTreePreprocessing(graph, [])
        cost, solution = engine.solve(exact)
        assert cost == 0
        assert solution.number_of_nodes() == 0

    def test_shuffle_keeps_terminals(self, make_instance):
        instance = make_instance(2)
        engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
        before = sorted(engine.reduced_terminals)
        engine.shuffle_reduced_terminals(random.Random(0))
        assert sorted(engine.reduced_terminals) == before

    def test_solution_keeps_original_attributes(self, exact):
        graph = nx.MultiGraph()
        graph.add_node("t0", label="start")
        graph.add_edge("t0", "a", key="x", weight=1, color="red")
        graph.add_edge("a", "t1", key="y", weight=1)
        graph.add_edge("t0", "t1", key="z", weight=5)
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        engine.reduce_fast()
        cost, solution = engine.solve(exact)
        assert cost == 2
        assert isinstance(solution, nx.MultiGraph)
        assert solution.nodes["t0"]["label"] == "start"
        assert solution.edges["t0", "a", "x"]["color"] == "red"
        assert not solution.has_edge("t0", "t1", "z")


class TestLogging:

    @pytest.mark.parametrize("name", [
        "make_simple", "degree2_test", "least_cost_test", "long_edges_test", "terminal_distance_test",
        "ptm_test", "ntdk_test", "nearest_vertex_test", "short_links_test", "lower_bound_based_test",
        "dual_ascent_based_test", "reachability_test", "cut_reachability_test",
    ])
    def test_reports_count_at_debug(self, name, make_instance, caplog):
        instance = make_instance(3, num_terminals=5)
        engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
        caplog.set_level(logging.DEBUG, logger="steinerpreprocessing")
        getattr(engine, name)()
        assert any(record.levelno == logging.DEBUG and record.getMessage().startswith(f"{name}:")
                   for record in caplog.records)

    def test_delete_leaves_reports_count(self, caplog):
        graph = weighted_graph([("t0", "a", 1), ("a", "t1", 1), ("a", "x", 1)])
        engine = SteinerTreePreprocessing(graph, ["t0", "t1"])
        caplog.set_level(logging.DEBUG, logger="steinerpreprocessing")
        assert engine.delete_leaves()
        assert "delete_leaves: removed" in caplog.text
