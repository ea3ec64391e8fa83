import argparse
import logging
import random
from time import time

from steinerinstance import DEFAULT_DENSITY, SteinerInstance
from steinerpreprocessing import SteinerTreePreprocessing
from steinertreemodules import ExactSteinerTree, MehlhornHeuristic, TakahashiHeuristic, is_steiner_tree

logger = logging.getLogger(__name__)

STRATEGIES = {
    "trivial": lambda engine: engine.reduce_trivial(),
    "fast": lambda engine: engine.reduce_fast(),
    "fast_da": lambda engine: engine.reduce_fast_and_dual_ascent(),
}

SINGLE_TESTS = [
    "delete_leaves", "make_simple", "degree2_test", "delete_components_without_terminals",
    "least_cost_test", "long_edges_test", "terminal_distance_test", "ptm_test", "ntdk_test",
    "nearest_vertex_test", "short_links_test", "lower_bound_based_test", "dual_ascent_based_test",
    "reachability_test", "cut_reachability_test",
]

SOLVERS = {
    "takahashi": TakahashiHeuristic,
    "mehlhorn": MehlhornHeuristic,
    "exact": ExactSteinerTree,
}


def parse_arguments():
    parser = argparse.ArgumentParser(prog='Steiner tree reduction', usage='%(prog)s [options]')
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Random seed (default: 0)"
    )
    parser.add_argument(
        "--num-nodes",
        type=int,
        default=100,
        help="The number of nodes in the graph (default: 100)"
    )
    parser.add_argument(
        "--density",
        type=float,
        default=DEFAULT_DENSITY,
        help=f"The density of the graph (default: {DEFAULT_DENSITY})"
    )
    parser.add_argument(
        "--num-terminals",
        type=int,
        default=None,
        help="The number of terminals (default: a quarter of the nodes)"
    )
    parser.add_argument(
        "--strategy",
        choices=list(STRATEGIES) + SINGLE_TESTS,
        default="fast",
        help="Reductions to apply: a combination (trivial, fast, fast_da) or a single test (default: fast)"
    )
    parser.add_argument(
        "--solver",
        choices=list(SOLVERS),
        default="takahashi",
        help="Steiner tree algorithm run on the reduced instance (default: takahashi)"
    )
    parser.add_argument(
        "--instance",
        type=str,
        default=None,
        help="Pickled SteinerInstance to load instead of generating one (default: None)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging of every reduction test (default: False)"
    )
    return parser.parse_args()


def apply_strategy(engine: SteinerTreePreprocessing, strategy: str) -> bool:
    if strategy in STRATEGIES:
        return STRATEGIES[strategy](engine)
    return engine.run_test(strategy)


if __name__ == "__main__":
    args = parse_arguments()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    random.seed(args.seed)

    if args.instance:
        instance = SteinerInstance.load(args.instance)
    else:
        instance = SteinerInstance(args.num_nodes, args.density, args.num_terminals)

    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    print(f"Original instance: {instance.graph.number_of_nodes()} nodes, {instance.graph.number_of_edges()} edges, "
          f"{len(instance.terminals)} terminals")

    start = time()
    changed = apply_strategy(engine, args.strategy)
    reduction_time = time() - start

    reduced = engine.reduced_graph
    print(f"Strategy {args.strategy} {'changed' if changed else 'did not change'} the instance in {reduction_time:.3f}s")
    print(f"Reduced instance: {reduced.number_of_nodes()} nodes, {reduced.number_of_edges()} edges, "
          f"{len(engine.reduced_terminals)} terminals")
    print(f"Total edge weight of the reduced instance: {reduced.total_weight()}")
    print(f"Cost of edges already inserted: {engine.cost_edges_already_inserted}")

    start = time()
    cost, solution = engine.solve(SOLVERS[args.solver]())
    solve_time = time() - start

    valid = is_steiner_tree(instance.graph, instance.terminals, instance.is_terminal, solution)
    print(f"Solution cost with {args.solver}: {cost} ({solve_time:.3f}s)")
    print(f"Solution has {solution.number_of_edges()} edges and is {'a valid' if valid else 'NOT a valid'} Steiner tree")
    if not valid:
        logger.error("The expanded solution is not a Steiner tree of the original instance")
