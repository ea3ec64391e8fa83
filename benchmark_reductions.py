import argparse
import logging
import os
import pickle
import random
from datetime import datetime
from time import time

import pandas as pd
import psutil

from reducesteiner import SOLVERS, STRATEGIES, apply_strategy
from steinerinstance import DEFAULT_DENSITY, SteinerInstance
from steinerpreprocessing import SteinerTreePreprocessing
from steinertreemodules import is_steiner_tree

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_arguments():
    parser = argparse.ArgumentParser(prog='Steiner reduction benchmark', usage='%(prog)s [options]')
    parser.add_argument(
        "--num-instances",
        type=int,
        default=5,
        help="Number of instances to generate (default: 5)"
    )
    parser.add_argument(
        "--num-nodes",
        type=int,
        default=100,
        help="Number of nodes in each graph (default: 100)"
    )
    parser.add_argument(
        "--density",
        type=float,
        default=DEFAULT_DENSITY,
        help=f"Edge density of the graph (default: {DEFAULT_DENSITY})"
    )
    parser.add_argument(
        "--num-terminals",
        type=int,
        default=None,
        help="Number of terminals in each instance (default: a quarter of the nodes)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)"
    )
    parser.add_argument(
        "--solver",
        choices=list(SOLVERS),
        default="takahashi",
        help="Steiner tree algorithm run after the reductions (default: takahashi)"
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="benchmark_results",
        help="Directory to save results and instances (default: benchmark_results)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output (default: False)"
    )
    return parser.parse_args()


def generate_instances(num_instances, num_nodes, density, num_terminals, seed):
    random.seed(seed)
    instances = []
    for i in range(num_instances):
        instance_seed = random.randint(0, 1000000)
        random.seed(instance_seed)
        instance = SteinerInstance(num_nodes, density, num_terminals)
        instances.append((instance, instance_seed))
        logger.info(f"Generated instance {i+1}/{num_instances} with seed {instance_seed}")
    return instances


def save_instances(instances, output_dir):
    os.makedirs(output_dir, exist_ok=True)
    instances_path = os.path.join(output_dir, "instances.pkl")
    with open(instances_path, 'wb') as f:
        pickle.dump(instances, f)
    logger.info(f"Saved instances to {instances_path}")


def run_experiment(instance, instance_seed, strategy, solver):
    process = psutil.Process(os.getpid())
    memory_before = process.memory_info().rss

    start = time()
    engine = SteinerTreePreprocessing(instance.graph, instance.terminals)
    apply_strategy(engine, strategy)
    reduction_time = time() - start

    reduced = engine.reduced_graph
    start = time()
    cost, solution = engine.solve(SOLVERS[solver]())
    solve_time = time() - start

    result = {
        "instance_seed": instance_seed,
        "strategy": strategy,
        "solver": solver,
        "original_nodes": instance.graph.number_of_nodes(),
        "original_edges": instance.graph.number_of_edges(),
        "original_terminals": len(instance.terminals),
        "reduced_nodes": reduced.number_of_nodes(),
        "reduced_edges": reduced.number_of_edges(),
        "reduced_terminals": len(engine.reduced_terminals),
        "cost_already_inserted": engine.cost_edges_already_inserted,
        "solution_cost": cost,
        "valid": is_steiner_tree(instance.graph, instance.terminals, instance.is_terminal, solution),
        "reduction_time": reduction_time,
        "solve_time": solve_time,
        "memory_mb": max(0, process.memory_info().rss - memory_before) / (1024 * 1024),
    }
    result["node_reduction"] = 1 - result["reduced_nodes"] / result["original_nodes"]
    result["edge_reduction"] = 1 - result["reduced_edges"] / max(1, result["original_edges"])
    return result


def analyze_results(results):
    df = pd.DataFrame(results)
    summary = (df
        .groupby("strategy", dropna=False)
        .agg(
            node_reduction_mean=("node_reduction", "mean"),
            edge_reduction_mean=("edge_reduction", "mean"),
            solution_cost_mean=("solution_cost", "mean"),
            reduction_time_mean=("reduction_time", "mean"),
            reduction_time_std=("reduction_time", "std"),
            solve_time_mean=("solve_time", "mean"),
            memory_mb_max=("memory_mb", "max"),
            valid_rate=("valid", "mean"),
            runs=("valid", "size"),
        ).round(3)
        .reset_index()
    )
    return summary


def main():
    args = parse_arguments()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    output_dir = os.path.join(args.output_dir, datetime.now().strftime("%Y%m%d_%H%M%S"))
    os.makedirs(output_dir, exist_ok=True)

    instances = generate_instances(args.num_instances, args.num_nodes, args.density, args.num_terminals, args.seed)
    save_instances(instances, output_dir)

    results = []
    for i, (instance, instance_seed) in enumerate(instances):
        for strategy in STRATEGIES:
            result = run_experiment(instance, instance_seed, strategy, args.solver)
            results.append(result)
            logger.info(f"Instance {i+1}/{len(instances)}, strategy {strategy}: "
                        f"{result['reduced_nodes']} nodes, {result['reduced_edges']} edges left, "
                        f"cost {result['solution_cost']}, {result['reduction_time']:.3f}s")
            if not result["valid"]:
                logger.error(f"Invalid solution for instance seed {instance_seed} with strategy {strategy}")

    df = pd.DataFrame(results)
    detailed_path = os.path.join(output_dir, "results_detailed.csv")
    df.to_csv(detailed_path, index=False)
    logger.info(f"Saved detailed results to {detailed_path}")

    summary = analyze_results(results)
    summary_path = os.path.join(output_dir, "summary.csv")
    summary.to_csv(summary_path, index=False)
    logger.info(f"Saved summary statistics to {summary_path}")
    print("\nSummary Statistics:\n", summary)


if __name__ == "__main__":
    main()
