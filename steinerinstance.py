import logging
import pickle
import random

import matplotlib.pyplot as plt
import networkx as nx

logger = logging.getLogger(__name__)

MAX_EDGE_WEIGHT = 100
DEFAULT_DENSITY = 0.3


class SteinerInstance:
    """
    A random instance of the Steiner tree problem in graphs.

    The graph is a random spanning tree (so it is connected) plus random extra edges until the requested
    density is met. Edge weights are integers in 1..MAX_EDGE_WEIGHT. The terminals are a random sample
    of the nodes. Randomness comes from the module level random generator, seed it for reproducibility.
    """

    def __init__(self, num_nodes, density=DEFAULT_DENSITY, num_terminals=None):
        assert num_nodes >= 1, "An instance needs at least one node"
        self.num_nodes = num_nodes
        self.density = density
        if num_terminals is None:
            num_terminals = max(1, num_nodes // 4)
        assert 0 <= num_terminals <= num_nodes
        self.num_terminals = num_terminals

        self.graph = None
        self.terminals = []

        self.compute_instance()

    def compute_instance(self):
        self.graph = nx.Graph()
        nodes = list(range(self.num_nodes))
        self.graph.add_nodes_from(nodes)
        random.shuffle(nodes)

        # Spanning tree: attach every node to a random earlier one
        for i in range(1, self.num_nodes):
            u, v = nodes[i], nodes[random.randrange(i)]
            self.graph.add_edge(u, v, weight=random.randint(1, MAX_EDGE_WEIGHT))

        total_possible_edges = (self.num_nodes * (self.num_nodes - 1)) // 2
        target_edges = min(total_possible_edges, max(self.num_nodes - 1, round(self.density * total_possible_edges)))
        while self.graph.number_of_edges() < target_edges:
            u, v = random.sample(nodes, 2)
            if not self.graph.has_edge(u, v):
                self.graph.add_edge(u, v, weight=random.randint(1, MAX_EDGE_WEIGHT))

        self.terminals = sorted(random.sample(range(self.num_nodes), self.num_terminals))
        logger.debug(f"Generated instance with {self.num_nodes} nodes, {self.graph.number_of_edges()} edges "
                     f"and {self.num_terminals} terminals")

    @property
    def is_terminal(self):
        terminal_set = set(self.terminals)
        return {v: v in terminal_set for v in self.graph.nodes}

    def plot(self, path="steiner_instance.png", solution=None):
        """Draw the graph with terminals in red and, if given, the edges of a solution highlighted."""
        pos = nx.spring_layout(self.graph)
        terminal_set = set(self.terminals)
        colors = ["tomato" if v in terminal_set else "skyblue" for v in self.graph.nodes]
        nx.draw(self.graph, pos, with_labels=True, node_size=500, node_color=colors, font_size=8, font_weight="bold")
        nx.draw_networkx_edge_labels(self.graph, pos, edge_labels=nx.get_edge_attributes(self.graph, "weight"))
        if solution is not None:
            nx.draw_networkx_edges(self.graph, pos, edgelist=list(solution.edges()), width=3, edge_color="tomato")
        plt.axis("off")
        plt.savefig(path, format="PNG")
        plt.close()

    def save(self, path):
        with open(path, 'wb') as f:
            pickle.dump(self, f)
        logger.info(f"Saved instance to {path}")

    @staticmethod
    def load(path):
        with open(path, 'rb') as f:
            instance = pickle.load(f)
        logger.info(f"Loaded instance with {instance.num_nodes} nodes from {path}")
        return instance


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    instance = SteinerInstance(30, 0.2, 6)
    instance.plot()
    print(f"Terminals: {instance.terminals}")
    print(f"Total edges in the graph: {instance.graph.number_of_edges()}")
