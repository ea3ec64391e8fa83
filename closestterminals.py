import logging
from bisect import bisect_left
from typing import Dict, List, Mapping, Tuple

from priorityqueue import LazyPriorityQueue
from steinergraph import EdgeWeightedGraph

logger = logging.getLogger(__name__)


class ClosestKTerminals:
    """
    For every node, the (at most) k nearest terminals that can be reached without passing through
    another terminal, sorted by distance.

    A multi-source Dijkstra whose queue items are (node, source terminal) pairs. A node keeps an
    entry for a source only while that source is among its k best, so the search from a
    terminal dies out where it is no longer competitive.
    """

    __slots__ = ['k', '_closest']

    def __init__(self, graph: EdgeWeightedGraph, terminals, is_terminal: Mapping[int, bool], k: int):
        assert k >= 1
        self.k = k
        self._closest: Dict[int, List[Tuple[int, float]]] = {v: [] for v in graph.nodes()}

        queue = LazyPriorityQueue()
        for t in terminals:
            self._closest[t] = [(t, 0)]
            queue.push(0, (t, t))

        while len(queue):
            distance, (v, source) = queue.pop()
            current = self._distance_from(v, source)
            if current is None:
                # evicted by k closer terminals
                continue

            for e, w in graph.incident(v):
                if is_terminal[w]:
                    continue
                new_distance = current + graph.weight(e)
                known = self._distance_from(w, source)
                if known is not None:
                    if new_distance < known:
                        queue.push(new_distance, (w, source))
                        self._set_new_distance(w, source, new_distance)
                elif len(self._closest[w]) < k or self._closest[w][-1][1] > new_distance:
                    queue.push(new_distance, (w, source))
                    evicted = self._set_new_distance(w, source, new_distance)
                    if evicted is not None:
                        queue.mark_deleted((w, evicted))

    def _distance_from(self, v, terminal):
        for t, d in self._closest[v]:
            if t == terminal:
                return d
        return None

    def _set_new_distance(self, v, terminal, distance):
        entries = [entry for entry in self._closest[v] if entry[0] != terminal]
        evicted = None
        if len(entries) == self.k:
            evicted = entries.pop()[0]
        position = bisect_left([d for _, d in entries], distance)
        entries.insert(position, (terminal, distance))
        self._closest[v] = entries
        return evicted

    def closest(self, v) -> List[Tuple[int, float]]:
        return self._closest[v]

    def __getitem__(self, v) -> List[Tuple[int, float]]:
        return self._closest[v]
