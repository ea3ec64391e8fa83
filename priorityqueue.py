import heapq


class LazyPriorityQueue:

    """A priority queue with lazy deletion and lazy decrease-key using heapq."""

    def __init__(self):
        self.heap = []  # List of [priority, counter, item]
        self.counter = 0
        self.best = {}  # item -> priority of its live entry
        self.deleted = set()

    def push(self, priority, item):
        """Push an item, or lower the priority of an item already queued."""
        if item in self.deleted:
            self.deleted.remove(item)
            del self.best[item]
        elif item in self.best and self.best[item] <= priority:
            return
        self.best[item] = priority
        heapq.heappush(self.heap, [priority, self.counter, item])
        self.counter += 1

    def mark_deleted(self, item):
        """Mark an item as deleted without removing it immediately."""
        if item in self.best:
            self.deleted.add(item)

    def pop(self):
        """Pop the lowest-priority item, skipping stale and deleted entries."""
        while self.heap:
            priority, count, item = heapq.heappop(self.heap)
            if self.best.get(item) != priority:
                continue
            del self.best[item]
            if item in self.deleted:
                self.deleted.remove(item)
                continue
            return priority, item
        raise IndexError("pop from an empty LazyPriorityQueue")

    def __contains__(self, item):
        return item in self.best and item not in self.deleted

    def __len__(self):
        return len(self.best) - len(self.deleted)
