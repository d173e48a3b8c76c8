"""Dependency resolver: batches a resource graph into an execution plan."""

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import CycleError
from .graph_model import ResourceGraph, ResourceId


@dataclass(frozen=True)
class ExecutionPlan:
    batches: Tuple[Tuple[ResourceId, ...], ...] = ()

    def __iter__(self) -> Iterator[Tuple[ResourceId, ...]]:
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    def resources(self) -> List[ResourceId]:
        return [resource_id for batch in self.batches for resource_id in batch]

    def batch_index(self, resource_id: ResourceId) -> int:
        for index, batch in enumerate(self.batches):
            if resource_id in batch:
                return index
        raise KeyError(resource_id)

    def reversed(self) -> "ExecutionPlan":
        return ExecutionPlan(
            batches=tuple(tuple(reversed(batch)) for batch in reversed(self.batches))
        )

    def to_json(self) -> List[List[str]]:
        return [[str(resource_id) for resource_id in batch] for batch in self.batches]


class DependencyResolver:
    def compute_plan(self, graph: ResourceGraph) -> ExecutionPlan:
        return plan_batches(graph.order, graph.dependency_map())

    def compute_destroy_plan(self, graph: ResourceGraph) -> ExecutionPlan:
        return self.compute_plan(graph).reversed()


def compute_plan(graph: ResourceGraph) -> ExecutionPlan:
    return DependencyResolver().compute_plan(graph)


def compute_destroy_plan(graph: ResourceGraph) -> ExecutionPlan:
    return DependencyResolver().compute_destroy_plan(graph)


def plan_batches(
    order: Sequence[ResourceId],
    dependencies: Mapping[ResourceId, Sequence[ResourceId]],
) -> ExecutionPlan:
    """Kahn's algorithm, one batch per round, declaration order within a batch.

    Dependencies on ids outside ``order`` are ignored.
    """
    members = set(order)
    remaining_deps: Dict[ResourceId, set] = {
        resource_id: {dep for dep in dependencies.get(resource_id, ()) if dep in members}
        for resource_id in order
    }
    remaining: List[ResourceId] = list(order)
    batches: List[Tuple[ResourceId, ...]] = []

    while remaining:
        batch = tuple(resource_id for resource_id in remaining if not remaining_deps[resource_id])
        if not batch:
            raise CycleError(find_minimal_cycle(remaining, remaining_deps))
        batches.append(batch)
        done = set(batch)
        remaining = [resource_id for resource_id in remaining if resource_id not in done]
        for resource_id in remaining:
            remaining_deps[resource_id] -= done

    return ExecutionPlan(batches=tuple(batches))


def find_minimal_cycle(
    order: Sequence[ResourceId],
    dependencies: Mapping[ResourceId, set],
) -> List[ResourceId]:
    """Shortest cycle among ``order``; ties go to the earliest-declared start."""
    rank = {resource_id: index for index, resource_id in enumerate(order)}
    best: Optional[List[ResourceId]] = None

    for start in order:
        path = _shortest_path_back(start, dependencies, rank)
        if path is None:
            continue
        if best is None or len(path) < len(best):
            best = path

    if best is None:
        # Kahn stalled, so some cycle must exist among the remaining nodes.
        raise AssertionError("stalled plan without a detectable cycle")

    pivot = min(range(len(best)), key=lambda index: rank[best[index]])
    return best[pivot:] + best[:pivot]


def _shortest_path_back(
    start: ResourceId,
    dependencies: Mapping[ResourceId, set],
    rank: Mapping[ResourceId, int],
) -> Optional[List[ResourceId]]:
    parents: Dict[ResourceId, ResourceId] = {}
    queue = deque([start])
    seen = {start}
    while queue:
        current = queue.popleft()
        for dep in sorted(dependencies.get(current, ()), key=lambda item: rank.get(item, len(rank))):
            if dep not in rank:
                continue
            if dep == start:
                path = [current]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            if dep not in seen:
                seen.add(dep)
                parents[dep] = current
                queue.append(dep)
    return None
