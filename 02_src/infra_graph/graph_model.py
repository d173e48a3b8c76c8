"""Resource graph primitives shared by the builder, resolver and engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ResourceId:
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}:{self.name}"

    def to_json(self) -> Dict[str, str]:
        return {"type": self.type, "name": self.name}


class LifecycleState(str, Enum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


@dataclass
class ResourceNode:
    id: ResourceId
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[ResourceId] = field(default_factory=list)
    applied_attributes: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    state: LifecycleState = LifecycleState.PENDING
    action: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def type(self) -> str:
        return self.id.type

    @property
    def name(self) -> str:
        return self.id.name


@dataclass
class DependencyEdge:
    id: str
    source: ResourceId
    target: ResourceId
    attribute_path: str = ""


@dataclass
class ResourceGraph:
    """Nodes in declaration order plus dependency edges between them.

    An edge's ``source`` depends on its ``target``: the target must be applied
    before the source and destroyed after it.
    """

    nodes: Dict[ResourceId, ResourceNode] = field(default_factory=dict)
    edges: Dict[str, DependencyEdge] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    _dependencies: Dict[ResourceId, List[ResourceId]] = field(default_factory=dict, repr=False)
    _dependents: Dict[ResourceId, List[ResourceId]] = field(default_factory=dict, repr=False)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def order(self) -> List[ResourceId]:
        return list(self.nodes.keys())

    def add_node(self, node: ResourceNode) -> None:
        self.nodes[node.id] = node
        self._dependencies.setdefault(node.id, [])
        self._dependents.setdefault(node.id, [])

    def add_edge(self, edge: DependencyEdge) -> None:
        self.edges[edge.id] = edge
        dependencies = self._dependencies.setdefault(edge.source, [])
        if edge.target not in dependencies:
            dependencies.append(edge.target)
        dependents = self._dependents.setdefault(edge.target, [])
        if edge.source not in dependents:
            dependents.append(edge.source)

    def dependencies(self, resource_id: ResourceId) -> List[ResourceId]:
        return list(self._dependencies.get(resource_id, []))

    def dependents(self, resource_id: ResourceId) -> List[ResourceId]:
        return list(self._dependents.get(resource_id, []))

    def dependency_map(self) -> Dict[ResourceId, List[ResourceId]]:
        return {resource_id: self.dependencies(resource_id) for resource_id in self.nodes}
