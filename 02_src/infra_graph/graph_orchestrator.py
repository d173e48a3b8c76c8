"""Deterministic builder for the resource dependency graph."""

from hashlib import sha1
from typing import Any, Dict, Iterable, List, Optional

from .errors import DeclarationError, DuplicateResourceError, UnknownResourceError
from .graph_model import DependencyEdge, ResourceGraph, ResourceId, ResourceNode
from .values import Deferred, NamedOutput, iter_markers, lookup_path


class ResourceGraphBuilder:
    """Owns resource identities and the edges derived from references."""

    def __init__(self) -> None:
        self.graph = ResourceGraph()
        self._edge_registry: Dict[str, str] = {}

    def add_resource(
        self,
        resource_type: str,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        depends_on: Iterable[ResourceId] = (),
    ) -> ResourceId:
        resource_id = ResourceId(type=resource_type, name=name)
        if resource_id in self.graph:
            raise DuplicateResourceError(f"Resource already declared: {resource_id}")

        attributes = dict(attributes or {})
        depends_on = list(depends_on)
        # Validate every endpoint before touching the graph so a failed call leaves no trace.
        targets = self._reference_targets(attributes)
        for target in depends_on:
            self._require(target)

        self.graph.add_node(
            ResourceNode(id=resource_id, attributes=attributes, depends_on=depends_on)
        )
        for attribute_path, target in targets:
            self._register_edge(resource_id, target, attribute_path)
        for target in depends_on:
            self._register_edge(resource_id, target, "dependsOn")
        return resource_id

    def add_reference(
        self,
        from_id: ResourceId,
        attribute_path: str,
        to_id: ResourceId,
        output_path: str = "id",
    ) -> str:
        self._require(from_id)
        self._require(to_id)
        node = self.graph.nodes[from_id]
        try:
            current = lookup_path(node.attributes, attribute_path)
        except KeyError:
            current = None
        bound = {str(marker.target) for _, marker in iter_markers(current) if isinstance(marker, Deferred)}
        bound |= {marker.name for _, marker in iter_markers(current) if isinstance(marker, NamedOutput)}
        if bound - {str(to_id)}:
            raise DeclarationError(
                f"{from_id} attribute '{attribute_path}' is already bound to {', '.join(sorted(bound))}"
            )
        _assign_path(node.attributes, attribute_path, Deferred(target=to_id, path=output_path))
        return self._register_edge(from_id, to_id, attribute_path)

    def add_output(self, name: str, value: Any) -> str:
        if name in self.graph.outputs:
            raise DuplicateResourceError(f"Output already declared: {name}")
        self._reference_targets(value)
        self.graph.outputs[name] = value
        return name

    def get(self, resource_type: str, name: str) -> ResourceNode:
        resource_id = ResourceId(type=resource_type, name=name)
        self._require(resource_id)
        return self.graph.nodes[resource_id]

    def to_json(self) -> Dict[str, Any]:
        return {
            "nodes": [
                {
                    "id": str(node.id),
                    "type": node.type,
                    "name": node.name,
                    "state": node.state.value,
                    "dependencies": [str(item) for item in self.graph.dependencies(node.id)],
                }
                for node in self.graph.nodes.values()
            ],
            "edges": [
                {
                    "id": edge.id,
                    "source": str(edge.source),
                    "target": str(edge.target),
                    "attribute_path": edge.attribute_path,
                }
                for edge in self.graph.edges.values()
            ],
            "outputs": sorted(self.graph.outputs),
        }

    def _reference_targets(self, value: Any) -> List[tuple]:
        targets: List[tuple] = []
        for attribute_path, marker in iter_markers(value):
            if isinstance(marker, NamedOutput):
                if marker.name not in self.graph.outputs:
                    raise UnknownResourceError(f"Unknown output: {marker.name}")
                for _, target in self._reference_targets(self.graph.outputs[marker.name]):
                    targets.append((attribute_path, target))
                continue
            self._require(marker.target)
            targets.append((attribute_path, marker.target))
        return targets

    def _require(self, resource_id: ResourceId) -> None:
        if resource_id not in self.graph:
            raise UnknownResourceError(f"Unknown resource: {resource_id}")

    def _register_edge(self, source: ResourceId, target: ResourceId, attribute_path: str) -> str:
        edge_signature = f"{source}->{target}@{attribute_path}"
        existing_id = self._edge_registry.get(edge_signature)
        if existing_id:
            return existing_id

        edge_id = self._build_id("edge", edge_signature)
        self.graph.add_edge(
            DependencyEdge(id=edge_id, source=source, target=target, attribute_path=attribute_path)
        )
        self._edge_registry[edge_signature] = edge_id
        return edge_id

    @staticmethod
    def _build_id(prefix: str, signature: str) -> str:
        digest = sha1(signature.encode("utf-8")).hexdigest()[:12]
        return f"{prefix}_{digest}"


def _assign_path(attributes: Dict[str, Any], attribute_path: str, value: Any) -> None:
    parts = [part for part in attribute_path.split(".") if part]
    if not parts:
        raise ValueError("attribute_path must not be empty")
    current = attributes
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value
