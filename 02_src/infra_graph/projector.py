"""Output projector: resolves tagged values against applied resources."""

import json
from string import Template as TextTemplate
from threading import RLock
from typing import Any, Dict, List

from .errors import MissingOutputError, UnknownResourceError, UnresolvedReferenceError
from .graph_model import LifecycleState, ResourceGraph
from .values import (
    PROJECTION_TYPES,
    Deferred,
    JsonDocument,
    Kubeconfig,
    Literal,
    NamedOutput,
    Template,
    iter_markers,
    lookup_path,
)


class OutputProjector:
    """Resolves references lazily, caching composite values for the run."""

    def __init__(self, graph: ResourceGraph) -> None:
        self._graph = graph
        self._cache: Dict[int, Any] = {}
        self._named: Dict[str, Any] = {}
        self._lock = RLock()

    def resolve(self, value: Any) -> Any:
        if isinstance(value, Literal):
            return value.value
        if isinstance(value, Deferred):
            return self.resolve_reference(value)
        if isinstance(value, NamedOutput):
            return self.resolve_output(value.name)
        if isinstance(value, PROJECTION_TYPES):
            return self._resolve_projection(value)
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.resolve(item) for item in value]
        return value

    def resolve_reference(self, reference: Deferred) -> Any:
        node = self._graph.nodes.get(reference.target)
        if node is None:
            raise UnknownResourceError(f"Unknown resource: {reference.target}")
        if node.state is not LifecycleState.APPLIED:
            raise UnresolvedReferenceError(
                f"{reference.target} is {node.state.value}, cannot read '{reference.path}'"
            )
        try:
            return lookup_path(node.outputs, reference.path)
        except KeyError:
            if reference.has_default:
                return reference.default
            raise MissingOutputError(reference.target, reference.path) from None

    def resolve_output(self, name: str) -> Any:
        if name not in self._graph.outputs:
            raise UnknownResourceError(f"Unknown output: {name}")
        with self._lock:
            if name not in self._named:
                self._named[name] = self.resolve(self._graph.outputs[name])
            return self._named[name]

    def is_ready(self, value: Any) -> bool:
        for _, marker in iter_markers(value):
            if isinstance(marker, NamedOutput):
                if marker.name not in self._graph.outputs:
                    return False
                if not self.is_ready(self._graph.outputs[marker.name]):
                    return False
                continue
            node = self._graph.nodes.get(marker.target)
            if node is None or node.state is not LifecycleState.APPLIED:
                return False
        return True

    def ready_outputs(self) -> List[str]:
        return [name for name, value in self._graph.outputs.items() if self.is_ready(value)]

    def _resolve_projection(self, projection: Any) -> Any:
        key = id(projection)
        with self._lock:
            if key not in self._cache:
                self._cache[key] = self._compute(projection)
            return self._cache[key]

    def _compute(self, projection: Any) -> Any:
        if isinstance(projection, Template):
            inputs = {name: self.resolve(value) for name, value in projection.inputs.items()}
            if projection.fallback is not None and any(value is None for value in inputs.values()):
                return projection.fallback
            return TextTemplate(projection.text).substitute(
                {name: _as_text(value) for name, value in inputs.items()}
            )
        if isinstance(projection, JsonDocument):
            return json.dumps(self.resolve(projection.value), sort_keys=True)
        if isinstance(projection, Kubeconfig):
            return build_kubeconfig(
                endpoint=self.resolve(projection.endpoint),
                certificate_authority=self.resolve(projection.certificate_authority),
                cluster_name=self.resolve(projection.cluster_name),
                user=projection.user,
                context=projection.context,
            )
        raise TypeError(f"Unsupported projection: {type(projection).__name__}")


def build_kubeconfig(
    endpoint: str,
    certificate_authority: Any,
    cluster_name: str,
    user: str = "aws",
    context: str = "aws",
) -> Dict[str, Any]:
    if isinstance(certificate_authority, dict):
        certificate_authority = certificate_authority.get("data", "")
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": "kubernetes",
                "cluster": {
                    "server": endpoint,
                    "certificate-authority-data": certificate_authority,
                },
            }
        ],
        "contexts": [{"name": context, "context": {"cluster": "kubernetes", "user": user}}],
        "current-context": context,
        "users": [
            {
                "name": user,
                "user": {
                    "exec": {
                        "apiVersion": "client.authentication.k8s.io/v1beta1",
                        "command": "aws",
                        "args": ["eks", "get-token", "--cluster-name", cluster_name],
                    }
                },
            }
        ],
    }


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)
