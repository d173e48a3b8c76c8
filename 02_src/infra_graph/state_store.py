"""Local JSON state store with atomic writes and snapshot diffing."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .declarations import encode_value
from .errors import StateCorruptionError
from .graph_model import DependencyEdge, LifecycleState, ResourceGraph, ResourceId, ResourceNode
from .graph_orchestrator import ResourceGraphBuilder
from .resolver import ExecutionPlan, compute_plan

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class ResourceRecord:
    id: ResourceId
    declared: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[ResourceId] = field(default_factory=list)
    tainted: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.id.type,
            "name": self.id.name,
            "declared": self.declared,
            "attributes": self.attributes,
            "outputs": self.outputs,
            "dependencies": [dep.to_json() for dep in self.dependencies],
            "tainted": self.tainted,
        }

    @classmethod
    def from_json(cls, payload: Any) -> "ResourceRecord":
        if not isinstance(payload, dict):
            raise StateCorruptionError(f"Resource record must be an object: {payload!r}")
        try:
            record = cls(
                id=ResourceId(type=str(payload["type"]), name=str(payload["name"])),
                declared=payload["declared"],
                attributes=payload["attributes"],
                outputs=payload["outputs"],
                dependencies=[
                    ResourceId(type=str(dep["type"]), name=str(dep["name"]))
                    for dep in payload["dependencies"]
                ],
                tainted=bool(payload.get("tainted", False)),
            )
        except (KeyError, TypeError) as error:
            raise StateCorruptionError(f"Malformed resource record: {error}") from error
        for label in ("declared", "attributes", "outputs"):
            if not isinstance(getattr(record, label), dict):
                raise StateCorruptionError(f"'{label}' of {record.id} must be an object")
        return record


@dataclass
class StateSnapshot:
    resources: Dict[ResourceId, ResourceRecord] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    serial: int = 0

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources

    def __len__(self) -> int:
        return len(self.resources)

    def get(self, resource_id: ResourceId) -> Optional[ResourceRecord]:
        return self.resources.get(resource_id)

    def to_graph(self, resource_ids: Optional[Iterable[ResourceId]] = None) -> ResourceGraph:
        """Rebuild applied nodes (all, or the given subset) for destruction."""
        selected = list(self.resources) if resource_ids is None else list(resource_ids)
        members = set(selected)
        graph = ResourceGraph()
        for resource_id in selected:
            record = self.resources[resource_id]
            graph.add_node(
                ResourceNode(
                    id=resource_id,
                    attributes=dict(record.attributes),
                    applied_attributes=dict(record.attributes),
                    outputs=dict(record.outputs),
                    state=LifecycleState.APPLIED,
                )
            )
        for resource_id in selected:
            for dep in self.resources[resource_id].dependencies:
                if dep not in members:
                    continue
                signature = f"{resource_id}->{dep}@state"
                graph.add_edge(
                    DependencyEdge(
                        id=ResourceGraphBuilder._build_id("edge", signature),
                        source=resource_id,
                        target=dep,
                        attribute_path="state",
                    )
                )
        return graph

    def body(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "serial": self.serial,
            "resources": [record.to_json() for record in self.resources.values()],
            "outputs": self.outputs,
        }

    def to_json(self) -> Dict[str, Any]:
        body = self.body()
        return {**body, "checksum": _checksum(body)}

    @classmethod
    def from_json(cls, payload: Any) -> "StateSnapshot":
        if not isinstance(payload, dict):
            raise StateCorruptionError("State file must contain a JSON object")
        if payload.get("version") != STATE_VERSION:
            raise StateCorruptionError(f"Unsupported state version: {payload.get('version')!r}")
        body = {key: value for key, value in payload.items() if key != "checksum"}
        if payload.get("checksum") != _checksum(body):
            raise StateCorruptionError("State checksum mismatch")
        if not isinstance(payload.get("resources"), list) or not isinstance(payload.get("outputs"), dict):
            raise StateCorruptionError("State must hold a 'resources' list and an 'outputs' object")

        resources: Dict[ResourceId, ResourceRecord] = {}
        for item in payload["resources"]:
            record = ResourceRecord.from_json(item)
            if record.id in resources:
                raise StateCorruptionError(f"Duplicate resource record: {record.id}")
            resources[record.id] = record
        for record in resources.values():
            for dep in record.dependencies:
                if dep not in resources:
                    raise StateCorruptionError(f"{record.id} depends on unknown record {dep}")
        try:
            serial = int(payload.get("serial", 0))
        except (TypeError, ValueError) as error:
            raise StateCorruptionError(f"Invalid state serial: {payload.get('serial')!r}") from error
        return cls(resources=resources, outputs=payload["outputs"], serial=serial)


@dataclass
class StateDiff:
    create: List[ResourceId] = field(default_factory=list)
    update: List[ResourceId] = field(default_factory=list)
    unchanged: List[ResourceId] = field(default_factory=list)
    delete: List[ResourceId] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.create or self.update or self.delete)

    def to_json(self) -> Dict[str, List[str]]:
        return {
            "create": [str(item) for item in self.create],
            "update": [str(item) for item in self.update],
            "unchanged": [str(item) for item in self.unchanged],
            "delete": [str(item) for item in self.delete],
        }


class StateStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Optional[StateSnapshot]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as error:
            raise StateCorruptionError(f"State file {self.path} is not valid JSON: {error.msg}") from error
        except UnicodeDecodeError as error:
            raise StateCorruptionError(f"State file {self.path} is not valid UTF-8: {error.reason}") from error
        snapshot = StateSnapshot.from_json(payload)
        logger.debug("Loaded state serial=%d with %d resources", snapshot.serial, len(snapshot))
        return snapshot

    def save(self, snapshot: StateSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(snapshot.to_json(), ensure_ascii=False, indent=2, sort_keys=True)
        handle, temp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as temp_file:
                temp_file.write(content)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_name, self.path)
        except BaseException:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise
        logger.info("Saved state serial=%d with %d resources to %s", snapshot.serial, len(snapshot), self.path)


def compute_diff(
    graph: ResourceGraph,
    snapshot: Optional[StateSnapshot],
    plan: Optional[ExecutionPlan] = None,
) -> StateDiff:
    diff = StateDiff()
    order = (plan or compute_plan(graph)).resources()
    unchanged = set()
    for resource_id in order:
        record = snapshot.get(resource_id) if snapshot is not None else None
        if record is None:
            diff.create.append(resource_id)
            continue
        same_declaration = record.declared == encode_value(graph.nodes[resource_id].attributes)
        deps_unchanged = all(dep in unchanged for dep in graph.dependencies(resource_id))
        if same_declaration and deps_unchanged and not record.tainted:
            unchanged.add(resource_id)
            diff.unchanged.append(resource_id)
        else:
            diff.update.append(resource_id)
    if snapshot is not None:
        diff.delete = [resource_id for resource_id in snapshot.resources if resource_id not in graph]
    return diff


def build_snapshot(
    graph: Optional[ResourceGraph],
    previous: Optional[StateSnapshot],
    destroyed: Iterable[ResourceId] = (),
    outputs: Optional[Dict[str, Any]] = None,
) -> StateSnapshot:
    """Next snapshot from a finished run.

    Applied nodes get fresh records. Nodes that did not apply keep their
    previous record, tainted if they failed. Stored records that were not
    destroyed are carried over.
    """
    destroyed = set(destroyed)
    resources: Dict[ResourceId, ResourceRecord] = {}

    for node in (graph.nodes.values() if graph is not None else []):
        previous_record = previous.get(node.id) if previous is not None else None
        if node.state is LifecycleState.APPLIED:
            resources[node.id] = ResourceRecord(
                id=node.id,
                declared=encode_value(node.attributes),
                attributes=node.applied_attributes,
                outputs=node.outputs,
                dependencies=graph.dependencies(node.id),
            )
        elif previous_record is not None and node.id not in destroyed:
            resources[node.id] = replace(
                previous_record,
                tainted=previous_record.tainted or node.state is LifecycleState.FAILED,
            )

    if previous is not None:
        for resource_id, record in previous.resources.items():
            if resource_id in resources or resource_id in destroyed:
                continue
            if graph is not None and resource_id in graph:
                continue
            resources[resource_id] = record

    # Records may outlive dependencies destroyed in the same run.
    for resource_id, record in list(resources.items()):
        kept = [dep for dep in record.dependencies if dep in resources]
        if kept != record.dependencies:
            resources[resource_id] = replace(record, dependencies=kept)

    return StateSnapshot(
        resources=resources,
        outputs=dict(outputs or {}),
        serial=(previous.serial if previous is not None else 0) + 1,
    )


def _checksum(body: Dict[str, Any]) -> str:
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return sha256(canonical.encode("utf-8")).hexdigest()
