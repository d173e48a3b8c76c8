"""Tagged attribute values: literals, deferred references and projections."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Tuple

from .graph_model import ResourceId


class _Required:
    def __repr__(self) -> str:
        return "REQUIRED"


REQUIRED: Any = _Required()


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Deferred:
    """Pointer to an output attribute of another resource."""

    target: ResourceId
    path: str = "id"
    default: Any = REQUIRED

    @property
    def has_default(self) -> bool:
        return self.default is not REQUIRED


@dataclass(frozen=True, eq=False)
class Template:
    """``string.Template`` text filled from named inputs.

    When ``fallback`` is set and any input resolves to ``None`` the fallback is
    produced instead of the rendered text.
    """

    text: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    fallback: Any = None


@dataclass(frozen=True, eq=False)
class JsonDocument:
    value: Any


@dataclass(frozen=True, eq=False)
class Kubeconfig:
    endpoint: Any
    certificate_authority: Any
    cluster_name: Any
    user: str = "aws"
    context: str = "aws"


@dataclass(frozen=True)
class NamedOutput:
    name: str


PROJECTION_TYPES = (Template, JsonDocument, Kubeconfig)


def ref(resource_id: ResourceId, path: str = "id", default: Any = REQUIRED) -> Deferred:
    return Deferred(target=resource_id, path=path, default=default)


def projection_inputs(value: Any) -> Dict[str, Any]:
    if isinstance(value, Template):
        return dict(value.inputs)
    if isinstance(value, JsonDocument):
        return {"value": value.value}
    if isinstance(value, Kubeconfig):
        return {
            "endpoint": value.endpoint,
            "certificate_authority": value.certificate_authority,
            "cluster_name": value.cluster_name,
        }
    return {}


def iter_markers(value: Any, path: str = "") -> Iterator[Tuple[str, Any]]:
    """Yield ``(attribute_path, marker)`` for every Deferred and NamedOutput."""
    if isinstance(value, (Deferred, NamedOutput)):
        yield path, value
    elif isinstance(value, PROJECTION_TYPES):
        for key, item in projection_inputs(value).items():
            yield from iter_markers(item, _join(path, key))
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from iter_markers(item, _join(path, str(key)))
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            yield from iter_markers(item, _join(path, str(index)))


def lookup_path(payload: Any, path: str) -> Any:
    """Follow a dotted path through dicts and lists; raises KeyError if absent."""
    current = payload
    for segment in [part for part in path.split(".") if part]:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise KeyError(path)
    return current


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key
