"""JSON declaration input and the marker encoding of tagged values.

Tagged values travel as single-key marker objects::

    {"$ref": {"type": "aws:ec2/vpc", "name": "main", "path": "id"}}
    {"$output": "kubeconfig"}
    {"$template": "http://${host}", "inputs": {"host": {...}}, "fallback": "pending..."}
    {"$json": {...}}
    {"$kubeconfig": {"endpoint": ..., "certificateAuthority": ..., "clusterName": ...}}
    {"$literal": {...}}

The same encoding stores declared attributes in the state file.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import DeclarationError
from .graph_model import ResourceId
from .graph_orchestrator import ResourceGraphBuilder
from .values import Deferred, JsonDocument, Kubeconfig, Literal, NamedOutput, Template

MARKER_KEYS = ("$ref", "$output", "$template", "$json", "$kubeconfig", "$literal")


def encode_value(value: Any) -> Any:
    if isinstance(value, Literal):
        return {"$literal": encode_value(value.value)}
    if isinstance(value, Deferred):
        payload: Dict[str, Any] = {**value.target.to_json(), "path": value.path}
        if value.has_default:
            payload["default"] = value.default
        return {"$ref": payload}
    if isinstance(value, NamedOutput):
        return {"$output": value.name}
    if isinstance(value, Template):
        payload = {
            "$template": value.text,
            "inputs": {key: encode_value(item) for key, item in value.inputs.items()},
        }
        if value.fallback is not None:
            payload["fallback"] = value.fallback
        return payload
    if isinstance(value, JsonDocument):
        return {"$json": encode_value(value.value)}
    if isinstance(value, Kubeconfig):
        return {
            "$kubeconfig": {
                "endpoint": encode_value(value.endpoint),
                "certificateAuthority": encode_value(value.certificate_authority),
                "clusterName": encode_value(value.cluster_name),
                "user": value.user,
                "context": value.context,
            }
        }
    if isinstance(value, dict):
        return {str(key): encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(payload: Any) -> Any:
    if isinstance(payload, list):
        return [decode_value(item) for item in payload]
    if not isinstance(payload, dict):
        return payload

    marker = next((key for key in MARKER_KEYS if key in payload), None)
    if marker is None:
        return {key: decode_value(item) for key, item in payload.items()}

    body = payload[marker]
    try:
        if marker == "$literal":
            return Literal(body)
        if marker == "$ref":
            target = resource_id_from(body)
            path = str(body.get("path", "id"))
            if "default" in body:
                return Deferred(target=target, path=path, default=body["default"])
            return Deferred(target=target, path=path)
        if marker == "$output":
            return NamedOutput(str(body))
        if marker == "$template":
            return Template(
                text=str(body),
                inputs={key: decode_value(item) for key, item in dict(payload.get("inputs", {})).items()},
                fallback=payload.get("fallback"),
            )
        if marker == "$json":
            return JsonDocument(decode_value(body))
        return Kubeconfig(
            endpoint=decode_value(body["endpoint"]),
            certificate_authority=decode_value(body["certificateAuthority"]),
            cluster_name=decode_value(body["clusterName"]),
            user=str(body.get("user", "aws")),
            context=str(body.get("context", "aws")),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as error:
        raise DeclarationError(f"Malformed {marker} marker: {payload!r}") from error


def resource_id_from(payload: Any) -> ResourceId:
    if not isinstance(payload, dict) or not payload.get("type") or not payload.get("name"):
        raise DeclarationError(f"Expected {{'type', 'name'}} object, got {payload!r}")
    return ResourceId(type=str(payload["type"]), name=str(payload["name"]))


def read_declarations(path: Union[str, Path]) -> Dict[str, Any]:
    input_path = Path(path)
    try:
        payload = json.loads(input_path.read_text(encoding="utf-8"))
    except OSError as error:
        raise DeclarationError(f"Cannot read declarations from {input_path}: {error}") from error
    except json.JSONDecodeError as error:
        raise DeclarationError(f"Invalid JSON in {input_path}: {error.msg}") from error
    if not isinstance(payload, dict):
        raise DeclarationError("Declaration file must contain a JSON object")
    return payload


def apply_declarations(builder: ResourceGraphBuilder, payload: Dict[str, Any]) -> List[ResourceId]:
    """Register declarations in order; entries with an ``output`` key declare named outputs."""
    declared: List[ResourceId] = []
    for entry in _as_list(payload.get("resources", []), "resources"):
        if not isinstance(entry, dict):
            raise DeclarationError(f"Declaration entry must be an object: {entry!r}")
        if "output" in entry:
            builder.add_output(str(entry["output"]), decode_value(entry.get("value")))
            continue
        if not entry.get("type") or not entry.get("name"):
            raise DeclarationError(f"Resource entry needs 'type' and 'name': {entry!r}")
        attributes = decode_value(entry.get("attributes", {}))
        if not isinstance(attributes, dict):
            raise DeclarationError(f"'attributes' must be an object in {entry['name']}")
        depends_on = [
            resource_id_from(item) for item in _as_list(entry.get("dependsOn", []), "dependsOn")
        ]
        declared.append(
            builder.add_resource(str(entry["type"]), str(entry["name"]), attributes, depends_on)
        )

    for reference in _as_list(payload.get("references", []), "references"):
        if not isinstance(reference, dict) or "attribute" not in reference:
            raise DeclarationError(f"Reference entry needs 'from', 'attribute', 'to': {reference!r}")
        builder.add_reference(
            resource_id_from(reference.get("from")),
            str(reference["attribute"]),
            resource_id_from(reference.get("to")),
            str(reference.get("output", "id")),
        )

    outputs = payload.get("outputs", {})
    if not isinstance(outputs, dict):
        raise DeclarationError("'outputs' must be an object")
    for name, value in outputs.items():
        builder.add_output(str(name), decode_value(value))
    return declared


def _as_list(value: Any, label: str) -> List[Any]:
    if not isinstance(value, list):
        raise DeclarationError(f"'{label}' must be a list")
    return value
