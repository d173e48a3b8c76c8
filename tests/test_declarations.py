import json

import pytest

from infra_graph.declarations import apply_declarations, decode_value, encode_value, read_declarations
from infra_graph.errors import DeclarationError, UnknownResourceError
from infra_graph.graph_model import ResourceId
from infra_graph.graph_orchestrator import ResourceGraphBuilder
from infra_graph.values import Deferred, JsonDocument, Kubeconfig, Literal, NamedOutput, Template, ref

VPC = {"type": "vpc", "name": "main"}


def test_markers_decode_to_tagged_values():
    decoded = decode_value(
        {
            "vpcId": {"$ref": {**VPC, "path": "id"}},
            "host": {"$ref": {**VPC, "path": "dns", "default": None}},
            "kubeconfig": {"$json": {"$output": "kubeconfig"}},
            "url": {"$template": "http://${host}", "inputs": {"host": {"$ref": VPC}}, "fallback": "pending..."},
            "raw": {"$literal": {"$ref": "kept"}},
            "plain": [1, {"nested": True}],
        }
    )

    assert decoded["vpcId"] == Deferred(ResourceId("vpc", "main"), "id")
    assert decoded["host"].has_default and decoded["host"].default is None
    assert isinstance(decoded["kubeconfig"], JsonDocument)
    assert decoded["kubeconfig"].value == NamedOutput("kubeconfig")
    assert isinstance(decoded["url"], Template) and decoded["url"].fallback == "pending..."
    assert decoded["raw"] == Literal({"$ref": "kept"})
    assert decoded["plain"] == [1, {"nested": True}]


def test_encoding_is_stable_through_json():
    vpc = ResourceId("vpc", "main")
    value = {
        "vpcId": ref(vpc),
        "config": Kubeconfig(ref(vpc, "endpoint"), ref(vpc, "ca"), ref(vpc, "name")),
        "url": Template("http://${host}", {"host": ref(vpc, "dns", default=None)}, fallback="pending..."),
    }

    encoded = encode_value(value)

    assert encode_value(decode_value(json.loads(json.dumps(encoded)))) == encoded


@pytest.mark.parametrize(
    "payload",
    [
        {"$ref": {"type": "vpc"}},
        {"$ref": "vpc.main"},
        {"$kubeconfig": {"endpoint": "x"}},
    ],
)
def test_malformed_markers_are_declaration_errors(payload):
    with pytest.raises(DeclarationError):
        decode_value(payload)


def test_apply_declarations_registers_resources_outputs_and_references():
    builder = ResourceGraphBuilder()
    payload = {
        "resources": [
            {"type": "vpc", "name": "main", "attributes": {"cidrBlock": "10.0.0.0/16"}},
            {"type": "subnet", "name": "a", "attributes": {"vpcId": {"$ref": VPC}}},
            {"output": "vpcId", "value": {"$ref": VPC}},
            {"type": "tag", "name": "t", "attributes": {"vpc": {"$output": "vpcId"}}, "dependsOn": [VPC]},
            {"type": "peer", "name": "p"},
        ],
        "references": [{"from": {"type": "peer", "name": "p"}, "attribute": "vpcId", "to": VPC}],
        "outputs": {"subnetId": {"$ref": {"type": "subnet", "name": "a"}}},
    }

    declared = apply_declarations(builder, payload)

    graph = builder.graph
    assert [str(item) for item in declared] == ["vpc:main", "subnet:a", "tag:t", "peer:p"]
    assert graph.dependencies(ResourceId("tag", "t")) == [ResourceId("vpc", "main")]
    assert graph.dependencies(ResourceId("peer", "p")) == [ResourceId("vpc", "main")]
    assert sorted(graph.outputs) == ["subnetId", "vpcId"]


def test_forward_reference_in_declarations_is_unknown():
    payload = {
        "resources": [
            {"type": "subnet", "name": "a", "attributes": {"vpcId": {"$ref": VPC}}},
            {"type": "vpc", "name": "main"},
        ]
    }

    with pytest.raises(UnknownResourceError):
        apply_declarations(ResourceGraphBuilder(), payload)


@pytest.mark.parametrize(
    "payload",
    [
        {"resources": {"type": "vpc"}},
        {"resources": [{"type": "vpc"}]},
        {"resources": [{"type": "vpc", "name": "main", "attributes": []}]},
        {"resources": [], "references": [{"from": VPC, "to": VPC}]},
        {"resources": [], "outputs": []},
    ],
)
def test_malformed_declarations_are_rejected(payload):
    with pytest.raises(DeclarationError):
        apply_declarations(ResourceGraphBuilder(), payload)


def test_read_declarations_rejects_invalid_files(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")

    with pytest.raises(DeclarationError):
        read_declarations(broken)
    with pytest.raises(DeclarationError):
        read_declarations(listing)
    with pytest.raises(DeclarationError):
        read_declarations(tmp_path / "missing.json")
