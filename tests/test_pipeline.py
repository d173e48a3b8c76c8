import json
from pathlib import Path

import pytest
from conftest import RecordingProvider

from infra_graph.cli import build_phases, main, run_pipeline
from infra_graph.errors import CycleError
from infra_graph.graph_model import ResourceId
from infra_graph.pipeline import PipelinePhase, PipelineRunner
from infra_graph.state_store import StateStore
from infra_graph.values import Template, ref

DECLARATIONS_DIR = Path(__file__).resolve().parents[1] / "01_declarations"


def declare_network(cidr: str = "10.0.1.0/24", with_igw: bool = True):
    def declare(builder):
        vpc = builder.add_resource("vpc", "vpc", {"cidrBlock": "10.0.0.0/16"})
        builder.add_resource("subnet", "subnet", {"vpcId": ref(vpc), "cidrBlock": cidr})
        if with_igw:
            igw = builder.add_resource("igw", "igw", {"vpcId": ref(vpc)})
            builder.add_output("summary", Template("${vpc}/${igw}", {"vpc": ref(vpc), "igw": ref(igw)}))

    return declare


def test_runner_merges_phase_results_and_rejects_non_dict():
    class Emit(PipelinePhase):
        phase_name = "emit"

        def run(self, context):
            return {"value": context["seed"] + 1}

    class Broken(PipelinePhase):
        phase_name = "broken"

        def run(self, context):
            return None

    assert PipelineRunner([Emit()]).run({"seed": 1}) == {"seed": 1, "value": 2}
    with pytest.raises(TypeError, match="broken"):
        PipelineRunner([Emit(), Broken()]).run({"seed": 1})


def test_unknown_command_has_no_phases():
    with pytest.raises(ValueError):
        build_phases("import")


def test_apply_persists_state_and_outputs(make_run_context, run_config):
    provider = RecordingProvider()

    artifact = run_pipeline("apply", make_run_context(provider), declare=declare_network())

    assert artifact["ok"]
    assert artifact["plan"] == [["vpc:vpc"], ["subnet:subnet", "igw:igw"]]
    assert artifact["diff"]["create"] == ["vpc:vpc", "subnet:subnet", "igw:igw"]
    assert artifact["outputs"] == {"summary": "vpc-id/igw-id"}
    snapshot = StateStore(run_config.state_path).load()
    assert len(snapshot) == 3
    assert snapshot.outputs == {"summary": "vpc-id/igw-id"}


def test_reapplying_unchanged_declarations_makes_no_provider_calls(make_run_context):
    run_pipeline("apply", make_run_context(RecordingProvider()), declare=declare_network())
    provider = RecordingProvider()

    artifact = run_pipeline("apply", make_run_context(provider), declare=declare_network())

    assert provider.calls == []
    assert artifact["diff"]["unchanged"] == ["vpc:vpc", "subnet:subnet", "igw:igw"]
    assert {item["action"] for item in artifact["report"]["resources"]} == {"noop"}
    assert artifact["outputs"] == {"summary": "vpc-id/igw-id"}


def test_changed_declaration_only_touches_changed_resource(make_run_context):
    run_pipeline("apply", make_run_context(RecordingProvider()), declare=declare_network())
    provider = RecordingProvider()

    artifact = run_pipeline(
        "apply", make_run_context(provider), declare=declare_network(cidr="10.0.5.0/24")
    )

    assert provider.applied_names == ["subnet"]
    actions = {item["name"]: item["action"] for item in artifact["report"]["resources"]}
    assert actions == {"vpc": "noop", "subnet": "update", "igw": "noop"}


def test_removed_resource_is_destroyed_on_next_apply(make_run_context, run_config):
    run_pipeline("apply", make_run_context(RecordingProvider()), declare=declare_network())
    provider = RecordingProvider()

    artifact = run_pipeline(
        "apply", make_run_context(provider), declare=declare_network(with_igw=False)
    )

    assert provider.destroyed_names == ["igw"]
    assert artifact["diff"]["delete"] == ["igw:igw"]
    snapshot = StateStore(run_config.state_path).load()
    assert ResourceId("igw", "igw") not in snapshot
    assert snapshot.outputs == {}


def test_destroy_tears_down_everything_in_reverse(make_run_context, run_config):
    run_pipeline("apply", make_run_context(RecordingProvider()), declare=declare_network())
    provider = RecordingProvider()
    run_context = make_run_context(provider)
    run_context.config = run_config.with_overrides(concurrency_limit=1)

    artifact = run_pipeline("destroy", run_context)

    assert provider.destroyed_names == ["igw", "subnet", "vpc"]
    assert artifact["ok"]
    assert len(StateStore(run_config.state_path).load()) == 0


def declare_chain(builder):
    a = builder.add_resource("t", "a")
    b = builder.add_resource("t", "b", {"a": ref(a)})
    builder.add_resource("t", "c", {"b": ref(b)})


def test_cancelled_apply_saves_finished_batch_and_keeps_removed_resources(
    make_run_context, run_config
):
    run_pipeline(
        "apply", make_run_context(RecordingProvider()), declare=lambda builder: builder.add_resource("t", "old")
    )

    class CancellingProvider(RecordingProvider):
        def apply(self, resource_type, name, attributes):
            outputs = super().apply(resource_type, name, attributes)
            run_context.cancel()
            return outputs

    provider = CancellingProvider()
    run_context = make_run_context(provider)
    artifact = run_pipeline("apply", run_context, declare=declare_chain)

    assert artifact["report"]["cancelled"]
    assert not artifact["ok"]
    assert provider.applied_names == ["a"]
    assert provider.destroyed_names == []
    snapshot = StateStore(run_config.state_path).load()
    assert list(snapshot.resources) == [ResourceId("t", "a"), ResourceId("t", "old")]

    provider = RecordingProvider()
    artifact = run_pipeline("apply", make_run_context(provider), declare=declare_chain)

    actions = {item["name"]: item["action"] for item in artifact["report"]["resources"]}
    assert actions == {"a": "noop", "b": "create", "c": "create", "old": "delete"}
    assert provider.applied_names == ["b", "c"]
    assert provider.destroyed_names == ["old"]
    assert artifact["ok"]


def test_plan_reads_declaration_file_without_provider_calls(make_run_context, run_config):
    provider = RecordingProvider()

    artifact = run_pipeline(
        "plan", make_run_context(provider), declarations_path=str(DECLARATIONS_DIR / "network.json")
    )

    assert provider.calls == []
    assert artifact["plan"] == [
        ["aws:ec2/vpc:Vpc:my-vpc"],
        ["aws:ec2/subnet:Subnet:my-subnet-1", "aws:ec2/internetGateway:InternetGateway:my-igw"],
    ]
    assert artifact["report"] == {}
    assert not Path(run_config.state_path).exists()


def test_cycle_aborts_before_any_provider_call(make_run_context):
    provider = RecordingProvider()

    def declare(builder):
        x = builder.add_resource("res", "x")
        y = builder.add_resource("res", "y", {"x": ref(x)})
        builder.add_reference(x, "y", y)

    with pytest.raises(CycleError):
        run_pipeline("apply", make_run_context(provider), declare=declare)
    assert provider.calls == []


def test_cli_applies_declaration_file_with_local_provider(tmp_path, capsys):
    report_path = tmp_path / "report.json"

    exit_code = main(
        [
            "apply",
            "--declarations",
            str(DECLARATIONS_DIR / "network.json"),
            "--state-path",
            str(tmp_path / "state.json"),
            "--report-path",
            str(report_path),
            "--concurrency",
            "3",
        ]
    )

    assert exit_code == 0
    artifact = json.loads(report_path.read_text(encoding="utf-8"))
    assert artifact["report"]["summary"] == {"applied": 3}
    assert artifact["outputs"]["vpcSummary"].startswith("vpc vpc-")
    assert "Run report saved to" in capsys.readouterr().out


def test_cli_reports_configuration_errors(tmp_path, capsys):
    exit_code = main(
        ["plan", "--concurrency", "0", "--state-path", str(tmp_path / "state.json")]
    )

    assert exit_code == 2
    assert "Configuration error" in capsys.readouterr().out
