"""CLI entrypoint for planning, applying and destroying resource graphs."""

import argparse
import importlib
import json
import logging
import signal
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import RunConfig, RunContext
from .errors import ConfigurationError, OrchestratorError
from .graph_orchestrator import ResourceGraphBuilder
from .phases import (
    ApplyPhase,
    DeclarationPhase,
    DestroyPhase,
    OutputProjectionPhase,
    PlanningPhase,
    StatePersistencePhase,
)
from .pipeline import PipelinePhase, PipelineRunner
from .provider import LocalProvider, Provider
from .stacks import STACKS, EksStackSettings
from .stacks.eks import SIMULATED_OUTPUTS
from .state_store import StateStore

COMMANDS = ("plan", "apply", "destroy")


def build_phases(command: str) -> List[PipelinePhase]:
    if command == "plan":
        return [DeclarationPhase(), PlanningPhase()]
    if command == "apply":
        return [
            DeclarationPhase(),
            PlanningPhase(),
            ApplyPhase(),
            OutputProjectionPhase(),
            StatePersistencePhase(),
        ]
    if command == "destroy":
        return [DestroyPhase(), StatePersistencePhase()]
    raise ValueError(f"Unknown command: {command}")


def load_provider(config: RunConfig, provider_path: str = "", stack: str = "") -> Provider:
    """Default to LocalProvider; ``module:attribute`` names a factory taking RunConfig."""
    if not provider_path:
        extra_outputs = SIMULATED_OUTPUTS if stack == "eks" else None
        return LocalProvider(region=config.region, extra_outputs=extra_outputs)

    module_name, _, attribute = provider_path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Provider must look like 'module:attribute', got {provider_path!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as error:
        raise ConfigurationError(f"Cannot load provider {provider_path!r}: {error}") from error
    provider = factory(config)
    if not isinstance(provider, Provider):
        raise ConfigurationError(f"{provider_path} did not return a Provider")
    return provider


def run_pipeline(
    command: str,
    run_context: RunContext,
    declarations_path: str = "",
    declare: Optional[Callable[[ResourceGraphBuilder], Any]] = None,
) -> Dict[str, Any]:
    builder = ResourceGraphBuilder()
    initial_context: Dict[str, Any] = {
        "builder": builder,
        "run_context": run_context,
        "state_store": StateStore(run_context.config.state_path),
        "declarations_path": declarations_path,
        "declare": declare,
    }
    runner = PipelineRunner(phases=build_phases(command))
    final_context = runner.run(initial_context)

    plan = final_context.get("plan")
    diff = final_context.get("diff")
    report = final_context.get("report")
    return {
        "command": command,
        "graph": builder.to_json(),
        "plan": plan.to_json() if plan is not None else [],
        "diff": diff.to_json() if diff is not None else {},
        "report": report.to_json() if report is not None else {},
        "ok": report.ok if report is not None else True,
        "outputs": final_context.get("outputs", {}),
        "unresolved_outputs": final_context.get("unresolved_outputs", {}),
    }


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan, apply or destroy a declared resource graph.")
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--declarations", default="", help="Path to a JSON declaration file.")
    parser.add_argument("--stack", default="", choices=["", *sorted(STACKS)], help="Built-in stack to declare.")
    parser.add_argument("--enable-oidc", action="store_true", help="EKS stack: add OIDC/IRSA wiring.")
    parser.add_argument(
        "--enable-security-groups", action="store_true", help="EKS stack: add a cluster security group."
    )
    parser.add_argument("--frontend-service-type", default=None, help="EKS stack: frontend Service type.")
    parser.add_argument("--state-path", default=None, help="State snapshot file.")
    parser.add_argument("--report-path", default=None, help="Where to save the run report JSON.")
    parser.add_argument("--concurrency", type=int, default=None, help="Resources applied in parallel per batch.")
    parser.add_argument("--provider", default="", help="Provider factory as 'module:attribute'.")
    parser.add_argument("--env-file", default=None, help="Optional .env file to load.")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = RunConfig.from_env(args.env_file).with_overrides(
            state_path=args.state_path,
            report_path=args.report_path,
            concurrency_limit=args.concurrency,
        )
        provider = load_provider(config, args.provider, args.stack)
    except ConfigurationError as error:
        print(f"Configuration error: {error}")
        return 2

    declare = None
    if args.stack:
        overrides = {
            "region": config.region,
            "enable_oidc": args.enable_oidc,
            "enable_security_groups": args.enable_security_groups,
        }
        if args.frontend_service_type:
            overrides["frontend_service_type"] = args.frontend_service_type
        declare = partial(STACKS[args.stack], settings=EksStackSettings(**overrides))

    run_context = RunContext(config=config, provider=provider)
    previous_handler = signal.signal(signal.SIGINT, lambda *_: run_context.cancel())
    try:
        artifact = run_pipeline(args.command, run_context, args.declarations, declare)
    except OrchestratorError as error:
        print(f"{type(error).__name__}: {error}")
        return 2
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    output_path = Path(config.report_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(artifact, ensure_ascii=False, indent=2), encoding="utf-8")
    print(f"Run report saved to: {output_path.resolve()}")
    print(
        "Counts:",
        f"resources={len(artifact['graph']['nodes'])}",
        f"batches={len(artifact['plan'])}",
        f"outputs={len(artifact['outputs'])}",
        *(f"{state}={count}" for state, count in artifact["report"].get("summary", {}).items()),
    )
    return 0 if artifact["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
