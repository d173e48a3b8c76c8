"""Core package for the resource dependency orchestrator."""

from .engine import ExecutionEngine, ResourceResult, RunReport
from .graph_model import LifecycleState, ResourceGraph, ResourceId, ResourceNode
from .graph_orchestrator import ResourceGraphBuilder
from .pipeline import PipelinePhase, PipelineRunner
from .projector import OutputProjector
from .provider import LocalProvider, Provider
from .resolver import DependencyResolver, ExecutionPlan, compute_destroy_plan, compute_plan
from .state_store import StateSnapshot, StateStore, build_snapshot, compute_diff
from .values import Deferred, JsonDocument, Kubeconfig, Literal, NamedOutput, Template, ref

__all__ = [
    "ResourceId",
    "ResourceNode",
    "ResourceGraph",
    "LifecycleState",
    "ResourceGraphBuilder",
    "DependencyResolver",
    "ExecutionPlan",
    "compute_plan",
    "compute_destroy_plan",
    "ExecutionEngine",
    "RunReport",
    "ResourceResult",
    "OutputProjector",
    "Provider",
    "LocalProvider",
    "StateStore",
    "StateSnapshot",
    "build_snapshot",
    "compute_diff",
    "Literal",
    "Deferred",
    "Template",
    "JsonDocument",
    "Kubeconfig",
    "NamedOutput",
    "ref",
    "PipelinePhase",
    "PipelineRunner",
]
