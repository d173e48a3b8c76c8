"""Destroy phase: tears down every stored resource in reverse order."""

import logging
from typing import Any, Dict

from ..config import RunContext
from ..engine import DESTROY, ExecutionEngine, RunReport
from ..pipeline import PipelinePhase
from ..resolver import DependencyResolver, ExecutionPlan
from ..state_store import StateStore

logger = logging.getLogger(__name__)


class DestroyPhase(PipelinePhase):
    phase_name = "destroy"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        run_context: RunContext = context["run_context"]
        state_store: StateStore = context["state_store"]

        snapshot = state_store.load()
        if snapshot is None:
            logger.info("No stored state, nothing to destroy")
            return {"snapshot": None, "plan": ExecutionPlan(), "report": RunReport(operation=DESTROY)}

        destroy_graph = snapshot.to_graph()
        plan = DependencyResolver().compute_destroy_plan(destroy_graph)
        report = ExecutionEngine(destroy_graph).destroy(
            plan,
            run_context.provider,
            run_context.config.concurrency_limit,
            run_context.cancel_event,
        )
        return {
            "snapshot": snapshot,
            "plan": plan,
            "report": report,
            "destroyed": report.destroyed,
            "outputs": {},
        }
