"""Apply phase: runs the plan, then destroys resources no longer declared."""

import logging
from typing import Any, Dict, List

from ..config import RunContext
from ..engine import ExecutionEngine
from ..graph_model import ResourceId
from ..projector import OutputProjector
from ..pipeline import PipelinePhase
from ..resolver import DependencyResolver

logger = logging.getLogger(__name__)


class ApplyPhase(PipelinePhase):
    phase_name = "apply"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        run_context: RunContext = context["run_context"]
        graph = context["graph"]
        snapshot = context.get("snapshot")
        diff = context["diff"]
        limit = run_context.config.concurrency_limit

        projector = OutputProjector(graph)
        engine = ExecutionEngine(graph, projector=projector, snapshot=snapshot)
        report = engine.execute(
            context["plan"], run_context.provider, limit, run_context.cancel_event
        )

        destroyed: List[ResourceId] = []
        if diff.delete and not run_context.cancel_event.is_set():
            removed_graph = snapshot.to_graph(diff.delete)
            destroy_plan = DependencyResolver().compute_destroy_plan(removed_graph)
            logger.info("Destroying %d resources removed from declarations", len(diff.delete))
            destroy_report = ExecutionEngine(removed_graph).destroy(
                destroy_plan, run_context.provider, limit, run_context.cancel_event
            )
            destroyed = destroy_report.destroyed
            report = report.merge(destroy_report)

        return {"projector": projector, "report": report, "destroyed": destroyed}
