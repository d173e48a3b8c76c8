"""Planning phase: cycle check, batch ordering and diff against stored state."""

import logging
from typing import Any, Dict

from ..graph_model import ResourceGraph
from ..pipeline import PipelinePhase
from ..resolver import DependencyResolver
from ..state_store import StateStore, compute_diff

logger = logging.getLogger(__name__)


class PlanningPhase(PipelinePhase):
    phase_name = "planning"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        graph: ResourceGraph = context["graph"]
        state_store: StateStore = context["state_store"]

        plan = DependencyResolver().compute_plan(graph)
        snapshot = state_store.load()
        diff = compute_diff(graph, snapshot, plan)
        logger.info(
            "Plan: %d batches, create=%d update=%d unchanged=%d delete=%d",
            len(plan),
            len(diff.create),
            len(diff.update),
            len(diff.unchanged),
            len(diff.delete),
        )
        return {"plan": plan, "snapshot": snapshot, "diff": diff}
