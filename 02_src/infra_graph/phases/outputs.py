"""Output projection phase: resolves named outputs once their inputs applied."""

from typing import Any, Dict

from ..errors import MissingOutputError
from ..graph_model import ResourceGraph
from ..pipeline import PipelinePhase
from ..projector import OutputProjector


class OutputProjectionPhase(PipelinePhase):
    phase_name = "outputs"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        graph: ResourceGraph = context["graph"]
        projector: OutputProjector = context.get("projector") or OutputProjector(graph)

        outputs: Dict[str, Any] = {}
        unresolved: Dict[str, str] = {}
        ready = set(projector.ready_outputs())
        for name in graph.outputs:
            if name not in ready:
                unresolved[name] = "inputs_not_applied"
                continue
            try:
                outputs[name] = projector.resolve_output(name)
            except MissingOutputError as error:
                unresolved[name] = str(error)
        return {"outputs": outputs, "unresolved_outputs": unresolved}
