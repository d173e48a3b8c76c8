"""Declaration phase: turns declaration input into the resource graph."""

from typing import Any, Dict

from ..declarations import apply_declarations, read_declarations
from ..graph_orchestrator import ResourceGraphBuilder
from ..pipeline import PipelinePhase


class DeclarationPhase(PipelinePhase):
    phase_name = "declarations"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        builder: ResourceGraphBuilder = context["builder"]
        declarations_path = context.get("declarations_path")
        if declarations_path:
            apply_declarations(builder, read_declarations(declarations_path))
        elif context.get("declarations") is not None:
            apply_declarations(builder, context["declarations"])

        declare = context.get("declare")
        if declare is not None:
            declare(builder)
        return {"graph": builder.graph}
