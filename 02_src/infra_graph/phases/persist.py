"""State persistence phase."""

from typing import Any, Dict

from ..pipeline import PipelinePhase
from ..state_store import StateStore, build_snapshot


class StatePersistencePhase(PipelinePhase):
    phase_name = "persist"

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        state_store: StateStore = context["state_store"]
        snapshot = build_snapshot(
            graph=context.get("graph"),
            previous=context.get("snapshot"),
            destroyed=context.get("destroyed", []),
            outputs=context.get("outputs", {}),
        )
        state_store.save(snapshot)
        return {"saved_snapshot": snapshot}
