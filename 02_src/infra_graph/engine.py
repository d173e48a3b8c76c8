"""Apply/destroy engine: walks plan batches through a LangGraph loop."""

import copy
import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Dict, List, Optional

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from .errors import ProviderApplyError, ProviderDestroyError
from .graph_model import LifecycleState, ResourceGraph, ResourceId, ResourceNode
from .projector import OutputProjector
from .provider import Provider
from .resolver import ExecutionPlan
from .state_store import StateSnapshot

logger = logging.getLogger(__name__)

APPLY = "apply"
DESTROY = "destroy"


class ExecutionState(TypedDict):
    batch_index: int


@dataclass
class ResourceResult:
    id: ResourceId
    state: LifecycleState
    action: Optional[str] = None
    error: Optional[str] = None
    blocked_by: List[ResourceId] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": str(self.id),
            "type": self.id.type,
            "name": self.id.name,
            "state": self.state.value,
            "action": self.action,
        }
        if self.error:
            payload["error"] = self.error
        if self.blocked_by:
            payload["blocked_by"] = [str(item) for item in self.blocked_by]
        return payload


@dataclass
class RunReport:
    operation: str
    results: List[ResourceResult] = field(default_factory=list)
    cancelled: bool = False

    def ids_in(self, state: LifecycleState) -> List[ResourceId]:
        return [result.id for result in self.results if result.state is state]

    @property
    def applied(self) -> List[ResourceId]:
        return self.ids_in(LifecycleState.APPLIED)

    @property
    def failed(self) -> List[ResourceId]:
        return self.ids_in(LifecycleState.FAILED)

    @property
    def skipped(self) -> List[ResourceId]:
        return self.ids_in(LifecycleState.SKIPPED)

    @property
    def pending(self) -> List[ResourceId]:
        return self.ids_in(LifecycleState.PENDING)

    @property
    def destroyed(self) -> List[ResourceId]:
        return self.ids_in(LifecycleState.DESTROYED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped and not self.pending

    def state_of(self, resource_id: ResourceId) -> LifecycleState:
        for result in self.results:
            if result.id == resource_id:
                return result.state
        raise KeyError(resource_id)

    def merge(self, other: "RunReport") -> "RunReport":
        return RunReport(
            operation=self.operation,
            results=self.results + other.results,
            cancelled=self.cancelled or other.cancelled,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "cancelled": self.cancelled,
            "summary": {
                state.value: len(self.ids_in(state))
                for state in LifecycleState
                if self.ids_in(state)
            },
            "resources": [result.to_json() for result in self.results],
        }


class ExecutionEngine:
    """Runs plans against a provider, one batch at a time.

    ``snapshot`` is the previously stored state; resources whose resolved
    attributes match their stored record are not sent to the provider.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        projector: Optional[OutputProjector] = None,
        snapshot: Optional[StateSnapshot] = None,
    ) -> None:
        self.graph = graph
        self.projector = projector or OutputProjector(graph)
        self.snapshot = snapshot

    def execute(
        self,
        plan: ExecutionPlan,
        provider: Provider,
        concurrency_limit: int = 4,
        cancel_event: Optional[Event] = None,
    ) -> RunReport:
        return self._run(APPLY, plan, provider, concurrency_limit, cancel_event)

    def destroy(
        self,
        plan: ExecutionPlan,
        provider: Provider,
        concurrency_limit: int = 4,
        cancel_event: Optional[Event] = None,
    ) -> RunReport:
        return self._run(DESTROY, plan, provider, concurrency_limit, cancel_event)

    def _run(
        self,
        operation: str,
        plan: ExecutionPlan,
        provider: Provider,
        concurrency_limit: int,
        cancel_event: Optional[Event],
    ) -> RunReport:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        loop = _BatchLoop(
            engine=self,
            operation=operation,
            plan=plan,
            provider=provider,
            cancel_event=cancel_event or Event(),
        )
        with ThreadPoolExecutor(
            max_workers=concurrency_limit, thread_name_prefix=f"infra-graph-{operation}"
        ) as executor:
            loop.executor = executor
            workflow = loop.build_workflow()
            final_state = workflow.invoke(
                {"batch_index": 0}, config={"recursion_limit": len(plan) + 5}
            )

        cancelled = final_state["batch_index"] < len(plan)
        if cancelled:
            logger.warning(
                "%s cancelled after %d of %d batches", operation, final_state["batch_index"], len(plan)
            )
        return RunReport(
            operation=operation,
            results=[loop.result_for(resource_id) for resource_id in plan.resources()],
            cancelled=cancelled,
        )

    def apply_node(self, node: ResourceNode, provider: Provider) -> None:
        node.state = LifecycleState.APPLYING
        record = self.snapshot.get(node.id) if self.snapshot is not None else None
        node.action = "update" if record is not None else "create"
        try:
            resolved = _normalize(self.projector.resolve(node.attributes))
        except (KeyError, TypeError, ValueError) as error:
            node.error = error
            node.state = LifecycleState.FAILED
            logger.warning("Could not resolve attributes of %s: %s", node.id, error)
            return

        if record is not None and not record.tainted and record.attributes == resolved:
            node.applied_attributes = resolved
            node.outputs = copy.deepcopy(record.outputs)
            node.action = "noop"
            node.state = LifecycleState.APPLIED
            logger.debug("Unchanged %s, reusing stored outputs", node.id)
            return

        try:
            outputs = provider.apply(node.type, node.name, copy.deepcopy(resolved))
            node.outputs = _normalize(dict(outputs or {}))
        except Exception as error:
            node.error = ProviderApplyError(node.id, error)
            node.state = LifecycleState.FAILED
            logger.warning("Apply failed for %s: %s", node.id, error)
            return

        node.applied_attributes = resolved
        node.state = LifecycleState.APPLIED
        logger.info("Applied %s (%s)", node.id, node.action)

    def destroy_node(self, node: ResourceNode, provider: Provider) -> None:
        node.state = LifecycleState.DESTROYING
        node.action = "delete"
        try:
            provider.destroy(node.type, node.name, copy.deepcopy(node.outputs))
        except Exception as error:
            node.error = ProviderDestroyError(node.id, error)
            node.state = LifecycleState.FAILED
            logger.warning("Destroy failed for %s: %s", node.id, error)
            return
        node.state = LifecycleState.DESTROYED
        logger.info("Destroyed %s", node.id)


class _BatchLoop:
    """Per-run state of one execute/destroy call."""

    def __init__(
        self,
        engine: ExecutionEngine,
        operation: str,
        plan: ExecutionPlan,
        provider: Provider,
        cancel_event: Event,
    ) -> None:
        self.engine = engine
        self.operation = operation
        self.plan = plan
        self.provider = provider
        self.cancel_event = cancel_event
        self.executor: Optional[ThreadPoolExecutor] = None
        self.blocked_by: Dict[ResourceId, List[ResourceId]] = {}

    def build_workflow(self):
        graph = StateGraph(ExecutionState)
        graph.add_node("dispatch_batch", self.dispatch_batch)
        graph.add_conditional_edges(START, self.route, ["dispatch_batch", END])
        graph.add_conditional_edges("dispatch_batch", self.route, ["dispatch_batch", END])
        return graph.compile()

    def route(self, state: ExecutionState) -> str:
        if state["batch_index"] >= len(self.plan):
            return END
        if self.cancel_event.is_set():
            return END
        return "dispatch_batch"

    def dispatch_batch(self, state: ExecutionState) -> Dict[str, Any]:
        index = state["batch_index"]
        batch = self.plan.batches[index]
        graph = self.engine.graph
        live: List[ResourceNode] = []

        for resource_id in batch:
            node = graph.nodes[resource_id]
            blockers = [
                blocker
                for blocker in self._blockers(resource_id)
                if graph.nodes[blocker].state in (LifecycleState.FAILED, LifecycleState.SKIPPED)
            ]
            if blockers:
                node.state = LifecycleState.SKIPPED
                self.blocked_by[resource_id] = blockers
                logger.info("Skipping %s, blocked by %s", resource_id, ", ".join(map(str, blockers)))
                continue
            live.append(node)

        logger.debug("%s batch %d/%d: %d resources", self.operation, index + 1, len(self.plan), len(live))
        task = self.engine.apply_node if self.operation == APPLY else self.engine.destroy_node
        futures = [self.executor.submit(task, node, self.provider) for node in live]
        wait(futures)
        for future in futures:
            future.result()
        return {"batch_index": index + 1}

    def result_for(self, resource_id: ResourceId) -> ResourceResult:
        node = self.engine.graph.nodes[resource_id]
        return ResourceResult(
            id=resource_id,
            state=node.state,
            action=node.action,
            error=str(node.error) if node.error is not None else None,
            blocked_by=list(self.blocked_by.get(resource_id, [])),
        )

    def _blockers(self, resource_id: ResourceId) -> List[ResourceId]:
        graph = self.engine.graph
        if self.operation == APPLY:
            return graph.dependencies(resource_id)
        return graph.dependents(resource_id)


def _normalize(value: Any) -> Any:
    return json.loads(json.dumps(value))
