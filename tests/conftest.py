import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from infra_graph.config import RunConfig, RunContext
from infra_graph.provider import Provider


class RecordingProvider(Provider):
    """Returns ``{"id": "<name>-id", "name": name, **attributes}`` and records calls."""

    def __init__(
        self,
        fail_on: Tuple[str, ...] = (),
        destroy_fail_on: Tuple[str, ...] = (),
        outputs: Optional[Dict[str, Dict[str, Any]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.fail_on = set(fail_on)
        self.destroy_fail_on = set(destroy_fail_on)
        self.outputs = outputs or {}
        self.delay = delay
        self.calls: List[Tuple[str, str, str, Dict[str, Any]]] = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def applied_names(self) -> List[str]:
        return [name for operation, _, name, _ in self.calls if operation == "apply"]

    @property
    def destroyed_names(self) -> List[str]:
        return [name for operation, _, name, _ in self.calls if operation == "destroy"]

    def apply(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        self._enter("apply", resource_type, name, attributes)
        try:
            if name in self.fail_on:
                raise RuntimeError(f"simulated failure for {name}")
            return {"id": f"{name}-id", "name": name, **attributes, **self.outputs.get(name, {})}
        finally:
            self._leave()

    def destroy(self, resource_type: str, name: str, last_known_outputs: Dict[str, Any]) -> None:
        self._enter("destroy", resource_type, name, last_known_outputs)
        try:
            if name in self.destroy_fail_on:
                raise RuntimeError(f"simulated destroy failure for {name}")
        finally:
            self._leave()

    def _enter(self, operation: str, resource_type: str, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((operation, resource_type, name, payload))
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        if self.delay:
            time.sleep(self.delay)

    def _leave(self) -> None:
        with self._lock:
            self._in_flight -= 1


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def run_config(tmp_path) -> RunConfig:
    return RunConfig(
        state_path=str(tmp_path / "state" / "snapshot.json"),
        report_path=str(tmp_path / "report.json"),
        concurrency_limit=2,
    )


@pytest.fixture
def make_run_context(run_config):
    def factory(provider: Provider) -> RunContext:
        return RunContext(config=run_config, provider=provider)

    return factory
