"""Error taxonomy for graph construction, execution and state handling."""

from typing import Any, List


class OrchestratorError(Exception):
    """Base class for every error raised by infra_graph."""


class DeclarationError(OrchestratorError, ValueError):
    """Declaration input is malformed."""


class DuplicateResourceError(OrchestratorError, ValueError):
    pass


class UnknownResourceError(OrchestratorError, ValueError):
    pass


class CycleError(OrchestratorError):
    def __init__(self, cycle: List[Any]) -> None:
        self.cycle = list(cycle)
        rendered = " -> ".join(str(item) for item in self.cycle + self.cycle[:1])
        super().__init__(f"Dependency cycle detected: {rendered}")


class ProviderError(OrchestratorError):
    operation = "provider call"

    def __init__(self, resource_id: Any, cause: BaseException) -> None:
        self.resource_id = resource_id
        self.cause = cause
        super().__init__(f"{self.operation} failed for {resource_id}: {cause}")


class ProviderApplyError(ProviderError):
    operation = "apply"


class ProviderDestroyError(ProviderError):
    operation = "destroy"


class MissingOutputError(OrchestratorError, KeyError):
    def __init__(self, resource_id: Any, path: str) -> None:
        self.resource_id = resource_id
        self.path = path
        super().__init__(f"{resource_id} has no output at '{path}'")

    def __str__(self) -> str:
        return str(self.args[0])


class UnresolvedReferenceError(OrchestratorError, AssertionError):
    """A reference was read before its target was applied."""


class StateCorruptionError(OrchestratorError):
    pass


class ConfigurationError(OrchestratorError):
    pass
