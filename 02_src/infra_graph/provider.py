"""Provider interface and a deterministic local provider for dry runs."""

from abc import ABC, abstractmethod
from hashlib import sha1
from threading import Lock
from typing import Any, Dict, Mapping, Optional


class Provider(ABC):
    @abstractmethod
    def apply(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def destroy(self, resource_type: str, name: str, last_known_outputs: Dict[str, Any]) -> None:
        raise NotImplementedError


class LocalProvider(Provider):
    """Simulates a cloud API: echoes attributes and adds generated identifiers.

    ``extra_outputs`` maps a resource type to outputs merged into every apply
    result of that type, for values a real API would compute (endpoints,
    certificates, load balancer hostnames).
    """

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = "000000000000",
        extra_outputs: Optional[Mapping[str, Dict[str, Any]]] = None,
    ) -> None:
        self.region = region
        self.account_id = account_id
        self._extra_outputs = {key: dict(value) for key, value in (extra_outputs or {}).items()}
        self._lock = Lock()
        self.resources: Dict[str, Dict[str, Any]] = {}

    def apply(self, resource_type: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        physical_id = self._physical_id(resource_type, name)
        outputs: Dict[str, Any] = dict(attributes)
        outputs.setdefault("name", name)
        outputs["id"] = physical_id
        outputs["arn"] = (
            f"arn:aws:{_service(resource_type)}:{self.region}:{self.account_id}:{physical_id}"
        )
        outputs.update(self._extra_outputs.get(resource_type, {}))
        with self._lock:
            self.resources[f"{resource_type}:{name}"] = outputs
        return dict(outputs)

    def destroy(self, resource_type: str, name: str, last_known_outputs: Dict[str, Any]) -> None:
        with self._lock:
            self.resources.pop(f"{resource_type}:{name}", None)

    @staticmethod
    def _physical_id(resource_type: str, name: str) -> str:
        prefix = resource_type.rsplit("/", 1)[-1].rsplit(":", 1)[-1].lower() or "res"
        digest = sha1(f"{resource_type}:{name}".encode("utf-8")).hexdigest()[:10]
        return f"{prefix}-{digest}"


def _service(resource_type: str) -> str:
    parts = resource_type.split(":")
    if len(parts) >= 2:
        return parts[1].split("/", 1)[0]
    return parts[0]
