"""Run configuration loaded from the environment and an optional .env file."""

import os
from dataclasses import dataclass, field, replace
from threading import Event
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .provider import Provider

DEFAULT_STATE_PATH = "03_data/state/snapshot.json"
DEFAULT_REPORT_PATH = "03_data/reports/run_report.json"
DEFAULT_CONCURRENCY = 4


@dataclass(frozen=True)
class RunConfig:
    state_path: str = DEFAULT_STATE_PATH
    report_path: str = DEFAULT_REPORT_PATH
    concurrency_limit: int = DEFAULT_CONCURRENCY
    region: str = "us-east-1"
    profile: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "RunConfig":
        load_dotenv(dotenv_path=env_file)
        raw_limit = os.getenv("INFRA_GRAPH_CONCURRENCY", str(DEFAULT_CONCURRENCY))
        try:
            concurrency_limit = int(raw_limit)
        except ValueError:
            raise ConfigurationError(
                f"INFRA_GRAPH_CONCURRENCY must be an integer, got {raw_limit!r}"
            ) from None
        config = cls(
            state_path=os.getenv("INFRA_GRAPH_STATE_PATH", DEFAULT_STATE_PATH),
            report_path=os.getenv("INFRA_GRAPH_REPORT_PATH", DEFAULT_REPORT_PATH),
            concurrency_limit=concurrency_limit,
            region=os.getenv("AWS_REGION", "us-east-1"),
            profile=os.getenv("AWS_PROFILE") or None,
        )
        config.validate()
        return config

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        updated = replace(self, **{key: value for key, value in overrides.items() if value is not None})
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.concurrency_limit < 1:
            raise ConfigurationError("Concurrency limit must be at least 1")
        if not self.state_path:
            raise ConfigurationError("State path must not be empty")


@dataclass
class RunContext:
    """Everything one run needs; built at run start and discarded afterwards."""

    config: RunConfig
    provider: Provider
    cancel_event: Event = field(default_factory=Event)

    def cancel(self) -> None:
        self.cancel_event.set()
