"""Pipeline phases for planning, applying and destroying resource graphs."""

from .apply import ApplyPhase
from .declarations import DeclarationPhase
from .destroy import DestroyPhase
from .outputs import OutputProjectionPhase
from .persist import StatePersistencePhase
from .planning import PlanningPhase

__all__ = [
    "DeclarationPhase",
    "PlanningPhase",
    "ApplyPhase",
    "OutputProjectionPhase",
    "StatePersistencePhase",
    "DestroyPhase",
]
