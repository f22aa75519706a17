"""Simulation module - schedules and orchestrates the NPC population."""

from .types import ErrorRecord, ErrorStats, PopulationStats, TickOutcome
from .scheduler import ActivityScheduler, AgentTimer, TimerState
from .rewards import ExperienceTable
from .engine import NpcEngine

__all__ = [
    "ErrorRecord",
    "ErrorStats",
    "PopulationStats",
    "TickOutcome",
    "ActivityScheduler",
    "AgentTimer",
    "TimerState",
    "ExperienceTable",
    "NpcEngine",
]
